"""Operation engine: planning, polling, event tracking and result building."""
