"""Allow ``python -m cfn_operations``."""

from __future__ import annotations

import sys

from cfn_operations.cli import main

if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
