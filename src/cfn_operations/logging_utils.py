"""Process-wide logging for the library and the ``cfn-operations`` command.

Operation progress is logged under the ``cfn_operations`` namespace. The AWS
SDK loggers are very chatty at INFO (every credential lookup and retry), so
they are held at WARNING unless DEBUG was asked for.
"""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

from cfn_operations.config import load_settings

SDK_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"

_configured_level: int | None = None
_configure_lock = threading.Lock()

_logger = logging.getLogger(__name__)


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _open_log_file(path: str, formatter: logging.Formatter) -> logging.Handler | None:
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:
        _logger.warning("Cannot write operation log to %s: %s", path, exc)
        return None
    handler.setFormatter(formatter)
    return handler


def configure_logging(level: str | None = None) -> int:
    """Install stderr (and optionally file) logging and return the root level.

    ``level`` overrides ``CFN_OPS_LOG_LEVEL``; the log file always comes from
    the settings.
    """
    global _configured_level

    settings = load_settings().logging
    root_level = _resolve_level(level or settings.level)
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]
    if settings.file:
        file_handler = _open_log_file(settings.file, formatter)
        if file_handler is not None:
            handlers.append(file_handler)

    logging.basicConfig(level=root_level, handlers=handlers, force=True)

    sdk_level = logging.DEBUG if root_level <= logging.DEBUG else logging.WARNING
    for name in SDK_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)

    _configured_level = root_level
    return root_level


def get_logger(name: str) -> logging.Logger:
    """Return ``name``'s logger, configuring logging from settings on first use."""
    if _configured_level is None:
        with _configure_lock:
            if _configured_level is None:
                configure_logging()
    return logging.getLogger(name)
