"""
Logging setup for memorypilot.

When serving MCP, stdout carries protocol lines only. Debug output
therefore goes to stderr and the per-store operations log goes to a file.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Union

OPS_LOG_FILENAME = "memorypilot-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

PACKAGE_LOGGER = "memorypilot"

# HTTP client loggers used by the Ollama provider
_NOISY_LOGGERS = ("urllib3", "requests")

_DEBUG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_OPS_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_quiet_mode(quiet: bool = True):
    """Silence Python warnings and HTTP client chatter unless debugging."""
    if not quiet:
        return
    warnings.filterwarnings("ignore")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        for h in logger.handlers
    )


def enable_debug_mode():
    """Send DEBUG records from memorypilot and its HTTP client to stderr."""
    warnings.filterwarnings("default")
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root):
        stderr = logging.StreamHandler(sys.stderr)
        stderr.setLevel(logging.DEBUG)
        stderr.setFormatter(logging.Formatter(_DEBUG_FORMAT, datefmt="%H:%M:%S"))
        root.addHandler(stderr)
    for name in (PACKAGE_LOGGER, *_NOISY_LOGGERS):
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(store_path: Union[str, Path]) -> RotatingFileHandler:
    """
    Attach a rotating operations log for one store.

    Records INFO and above from the ``memorypilot`` logger into
    ``{store_path}/memorypilot-ops.log``, whether or not debug mode is on.
    The caller keeps the handler and passes it to ``remove_ops_log``.
    """
    path = Path(store_path) / OPS_LOG_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)

    ops = RotatingFileHandler(path, maxBytes=OPS_LOG_MAX_BYTES, backupCount=OPS_LOG_BACKUPS)
    ops.setLevel(logging.INFO)
    ops.setFormatter(logging.Formatter(_OPS_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    package = logging.getLogger(PACKAGE_LOGGER)
    package.addHandler(ops)
    if package.level == logging.NOTSET or package.level > logging.INFO:
        package.setLevel(logging.INFO)
    return ops


def remove_ops_log(handler: RotatingFileHandler) -> None:
    """Detach and close a handler returned by configure_ops_log."""
    logging.getLogger(PACKAGE_LOGGER).removeHandler(handler)
    handler.close()
