"""
Error taxonomy and error logging for memorypilot.

Every error kind carries the JSON-RPC code the protocol adapter reports
for it. UnavailableError never reaches the adapter: the embedding
gateway absorbs it and callers fall back to keyword search.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path

# JSON-RPC 2.0 error codes used on the wire
PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32000


class MemoryPilotError(Exception):
    """Base class for all memorypilot errors."""
    code = INTERNAL_ERROR


class ValidationError(MemoryPilotError):
    """Malformed input to a write (empty content, unknown type, bad range)."""
    code = INVALID_PARAMS


class NotFoundError(MemoryPilotError):
    """Reference to an unknown memory id."""
    code = INVALID_PARAMS

    def __init__(self, memory_id: str):
        super().__init__(f"Memory not found: {memory_id}")
        self.memory_id = memory_id


class InvalidQueryError(MemoryPilotError):
    """Empty or unusable search query."""
    code = INVALID_PARAMS


class UnavailableError(MemoryPilotError):
    """The embedding provider could not be reached, timed out, or answered garbage."""


class InternalError(MemoryPilotError):
    """Storage I/O failure or corrupt stored data."""


ERROR_LOG_FILENAME = "memorypilot-errors.log"


def error_log_path() -> Path:
    """Where CLI tracebacks go: the store named by MEMORYPILOT_STORE_PATH, else ~/.memorypilot."""
    store = os.environ.get("MEMORYPILOT_STORE_PATH")
    base = Path(store).expanduser() if store else Path.home() / ".memorypilot"
    return base / ERROR_LOG_FILENAME


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Append the traceback being handled to the error log.

    Called from an ``except`` block so the CLI can print one line and
    point at the file. A log that can't be written is skipped silently.

    Returns:
        The error log path, whether or not the write succeeded
    """
    path = error_log_path()
    header = f"[{datetime.now(timezone.utc).isoformat()}]"
    if context:
        header += f" {context}"
    entry = (
        f"\n{'-' * 72}\n"
        f"{header} {type(exc).__name__}: {exc}\n"
        f"{traceback.format_exc()}"
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # 0600: tracebacks can quote memory content
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a", encoding="utf-8") as f:
            f.write(entry)
    except OSError:
        pass
    return path
