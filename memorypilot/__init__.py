"""
memorypilot - persistent memory for AI coding assistants.

Stores short typed memories (decisions, patterns, facts, ...) in a local
SQLite store and recalls them with hybrid keyword + embedding search.
"""

__version__ = "0.1.0"

from .api import MemoryPilot, RecallResult, RememberResult
from .errors import (
    InternalError,
    InvalidQueryError,
    MemoryPilotError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from .types import Memory, MemoryScope, MemoryType, RecallFilters, RecallRequest, Source, SourceType, Stats

__all__ = [
    "MemoryPilot",
    "RecallResult",
    "RememberResult",
    "Memory",
    "MemoryType",
    "MemoryScope",
    "Source",
    "SourceType",
    "RecallFilters",
    "RecallRequest",
    "Stats",
    "MemoryPilotError",
    "ValidationError",
    "NotFoundError",
    "InvalidQueryError",
    "UnavailableError",
    "InternalError",
]
