"""
MCP stdio server for memorypilot: memory tools for AI coding assistants.

Speaks line-delimited JSON-RPC 2.0 over a pair of text streams. Requests
are handled strictly one at a time; a request (including its embedding
call) finishes before the next line is read.

Usage:
    memorypilot mcp                              # stdio server (via CLI)
    {"command": "memorypilot", "args": ["mcp"]}      # assistant MCP config
"""

import logging
import math
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, TextIO

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as SchemaError

from . import __version__
from .api import MemoryPilot
from .errors import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND, MemoryPilotError
from .jsonrpc import Request, RequestError, decode_request, encode_error, encode_result
from .types import (
    DEFAULT_LIMIT,
    Memory,
    MemoryScope,
    MemoryType,
    RecallFilters,
    Stats,
)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "memorypilot"

RECALL_TOOL = "memorypilot_recall"
REMEMBER_TOOL = "memorypilot_remember"
STATUS_TOOL = "memorypilot_status"


# ---------------------------------------------------------------------------
# Tool arguments
# ---------------------------------------------------------------------------


class RecallArgs(BaseModel):
    """Arguments of the recall tool."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    query: str = Field(description="What to search for")
    limit: Optional[int] = Field(default=None, description="Maximum results")
    types: Optional[list[MemoryType]] = Field(
        default=None, alias="type", description="Only these memory types",
    )
    topics: Optional[list[str]] = Field(default=None, description="Only memories with all these topics")
    scope: Optional[MemoryScope] = Field(default=None, description="Only this scope")
    project: Optional[str] = Field(default=None, description="Only this project")

    @field_validator("limit", mode="before")
    @classmethod
    def _lenient_limit(cls, value: Any) -> Optional[int]:
        # Unusable limits fall back to the default instead of failing the call
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)) and math.isfinite(value):
            if value == int(value) and value > 0:
                return int(value)
        return None

    @field_validator("types", mode="before")
    @classmethod
    def _single_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    def filters(self) -> RecallFilters:
        return RecallFilters(
            types=list(self.types or []),
            topics=list(self.topics or []),
            scope=self.scope,
            project=self.project,
        )


class RememberArgs(BaseModel):
    """Arguments of the remember tool."""
    model_config = ConfigDict(extra="ignore")

    content: str = Field(description="What to remember")
    type: MemoryType = Field(default=MemoryType.FACT, description="Memory type")
    topics: list[str] = Field(default_factory=list, description="Topics/tags for this memory")
    scope: MemoryScope = Field(default=MemoryScope.PERSONAL, description="Visibility")
    project: Optional[str] = Field(default=None, description="Project this memory belongs to")
    importance: float = Field(default=1.0, ge=0.0, le=1.0)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    @field_validator("type", "scope", mode="before")
    @classmethod
    def _blank_is_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or value == "":
            return cls.model_fields[info.field_name].default
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("topics", mode="before")
    @classmethod
    def _null_topics(cls, value: Any) -> Any:
        return [] if value is None else value


class StatusArgs(BaseModel):
    """The status tool takes no arguments."""
    model_config = ConfigDict(extra="ignore")


_MEMORY_TYPES = [t.value for t in MemoryType]

TOOLS: list[dict[str, Any]] = [
    {
        "name": RECALL_TOOL,
        "description": "Search your memory for relevant context",
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "What to search for"},
                "limit": {"type": "number", "description": "Maximum results", "default": DEFAULT_LIMIT},
                "type": {
                    "type": "array",
                    "description": "Only return memories of these types",
                    "items": {"type": "string", "enum": _MEMORY_TYPES},
                },
                "topics": {
                    "type": "array",
                    "description": "Only return memories tagged with all of these topics",
                    "items": {"type": "string"},
                },
                "scope": {
                    "type": "string",
                    "description": "Only return memories with this scope",
                    "enum": [s.value for s in MemoryScope],
                },
                "project": {"type": "string", "description": "Only return memories of this project"},
            },
            "required": ["query"],
        },
    },
    {
        "name": REMEMBER_TOOL,
        "description": "Explicitly remember something important",
        "inputSchema": {
            "type": "object",
            "properties": {
                "content": {"type": "string", "description": "What to remember"},
                "type": {
                    "type": "string",
                    "description": "Memory type",
                    "enum": _MEMORY_TYPES,
                    "default": MemoryType.FACT.value,
                },
                "topics": {
                    "type": "array",
                    "description": "Topics/tags for this memory",
                    "items": {"type": "string"},
                },
                "scope": {
                    "type": "string",
                    "description": "Who the memory is for",
                    "enum": [s.value for s in MemoryScope],
                    "default": MemoryScope.PERSONAL.value,
                },
                "project": {"type": "string", "description": "Project this memory belongs to"},
                "importance": {
                    "type": "number", "description": "Ranking weight, 0 to 1",
                    "minimum": 0, "maximum": 1, "default": 1.0,
                },
                "confidence": {
                    "type": "number", "description": "How sure you are, 0 to 1",
                    "minimum": 0, "maximum": 1, "default": 1.0,
                },
            },
            "required": ["content"],
        },
    },
    {
        "name": STATUS_TOOL,
        "description": "Get memory statistics",
        "inputSchema": {"type": "object", "properties": {}},
    },
]


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_memories(query: str, memories: list[Memory]) -> str:
    """Numbered plain-text listing of recalled memories."""
    if not memories:
        return f'No memories found for: "{query}"'
    lines = [f"Found {len(memories)} memories:", ""]
    for i, m in enumerate(memories, 1):
        lines.append(f"{i}. [{m.type.value}] {m.summary}")
        lines.append(f"   {m.content}")
        if m.topics:
            lines.append(f"   Topics: {', '.join(m.topics)}")
        lines.append("")
    return "\n".join(lines)


def render_stats(stats: Stats) -> str:
    """Human-readable store summary."""
    lines = [
        "MemoryPilot Status",
        "",
        f"Total memories: {stats.total_memories}",
        f"Projects: {stats.project_count}",
        f"With embeddings: {stats.embedded_count}",
        "",
        "By type:",
    ]
    for type_name, count in stats.by_type.items():
        lines.append(f"  {type_name}: {count}")
    return "\n".join(lines) + "\n"


def _text_result(text: str, structured: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    result: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
    if structured is not None:
        result["structuredContent"] = structured
    return result


def _schema_message(error: SchemaError) -> str:
    problems = []
    for err in error.errors():
        where = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        problems.append(f"{where}: {err.get('msg', 'invalid')}")
    return "Invalid arguments: " + "; ".join(problems)


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


def _input_lines(stream: TextIO) -> Iterator[str]:
    """
    Yield lines from ``stream`` until end of input.

    Streams with a byte buffer are read as bytes and decoded per line, so
    invalid UTF-8 turns into U+FFFD and fails JSON parsing on that line alone.
    """
    raw = getattr(stream, "buffer", None)
    if raw is None:
        yield from iter(stream.readline, "")
        return
    for chunk in iter(raw.readline, b""):
        yield chunk.decode("utf-8", errors="replace")


@dataclass
class ServerOptions:
    """
    Everything the server touches outside the MemoryPilot.

    Lives as long as the server. MCPServer writes log records to ``logger``
    and installs no handlers of its own.
    """
    input: TextIO = field(default_factory=lambda: sys.stdin)
    output: TextIO = field(default_factory=lambda: sys.stdout)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(__name__))


class MCPServer:
    """Sequential JSON-RPC request loop over text streams."""

    def __init__(self, pilot: MemoryPilot, options: Optional[ServerOptions] = None):
        self._pilot = pilot
        self._options = options or ServerOptions()
        self._log = self._options.logger
        self._methods: dict[str, Callable[[Request], Any]] = {
            "initialize": self._initialize,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }
        self._tools: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            RECALL_TOOL: self._recall,
            REMEMBER_TOOL: self._remember,
            STATUS_TOOL: self._status,
        }

    def run(self) -> None:
        """
        Announce the server, then serve requests until end of input.

        The MemoryPilot is closed when the loop exits, however it exits.
        """
        try:
            self._send(encode_result(None, self._server_info()))
            for line in _input_lines(self._options.input):
                response = self.handle_line(line)
                if response is not None:
                    self._send(response)
            self._log.info("Input closed, MCP server stopping")
        finally:
            self._pilot.close()

    def handle_line(self, line: str) -> Optional[str]:
        """Process one input line; return the response line, or None if there is none."""
        if not line.strip():
            return None

        try:
            request = decode_request(line)
        except RequestError as e:
            self._log.debug("Rejected request: %s", e.message)
            return encode_error(e.id, e.code, e.message)

        handler = self._methods.get(request.method)
        if handler is None:
            if request.is_notification and request.method.startswith("notifications/"):
                self._log.debug("Notification %s", request.method)
                return None
            return encode_error(request.id, METHOD_NOT_FOUND, "Method not found")

        try:
            result = handler(request)
        except RequestError as e:
            return encode_error(request.id, e.code, e.message)
        except SchemaError as e:
            return encode_error(request.id, INVALID_PARAMS, _schema_message(e))
        except MemoryPilotError as e:
            self._log.info("%s failed: %s", request.method, e)
            return encode_error(request.id, e.code, str(e))
        except Exception as e:
            self._log.exception("Internal error handling %s", request.method)
            return encode_error(request.id, INTERNAL_ERROR, f"Internal error: {e}")
        return encode_result(request.id, result)

    def _send(self, line: str) -> None:
        out = self._options.output
        out.write(line + "\n")
        out.flush()

    # -- Methods --

    def _server_info(self) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
            "capabilities": {"tools": {}},
        }

    def _initialize(self, request: Request) -> dict[str, Any]:
        return self._server_info()

    def _tools_list(self, request: Request) -> dict[str, Any]:
        return {"tools": TOOLS}

    def _tools_call(self, request: Request) -> dict[str, Any]:
        name = request.params.get("name")
        arguments = request.params.get("arguments")
        if not isinstance(name, str):
            raise RequestError(INVALID_PARAMS, "Invalid params")
        if arguments is None:
            arguments = {}
        elif not isinstance(arguments, dict):
            raise RequestError(INVALID_PARAMS, "Invalid params")

        tool = self._tools.get(name)
        if tool is None:
            raise RequestError(INVALID_PARAMS, f"Unknown tool: {name}")
        self._log.debug("Calling tool %s", name)
        return tool(arguments)

    # -- Tools --

    def _recall(self, arguments: dict[str, Any]) -> dict[str, Any]:
        args = RecallArgs.model_validate(arguments)
        result = self._pilot.recall(args.query, limit=args.limit, filters=args.filters())
        return _text_result(
            render_memories(args.query, result.memories),
            {
                "mode": result.mode,
                "memories": [m.to_dict() for m in result.memories],
            },
        )

    def _remember(self, arguments: dict[str, Any]) -> dict[str, Any]:
        args = RememberArgs.model_validate(arguments)
        result = self._pilot.remember(
            args.content,
            type=args.type,
            topics=args.topics,
            scope=args.scope,
            project=args.project,
            importance=args.importance,
            confidence=args.confidence,
            source_reference="mcp",
        )
        memory = result.memory
        text = (
            f"Remembered: {memory.content}\n"
            f"   Type: {memory.type.value}\n"
            f"   ID: {memory.id}"
        )
        return _text_result(text, {"id": memory.id, "embedded": result.embedded})

    def _status(self, arguments: dict[str, Any]) -> dict[str, Any]:
        StatusArgs.model_validate(arguments)
        stats = self._pilot.status()
        return _text_result(render_stats(stats), stats.to_dict())


def main(pilot: Optional[MemoryPilot] = None) -> None:
    """Serve MCP on stdin/stdout until stdin closes."""
    MCPServer(pilot or MemoryPilot()).run()
