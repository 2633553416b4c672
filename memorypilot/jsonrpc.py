"""
Line-delimited JSON-RPC 2.0 codec.

One request per input line, one response per output line. The request
id is opaque: it is echoed back exactly as decoded, null included.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import INVALID_PARAMS, METHOD_NOT_FOUND, PARSE_ERROR

JSONRPC_VERSION = "2.0"


class RequestError(Exception):
    """A request that can't be dispatched; becomes an error response."""

    def __init__(self, code: int, message: str, id: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.id = id


@dataclass
class Request:
    """A decoded request envelope."""
    method: str
    id: Any = None
    params: dict[str, Any] = field(default_factory=dict)
    has_id: bool = True

    @property
    def is_notification(self) -> bool:
        return not self.has_id


def decode_request(line: str) -> Request:
    """
    Decode one request line.

    Raises:
        RequestError: -32700 for invalid JSON or a non-object payload,
            -32601 for a missing method, -32602 for non-object params
    """
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise RequestError(PARSE_ERROR, "Parse error") from None
    if not isinstance(data, dict):
        raise RequestError(PARSE_ERROR, "Parse error")

    request_id = data.get("id")
    method = data.get("method")
    if not isinstance(method, str) or not method:
        raise RequestError(METHOD_NOT_FOUND, "Method not found", request_id)

    params = data.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, dict):
        raise RequestError(INVALID_PARAMS, "Invalid params", request_id)

    return Request(method=method, id=request_id, params=params, has_id="id" in data)


def encode_result(id: Any, result: Any) -> str:
    """Encode a success response as a single line (no trailing newline)."""
    return _dumps({"jsonrpc": JSONRPC_VERSION, "id": id, "result": result})


def encode_error(id: Any, code: int, message: str, data: Optional[Any] = None) -> str:
    """Encode an error response as a single line (no trailing newline)."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return _dumps({"jsonrpc": JSONRPC_VERSION, "id": id, "error": error})


def _dumps(payload: dict[str, Any]) -> str:
    # json.dumps escapes newlines inside strings, so the output is one line
    return json.dumps(payload, ensure_ascii=False, default=str)
