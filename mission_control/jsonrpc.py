from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

JSONRPC_VERSION = "2.0"


@dataclass
class JSONRPCError:
    code: int
    message: str
    data: Any = None


@dataclass
class JSONRPCResponse:
    id: str
    result: Any = None
    error: JSONRPCError | None = None


def build_request(request_id: str, method: str, params: Any = None) -> bytes:
    payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        payload["params"] = params
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def build_notification(method: str, params: Any = None) -> bytes:
    payload: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        payload["params"] = params
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def parse_response(frame: bytes | str) -> JSONRPCResponse | None:
    """Parse one inbound frame.

    Returns ``None`` for peer-initiated requests and notifications, which carry
    a ``method`` or no ``id``. Raises ``ValueError`` for anything that is not a
    JSON-RPC message.
    """
    try:
        payload = json.loads(frame)
    except RecursionError:
        raise ValueError("frame is nested too deeply") from None
    if not isinstance(payload, dict):
        raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
    if "method" in payload or payload.get("id") is None:
        return None

    request_id = payload["id"]
    if isinstance(request_id, bool) or not isinstance(request_id, (str, int)):
        raise ValueError(f"invalid response id {request_id!r}")

    raw_error = payload.get("error")
    if raw_error is not None:
        if not isinstance(raw_error, dict):
            raise ValueError("error member must be an object")
        code = raw_error.get("code")
        if isinstance(code, bool) or not isinstance(code, int):
            raise ValueError(f"invalid error code {code!r}")
        error = JSONRPCError(
            code=code,
            message=str(raw_error.get("message", "")),
            data=raw_error.get("data"),
        )
        return JSONRPCResponse(id=str(request_id), error=error)

    if "result" not in payload:
        raise ValueError("response carries neither result nor error")
    return JSONRPCResponse(id=str(request_id), result=payload["result"])
