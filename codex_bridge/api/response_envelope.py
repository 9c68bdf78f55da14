"""
Response Envelope Utilities
===========================
Builders for the JSON-RPC 2.0 shaped envelopes exchanged with clients.

- response:     {"jsonrpc", "id", "result"}
- error:        {"jsonrpc", "id", "error": {"code", "message", "data"?}}
- notification: {"jsonrpc", "method", "params"}   (no id, never answered)

The correlation id is echoed exactly as received, including ``None``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .error_mapper import ErrorInfo


JSONRPC_VERSION = "2.0"


def result_response(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "result": result,
    }


def error_response(request_id: Any, error: ErrorInfo, data: Optional[Any] = None) -> Dict[str, Any]:
    """
    Build an error envelope.

    ``data`` is only included when given, so clients matching on the exact
    ``{code, message}`` shape are not surprised by an empty field.
    """
    body: Dict[str, Any] = {"code": int(error.code), "message": error.message}
    if data is not None:
        body["data"] = data
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": body,
    }


def notification(method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
        "params": params,
    }


def stream_notification(session_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap an upstream payload for delivery to the session's owner."""
    params = {"sessionId": session_id}
    params.update(payload)
    # The session id always wins over a same-named upstream field
    params["sessionId"] = session_id
    return notification("stream", params)
