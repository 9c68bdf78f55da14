"""
Error Mapper
============
Centralizes the fixed registry of JSON-RPC error codes and maps an error
code plus an optional message/exception to the ``{code, message}`` pair
that goes on the wire.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Dict


class ErrorCode(IntEnum):
    """JSON-RPC error codes used by the bridge"""

    # JSON-RPC 2.0 reserved codes
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Application codes
    SESSION_CREATE_FAILED = -32001
    SESSION_NOT_FOUND = -32002
    CONNECTION_UNAVAILABLE = -32003


@dataclass(frozen=True)
class ErrorInfo:
    code: int
    message: str


DEFAULT_ERRORS: Dict[ErrorCode, ErrorInfo] = {
    ErrorCode.PARSE_ERROR: ErrorInfo(ErrorCode.PARSE_ERROR, "Parse error"),
    ErrorCode.INVALID_REQUEST: ErrorInfo(ErrorCode.INVALID_REQUEST, "Invalid request"),
    ErrorCode.METHOD_NOT_FOUND: ErrorInfo(ErrorCode.METHOD_NOT_FOUND, "Method not found"),
    ErrorCode.INVALID_PARAMS: ErrorInfo(ErrorCode.INVALID_PARAMS, "Invalid params"),
    ErrorCode.INTERNAL_ERROR: ErrorInfo(ErrorCode.INTERNAL_ERROR, "Internal error"),
    ErrorCode.SESSION_CREATE_FAILED: ErrorInfo(ErrorCode.SESSION_CREATE_FAILED, "Failed to create session"),
    ErrorCode.SESSION_NOT_FOUND: ErrorInfo(ErrorCode.SESSION_NOT_FOUND, "Session not found"),
    ErrorCode.CONNECTION_UNAVAILABLE: ErrorInfo(ErrorCode.CONNECTION_UNAVAILABLE, "Session connection not available"),
}


class ErrorMapper:
    """Maps error codes / exceptions to ErrorInfo"""

    def __init__(self, overrides: Optional[Dict[ErrorCode, ErrorInfo]] = None):
        self._map = dict(DEFAULT_ERRORS)
        if overrides:
            self._map.update(overrides)

    def map(self, error_code: int, message: Optional[str] = None, exc: Optional[BaseException] = None) -> ErrorInfo:
        base = self._map.get(error_code)
        if not base:
            # Unknown code => generic internal error
            base = self._map[ErrorCode.INTERNAL_ERROR]
        if message:
            return ErrorInfo(code=int(base.code), message=message)
        if exc and str(exc).strip():
            return ErrorInfo(code=int(base.code), message=str(exc))
        return ErrorInfo(code=int(base.code), message=base.message)
