"""
Core Exceptions - Codex Bridge
==============================
Centralized exception definitions for the bridge.

Every exception that can reach a client carries the JSON-RPC error code it is
reported under; handlers raise, the dispatcher renders the envelope.
"""

from ..api.error_mapper import ErrorCode


class BridgeError(Exception):
    """Base exception for errors reported to a client as a JSON-RPC error."""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidParamsError(BridgeError):
    """
    Raised when a required parameter is missing or has the wrong shape.

    JSON-RPC: -32602
    """
    error_code = ErrorCode.INVALID_PARAMS


class UpstreamUnavailableError(BridgeError):
    """
    Raised when a new upstream connection cannot be opened in time.

    Covers connect timeouts, refused connections, handshake failures and
    invalid upstream URLs. Registry state is never changed when this is raised.

    JSON-RPC: -32001
    """
    error_code = ErrorCode.SESSION_CREATE_FAILED

    def __init__(self, url: str, reason: str, timed_out: bool = False):
        self.url = url
        self.reason = reason
        self.timed_out = timed_out
        super().__init__(f"Failed to create session: {reason}")


class ClientGoneError(BridgeError):
    """
    Raised when the owning client disconnected while its session was being created.

    JSON-RPC: -32001
    """
    error_code = ErrorCode.SESSION_CREATE_FAILED

    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"Failed to create session: client {client_id} disconnected")


class SessionNotFoundError(BridgeError):
    """
    Raised when a request references a session that does not exist.

    JSON-RPC: -32002
    """
    error_code = ErrorCode.SESSION_NOT_FOUND

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class ConnectionUnavailableError(BridgeError):
    """
    Raised when a session's upstream connection is not open or a write fails.

    JSON-RPC: -32003
    """
    error_code = ErrorCode.CONNECTION_UNAVAILABLE

    def __init__(self, session_id: str, message: str = None):
        self.session_id = session_id
        super().__init__(message or "Session connection not available")
