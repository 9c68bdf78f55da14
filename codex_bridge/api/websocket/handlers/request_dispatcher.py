"""
RequestDispatcher - Client JSON-RPC request handling
====================================================
One dispatch per inbound client request, keyed by method name:

    session.create  -> {sessionId}
    session.close   -> {closed: true, sessionId}
    send            -> {sent: true, sessionId, messageId}
    stream          -> {streaming: true, sessionId, status: "active"}

Handlers raise BridgeError subclasses; dispatch() turns every outcome into a
response envelope echoing the request id, so callers never see an exception.
"""

import itertools
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from ....core.exceptions import (
    BridgeError,
    ConnectionUnavailableError,
    InvalidParamsError,
    SessionNotFoundError,
)
from ....core.logger import StructuredLogger
from ...error_mapper import ErrorCode, ErrorMapper
from ...response_envelope import error_response, result_response
from ..broadcasters.upstream_router import UpstreamMessageRouter
from ..lifecycle.session_registry import SessionRegistry

Handler = Callable[[str, Dict[str, Any]], Awaitable[Dict[str, Any]]]


class RequestDispatcher:
    """
    Routes client requests to method handlers.

    Dependencies:
    - session_registry: session create/lookup/close
    - upstream_router: started for every new session
    - error_mapper: error code -> {code, message}
    """

    def __init__(self,
                 session_registry: SessionRegistry,
                 upstream_router: UpstreamMessageRouter,
                 error_mapper: Optional[ErrorMapper] = None,
                 logger: Optional[StructuredLogger] = None):
        self.session_registry = session_registry
        self.upstream_router = upstream_router
        self.error_mapper = error_mapper or ErrorMapper()
        self.logger = logger

        self.handlers: Dict[str, Handler] = {}

        # Upstream message ids; strictly increasing for the dispatcher's lifetime
        self._message_ids = itertools.count(1)

        # Statistics
        self.requests_dispatched = 0
        self.requests_failed = 0

        self._register_default_handlers()

    def register_handler(self, method: str, handler: Handler):
        """
        Register a handler for a JSON-RPC method.

        Args:
            method: Method name
            handler: Async handler (client_id, params) -> result dict
        """
        self.handlers[method] = handler

    def _register_default_handlers(self):
        self.register_handler("session.create", self.handle_session_create)
        self.register_handler("session.close", self.handle_session_close)
        self.register_handler("send", self.handle_send)
        self.register_handler("stream", self.handle_stream)

    async def dispatch(self, client_id: str, request: Any) -> Dict[str, Any]:
        """
        Dispatch one decoded request.

        Args:
            client_id: Requesting client
            request: Decoded JSON value (normally a JSON-RPC request object)

        Returns:
            JSON-RPC response envelope (result or error)
        """
        self.requests_dispatched += 1

        if not isinstance(request, dict):
            self.requests_failed += 1
            info = self.error_mapper.map(ErrorCode.INVALID_REQUEST,
                                         f"Invalid request: expected object, got {type(request).__name__}")
            return error_response(None, info)

        request_id = request.get("id")
        method = request.get("method")
        params = request.get("params")
        if not isinstance(params, dict):
            params = {}

        if self.logger:
            self.logger.info("request_dispatcher.request", {
                "client_id": client_id,
                "method": method,
                "request_id": request_id
            })

        handler = self.handlers.get(method) if isinstance(method, str) else None
        if handler is None:
            self.requests_failed += 1
            info = self.error_mapper.map(ErrorCode.METHOD_NOT_FOUND, f"Method not found: {method}")
            return error_response(request_id, info)

        start_time = time.time()
        try:
            result = await handler(client_id, params)
        except BridgeError as e:
            self.requests_failed += 1
            if self.logger:
                self.logger.warning("request_dispatcher.request_failed", {
                    "client_id": client_id,
                    "method": method,
                    "request_id": request_id,
                    "error_code": int(e.error_code),
                    "error": e.message
                })
            return error_response(request_id, self.error_mapper.map(e.error_code, exc=e))
        except Exception as e:
            self.requests_failed += 1
            if self.logger:
                self.logger.error("request_dispatcher.handler_error", {
                    "client_id": client_id,
                    "method": method,
                    "request_id": request_id,
                    "error": str(e),
                    "error_type": type(e).__name__
                }, exc_info=True)
            info = self.error_mapper.map(ErrorCode.INTERNAL_ERROR, f"Internal error: {e}")
            return error_response(request_id, info)

        if self.logger:
            self.logger.debug("request_dispatcher.request_completed", {
                "client_id": client_id,
                "method": method,
                "request_id": request_id,
                "processing_time_ms": (time.time() - start_time) * 1000
            })
        return result_response(request_id, result)

    # ── Method handlers ─────────────────────────────────────────

    async def handle_session_create(self, client_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        record = await self.session_registry.create(client_id)
        self.upstream_router.attach(record)
        return {"sessionId": record.session_id}

    async def handle_session_close(self, client_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        session_id = self._require_session_id(params)
        await self.session_registry.close(session_id)
        return {"closed": True, "sessionId": session_id}

    async def handle_send(self, client_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        session_id = self._require_session_id(params)

        message = params.get("message")
        if message is None:
            raise InvalidParamsError("Missing message parameter")
        if not isinstance(message, dict):
            raise InvalidParamsError("Invalid message parameter: expected object")

        record = self.session_registry.lookup(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)

        upstream = record.upstream
        if upstream is None or upstream.state != State.OPEN:
            raise ConnectionUnavailableError(session_id)

        message_id = next(self._message_ids)
        outbound = dict(message)
        outbound["id"] = message_id

        try:
            await upstream.send(json.dumps(outbound))
        except (ConnectionClosed, OSError) as e:
            raise ConnectionUnavailableError(
                session_id, f"Session connection not available: {e}"
            ) from e

        return {"sent": True, "sessionId": session_id, "messageId": message_id}

    async def handle_stream(self, client_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        # Streaming itself happens through the session; this only confirms it is live
        session_id = self._require_session_id(params)
        if self.session_registry.lookup(session_id) is None:
            raise SessionNotFoundError(session_id)
        return {"streaming": True, "sessionId": session_id, "status": "active"}

    @staticmethod
    def _require_session_id(params: Dict[str, Any]) -> str:
        session_id = params.get("sessionId")
        if session_id is None or session_id == "":
            raise InvalidParamsError("Missing sessionId parameter")
        if not isinstance(session_id, str):
            raise InvalidParamsError("Invalid sessionId parameter: expected string")
        return session_id

    def get_stats(self) -> Dict[str, Any]:
        return {
            "requests_dispatched": self.requests_dispatched,
            "requests_failed": self.requests_failed,
            "registered_methods": list(self.handlers.keys()),
        }
