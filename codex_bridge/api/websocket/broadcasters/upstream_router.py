"""
Upstream Message Router
=======================
Forwards messages arriving on a session's upstream connection to the
client that owns the session, wrapped in a ``stream`` notification:

    {"jsonrpc": "2.0", "method": "stream", "params": {"sessionId": ..., **payload}}

Delivery is best effort. Undecodable payloads, sessions that no longer exist
and owners that are gone or not open are dropped with a log entry; nothing is
buffered and nothing is retried.

When an upstream connection closes, its session is deleted from the registry.
"""

import asyncio
import json
from typing import Any, Dict, Optional, Union

from websockets.exceptions import ConnectionClosed

from ....core.logger import StructuredLogger
from ...response_envelope import stream_notification
from ..lifecycle.client_registry import ClientRegistry
from ..lifecycle.session_registry import SessionRecord, SessionRegistry


class UpstreamMessageRouter:
    """
    Pumps upstream messages to session owners.

    Usage:
        record = await session_registry.create(client_id)
        router.attach(record)   # starts the reader task for that session
    """

    def __init__(self,
                 session_registry: SessionRegistry,
                 client_registry: ClientRegistry,
                 logger: Optional[StructuredLogger] = None):
        self.session_registry = session_registry
        self.client_registry = client_registry
        self.logger = logger

        # Metrics
        self.total_forwarded = 0
        self.total_dropped = 0
        self.total_decode_errors = 0

    def attach(self, record: SessionRecord) -> asyncio.Task:
        """Start reading the session's upstream connection."""
        task = asyncio.create_task(
            self._read_upstream(record.session_id, record.upstream),
            name=f"upstream-reader-{record.session_id}"
        )
        record.reader_task = task
        return task

    async def _read_upstream(self, session_id: str, upstream: Any):
        close_code = None
        try:
            async for raw in upstream:
                try:
                    await self.route(session_id, raw)
                except Exception as e:
                    # One bad frame never ends the reader
                    self.total_dropped += 1
                    if self.logger:
                        self.logger.error("upstream_router.route_error", {
                            "session_id": session_id,
                            "error": str(e),
                            "error_type": type(e).__name__
                        }, exc_info=True)
        except ConnectionClosed as e:
            close_code = e.rcvd.code if e.rcvd else None
        finally:
            # Delete policy: a session never outlives its upstream connection
            if self.session_registry.discard(session_id, upstream):
                if self.logger:
                    self.logger.info("upstream_router.upstream_closed", {
                        "session_id": session_id,
                        "close_code": close_code
                    })

    async def route(self, session_id: str, raw: Union[str, bytes]) -> bool:
        """
        Deliver one upstream message to the session owner.

        Returns:
            True if the stream notification was written to the client
        """
        record = self.session_registry.lookup(session_id)
        if record is None:
            self.total_dropped += 1
            if self.logger:
                self.logger.debug("upstream_router.unknown_session", {"session_id": session_id})
            return False

        payload = self._decode(session_id, raw)
        if payload is None:
            self.total_dropped += 1
            return False

        if not self.client_registry.is_open(record.client_id):
            self.total_dropped += 1
            if self.logger:
                self.logger.debug("upstream_router.client_unavailable", {
                    "session_id": session_id,
                    "client_id": record.client_id
                })
            return False

        delivered = await self.client_registry.send(record.client_id, stream_notification(session_id, payload))
        if not delivered:
            self.total_dropped += 1
            if self.logger:
                self.logger.warning("upstream_router.delivery_failed", {
                    "session_id": session_id,
                    "client_id": record.client_id
                })
            return False

        record.messages_forwarded += 1
        self.total_forwarded += 1
        if self.logger:
            self.logger.debug("upstream_router.forwarded", {
                "session_id": session_id,
                "client_id": record.client_id
            })
        return True

    def _decode(self, session_id: str, raw: Union[str, bytes]) -> Optional[Dict[str, Any]]:
        try:
            if isinstance(raw, (bytes, bytearray)):
                raw = raw.decode('utf-8')
            payload = json.loads(raw)
        except (ValueError, RecursionError) as e:
            # ValueError covers JSONDecodeError and UnicodeDecodeError; deep nesting raises RecursionError
            self.total_decode_errors += 1
            if self.logger:
                self.logger.warning("upstream_router.decode_error", {
                    "session_id": session_id,
                    "error": str(e)
                })
            return None

        if not isinstance(payload, dict):
            self.total_decode_errors += 1
            if self.logger:
                self.logger.warning("upstream_router.unexpected_payload", {
                    "session_id": session_id,
                    "payload_type": type(payload).__name__
                })
            return None
        return payload

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_forwarded": self.total_forwarded,
            "total_dropped": self.total_dropped,
            "total_decode_errors": self.total_decode_errors,
        }
