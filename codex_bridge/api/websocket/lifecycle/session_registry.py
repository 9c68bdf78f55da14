"""
SessionRegistry - Session -> upstream connection mapping
========================================================
The only place sessions are created, looked up or destroyed.

Session lifecycle:
1. create(client_id) opens the upstream connection first; the record only
   becomes visible once the connection is up and the owner is still open
2. lookup(session_id) is used by every request that targets a session
3. close(session_id) / close_all_for_client(client_id) / close_all() remove
   the record and then close the upstream connection
4. discard(session_id, upstream) removes a record whose upstream already
   dropped (the router calls this; the session is deleted, not kept around)

Concurrency: every mutation of ``_sessions`` is a synchronous section. The
only awaits are the upstream connect (before insertion) and the upstream
close (after removal), so no lock is needed on a single event loop.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from websockets.exceptions import ConnectionClosed

from ....core.exceptions import ClientGoneError
from ....core.logger import StructuredLogger
from ....infrastructure.upstream.connector import UpstreamConnector
from .client_registry import ClientRegistry


@dataclass
class SessionRecord:
    session_id: str
    client_id: str
    upstream: Optional[Any]  # websockets ClientConnection
    created_at: float
    reader_task: Optional[asyncio.Task] = None
    messages_forwarded: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "client_id": self.client_id,
            "created_at": self.created_at,
            "messages_forwarded": self.messages_forwarded,
        }


class SessionRegistry:
    """Owns the session id -> SessionRecord mapping"""

    def __init__(self,
                 connector: UpstreamConnector,
                 client_registry: ClientRegistry,
                 logger: Optional[StructuredLogger] = None):
        """
        Args:
            connector: Opens one upstream connection per session
            client_registry: Used to confirm the owner is still open before insertion
            logger: Optional logger for diagnostics
        """
        self.connector = connector
        self.client_registry = client_registry
        self.logger = logger

        self._sessions: Dict[str, SessionRecord] = {}
        # Every id ever issued; ids are never reused within a process
        self._issued_ids: Set[str] = set()

        self.total_created = 0
        self.total_closed = 0

    def _generate_session_id(self) -> str:
        session_id = f"session-{uuid.uuid4().hex[:8]}"
        while session_id in self._issued_ids:
            session_id = f"session-{uuid.uuid4().hex[:8]}"
        self._issued_ids.add(session_id)
        return session_id

    async def create(self, client_id: str) -> SessionRecord:
        """
        Create a session for a client.

        Raises:
            UpstreamUnavailableError: upstream connect failed or timed out
            ClientGoneError: the owner disconnected while the connect was in flight
        """
        session_id = self._generate_session_id()
        upstream = await self.connector.connect()

        if not self.client_registry.is_open(client_id):
            # Owner went away during the handshake; never insert an orphan
            if self.logger:
                self.logger.info("session_registry.owner_gone_during_create", {
                    "session_id": session_id,
                    "client_id": client_id
                })
            await self._close_upstream(session_id, upstream)
            raise ClientGoneError(client_id)

        record = SessionRecord(
            session_id=session_id,
            client_id=client_id,
            upstream=upstream,
            created_at=time.time(),
        )
        self._sessions[session_id] = record
        self.total_created += 1

        if self.logger:
            self.logger.info("session_registry.session_created", {
                "session_id": session_id,
                "client_id": client_id,
                "total_sessions": len(self._sessions)
            })
        return record

    def lookup(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(session_id)

    async def close(self, session_id: str) -> bool:
        """
        Close a session. Idempotent.

        Returns:
            True if the session existed, False if it was already gone
        """
        record = self._sessions.pop(session_id, None)
        if record is None:
            return False

        self.total_closed += 1
        self._stop_reader(record)
        await self._close_upstream(session_id, record.upstream)
        record.upstream = None

        if self.logger:
            self.logger.info("session_registry.session_closed", {
                "session_id": session_id,
                "client_id": record.client_id,
                "total_sessions": len(self._sessions)
            })
        return True

    async def close_all_for_client(self, client_id: str) -> int:
        """
        Close every session owned by a client.

        Iterates over a snapshot, so sessions created or closed concurrently
        never break the scan.

        Returns:
            Number of sessions actually closed by this call
        """
        owned = self.sessions_for_client(client_id)
        closed = 0
        for session_id in owned:
            if await self.close(session_id):
                closed += 1

        if closed and self.logger:
            self.logger.info("session_registry.client_sessions_closed", {
                "client_id": client_id,
                "closed": closed
            })
        return closed

    async def close_all(self) -> int:
        closed = 0
        for session_id in list(self._sessions.keys()):
            if await self.close(session_id):
                closed += 1
        return closed

    def discard(self, session_id: str, upstream: Any) -> bool:
        """
        Remove a session whose upstream connection dropped.

        Only removes the record if it still holds that very connection, so a
        late callback can never delete a different session.
        """
        record = self._sessions.get(session_id)
        if record is None or record.upstream is not upstream:
            return False

        del self._sessions[session_id]
        self.total_closed += 1
        record.upstream = None

        if self.logger:
            self.logger.info("session_registry.session_discarded", {
                "session_id": session_id,
                "client_id": record.client_id,
                "reason": "upstream_closed",
                "total_sessions": len(self._sessions)
            })
        return True

    def sessions_for_client(self, client_id: str) -> List[str]:
        return [sid for sid, record in list(self._sessions.items()) if record.client_id == client_id]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @staticmethod
    def _stop_reader(record: SessionRecord):
        task = record.reader_task
        record.reader_task = None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    async def _close_upstream(self, session_id: str, upstream: Any):
        if upstream is None:
            return
        try:
            await upstream.close()
        except (ConnectionClosed, OSError) as e:
            # Already closed or torn down underneath us
            if self.logger:
                self.logger.debug("session_registry.upstream_close_ignored", {
                    "session_id": session_id,
                    "error": str(e)
                })

    def get_stats(self) -> Dict[str, Any]:
        return {
            "active_sessions": len(self._sessions),
            "total_created": self.total_created,
            "total_closed": self.total_closed,
        }
