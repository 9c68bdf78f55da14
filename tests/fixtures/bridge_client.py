"""
Protocol-level client for end-to-end tests.

Keeps reading in the background so responses, stream notifications and
server notifications can all be awaited by predicate.
"""

import asyncio
import itertools
import json
import time
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed


class BridgeClient:
    def __init__(self, url: str):
        self.url = url
        self.messages: List[Dict[str, Any]] = []
        self.client_id: Optional[str] = None
        self.ws = None
        self._reader: Optional[asyncio.Task] = None
        self._ids = itertools.count(1)

    async def connect(self) -> "BridgeClient":
        self.ws = await websockets.connect(self.url)
        self._reader = asyncio.create_task(self._read())
        connected = await self.wait_for(lambda m: m.get("method") == "connected")
        self.client_id = connected["params"]["clientId"]
        return self

    async def _read(self):
        try:
            async for raw in self.ws:
                self.messages.append(json.loads(raw))
        except ConnectionClosed:
            pass

    async def wait_for(self, predicate: Callable[[Dict[str, Any]], bool], timeout: float = 3.0) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        while True:
            for message in self.messages:
                if predicate(message):
                    return message
            if time.monotonic() > deadline:
                raise AssertionError(f"no matching message within {timeout}s; got {self.messages}")
            await asyncio.sleep(0.01)

    async def send_request(self, method: str, params: Optional[Dict[str, Any]] = None,
                           request_id: Any = None) -> Any:
        """Send without waiting; returns the request id used."""
        if request_id is None:
            request_id = next(self._ids)
        request: Dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": request_id}
        if params is not None:
            request["params"] = params
        await self.ws.send(json.dumps(request))
        return request_id

    async def request(self, method: str, params: Optional[Dict[str, Any]] = None,
                      request_id: Any = None, timeout: float = 3.0) -> Dict[str, Any]:
        request_id = await self.send_request(method, params, request_id)
        return await self.response(request_id, timeout)

    async def response(self, request_id: Any, timeout: float = 3.0) -> Dict[str, Any]:
        return await self.wait_for(lambda m: "method" not in m and m.get("id") == request_id, timeout)

    def streams(self, session_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            m for m in self.messages
            if m.get("method") == "stream" and (session_id is None or m["params"]["sessionId"] == session_id)
        ]

    async def close(self):
        if self.ws is not None:
            await self.ws.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)

    async def wait_closed(self, timeout: float = 3.0):
        await asyncio.wait_for(asyncio.gather(self._reader, return_exceptions=True), timeout)
