"""
Scripted bridge client
======================
Walks through the happy path against a running bridge:

1. wait for the ``connected`` notification
2. ``session.create``
3. ``send`` a ``generate`` request into the session
4. print every ``stream`` notification
5. ``session.close`` after ``--duration`` seconds, then disconnect

Usage:
    codex-bridge-test-client
    codex-bridge-test-client --url ws://127.0.0.1:4601 --duration 2
"""

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Dict, List

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

DEFAULT_BRIDGE_URL = "ws://127.0.0.1:4501"


def _request(request_id: int, method: str, params: Dict[str, Any] = None) -> str:
    message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        message["params"] = params
    return json.dumps(message)


async def run_client(url: str, duration: float = 5.0, prompt: str = "Hello!", verbose: bool = True) -> List[Dict[str, Any]]:
    """
    Run the scripted exchange.

    Returns:
        Every message received from the bridge, in order
    """
    received: List[Dict[str, Any]] = []
    session_id = None

    def show(*parts):
        if verbose:
            print("[test-client]", *parts)

    show(f"Connecting to {url}...")
    async with websockets.connect(url) as ws:
        show("Connected")

        async def reader():
            nonlocal session_id
            async for raw in ws:
                msg = json.loads(raw)
                received.append(msg)
                show("Received:", json.dumps(msg, indent=2))

                if msg.get("method") == "connected":
                    show("Client ID:", msg["params"]["clientId"])
                    show("Creating session...")
                    await ws.send(_request(1, "session.create"))

                result = msg.get("result")
                if isinstance(result, dict) and "sessionId" in result and session_id is None:
                    session_id = result["sessionId"]
                    show("Session created:", session_id)
                    show("Sending message to Codex...")
                    await ws.send(_request(2, "send", {
                        "sessionId": session_id,
                        "message": {
                            "jsonrpc": "2.0",
                            "method": "generate",
                            "params": {"prompt": prompt},
                            "id": 1
                        }
                    }))

                if msg.get("method") == "stream":
                    show("Stream:", json.dumps(msg["params"].get("result")))

        reader_task = asyncio.create_task(reader())
        try:
            await asyncio.sleep(duration)
            if session_id:
                show("Closing session...")
                await ws.send(_request(3, "session.close", {"sessionId": session_id}))
            await asyncio.sleep(0.5)
        except ConnectionClosed:
            pass
        finally:
            reader_task.cancel()
            await asyncio.gather(reader_task, return_exceptions=True)

    show("Connection closed")
    return received


def main():
    parser = argparse.ArgumentParser(description="Scripted client for the Codex bridge")
    parser.add_argument("--url", default=os.environ.get("BRIDGE_URL", DEFAULT_BRIDGE_URL),
                        help="Bridge WebSocket URL (env: BRIDGE_URL)")
    parser.add_argument("--duration", type=float, default=5.0,
                        help="Seconds to wait before closing the session")
    parser.add_argument("--prompt", default="Hello!", help="Prompt sent in the generate request")
    args = parser.parse_args()

    try:
        asyncio.run(run_client(args.url, args.duration, args.prompt))
    except (OSError, WebSocketException) as e:
        print(f"[test-client] Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
