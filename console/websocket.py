"""
Mosquitto Manager - WebSocket Manager
=======================================
Pushes live broker activity to every connected browser.

Message types (server -> client):
    - "clients" : full list of connected broker clients (session tracker)
    - "stats"   : full broker stats snapshot ($SYS aggregator)
    - "logs"    : one raw broker log line

Message format:
    {
        "type": "clients",
        "data": [ ... ],
        "timestamp": "2026-02-08T12:00:00+00:00"
    }

Snapshots are always complete; there is no incremental diffing.
"""

import json
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from brokerctl.stats import BrokerStatsSnapshot
from brokerctl.tracker import ClientSession


class WebSocketManager:
    """
    Manages WebSocket client connections and message broadcasting.

    Attributes:
        active_connections: Set of currently connected WebSocket instances.
    """

    def __init__(self):
        self.active_connections: set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a new WebSocket connection and add it to the active set."""
        await websocket.accept()
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket) -> None:
        self.active_connections.discard(websocket)

    async def send_to(self, websocket: WebSocket, message: dict[str, Any]) -> None:
        """Send one message to a single client (initial state on connect)."""
        await websocket.send_text(self._encode(message))

    async def broadcast(self, message: dict[str, Any]) -> None:
        """
        Send a message to all connected WebSocket clients.

        Clients that fail to receive are dropped from the active set.

        Args:
            message: Dictionary with 'type' and 'data' keys.
        """
        payload = self._encode(message)

        disconnected = set()
        for ws in list(self.active_connections):
            try:
                await ws.send_text(payload)
            except Exception:
                # Client went away mid-send
                disconnected.add(ws)

        self.active_connections -= disconnected

    async def send_clients(self, sessions: tuple[ClientSession, ...]) -> None:
        await self.broadcast(clients_message(sessions))

    async def send_stats(self, snapshot: BrokerStatsSnapshot) -> None:
        await self.broadcast(stats_message(snapshot))

    async def send_log(self, line: str) -> None:
        await self.broadcast({"type": "logs", "data": line})

    @property
    def client_count(self) -> int:
        return len(self.active_connections)

    @staticmethod
    def _encode(message: dict[str, Any]) -> str:
        if "timestamp" not in message:
            message["timestamp"] = datetime.now(timezone.utc).isoformat()
        return json.dumps(message, ensure_ascii=False)


def clients_message(sessions: tuple[ClientSession, ...]) -> dict[str, Any]:
    return {"type": "clients", "data": [s.to_dict() for s in sessions]}


def stats_message(snapshot: BrokerStatsSnapshot) -> dict[str, Any]:
    return {"type": "stats", "data": snapshot.to_dict()}
