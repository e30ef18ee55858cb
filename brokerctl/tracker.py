"""
Mosquitto Manager - Live Session Tracker
==========================================
Reconstructs the set of connected broker clients from the broker log.

Line shapes (classify_line):

    CONNECT     "New client connected from 10.0.0.5:4410 as dev-123
                 (p2, c1, k60, u'alice')."
                "New client connected from 10.0.0.5 as dev-123 (c1, k60)."
    DISCONNECT  "Client dev-123 disconnected."
                "Client dev-123 closed its connection."
                "Client dev-123 has exceeded timeout, disconnecting."
    SUPERSEDED  "Client dev-123 already connected, closing old connection."
    UNRECOGNIZED  anything else

Transitions (SessionTracker):

    CONNECT     insert/overwrite the session keyed by client id. A reused id
                is the newest session superseding a stale entry.
    DISCONNECT  remove the id if present; unknown ids are a no-op (their
                connect may predate tracking).
    SUPERSEDED  ignored: the connect line is authoritative, and acting on
                this one would delete the session that just replaced the
                old one.

The session map starts empty on every run and history is not replayed, so
clients killed without a clean disconnect are never resurrected.

Every accepted transition pushes the full snapshot to subscribers.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from brokerctl.tail import DEFAULT_POLL_INTERVAL, LogTailer


logger = logging.getLogger(__name__)


# =============================================================================
# Line Classification
# =============================================================================

class LineKind(Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    SUPERSEDED = "superseded"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class ClassifiedLine:
    kind: LineKind
    client_id: str | None = None
    address: str | None = None
    username: str | None = None


UNRECOGNIZED = ClassifiedLine(LineKind.UNRECOGNIZED)

# The port is absent on mosquitto 1.x. The address is matched lazily up to an
# optional trailing ":<port>", so IPv6 addresses keep their inner colons.
CONNECT_PATTERN = re.compile(
    r"New client connected from (?P<address>\S+?)(?::(?P<port>\d+))? "
    r"as (?P<client_id>\S+) \((?P<flags>[^)]*)\)"
)
USERNAME_PATTERN = re.compile(r"u'(?P<username>[^']*)'")
SUPERSEDED_PATTERN = re.compile(
    r"Client (?P<client_id>\S+) already connected, closing old connection"
)
DISCONNECT_PATTERN = re.compile(
    r"Client (?P<client_id>\S+)(?: \[[^\]]*\])? "
    r"(?:disconnected|closed its connection|has exceeded timeout)"
)


def classify_line(line: str) -> ClassifiedLine:
    """
    Map one broker log line to its shape.

    Args:
        line: Raw log line (timestamp prefix allowed).

    Returns:
        A ClassifiedLine. Lines of unknown shape are UNRECOGNIZED, never errors.
    """
    match = SUPERSEDED_PATTERN.search(line)
    if match:
        return ClassifiedLine(LineKind.SUPERSEDED, client_id=match["client_id"])

    match = CONNECT_PATTERN.search(line)
    if match:
        user = USERNAME_PATTERN.search(match["flags"])
        return ClassifiedLine(
            LineKind.CONNECT,
            client_id=match["client_id"],
            address=match["address"],
            username=user["username"] if user else None,
        )

    match = DISCONNECT_PATTERN.search(line)
    if match:
        return ClassifiedLine(LineKind.DISCONNECT, client_id=match["client_id"])

    return UNRECOGNIZED


# =============================================================================
# Session State
# =============================================================================

@dataclass(frozen=True)
class ClientSession:
    id: str
    address: str
    username: str | None
    connected_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "address": self.address,
            "username": self.username,
            "connected_at": self.connected_at.isoformat(),
        }


SessionSubscriber = Callable[[tuple[ClientSession, ...]], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionTracker:
    """
    Single-writer owner of the live session map.

    Readers get immutable snapshots (tuples of frozen ClientSession), never
    the map itself.

    Attributes:
        log_file:      Broker log to follow.
        poll_interval: Tail polling interval in seconds.
    """

    def __init__(
        self,
        log_file: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.log_file = log_file
        self.poll_interval = poll_interval
        self._clock = clock
        self._sessions: dict[str, ClientSession] = {}
        self._subscribers: list[SessionSubscriber] = []

    def subscribe(self, callback: SessionSubscriber) -> None:
        self._subscribers.append(callback)

    def sessions(self) -> tuple[ClientSession, ...]:
        """Snapshot of the currently connected clients."""
        return tuple(self._sessions.values())

    def reset(self) -> None:
        self._sessions = {}

    def handle(self, line: str) -> bool:
        """
        Apply one log line to the session map.

        Returns:
            True if the map changed (a snapshot should be pushed).
        """
        event = classify_line(line)

        if event.kind is LineKind.CONNECT:
            self._sessions[event.client_id] = ClientSession(
                id=event.client_id,
                address=event.address,
                username=event.username,
                connected_at=self._clock(),
            )
            return True

        if event.kind is LineKind.DISCONNECT:
            return self._sessions.pop(event.client_id, None) is not None

        return False

    async def feed(self, line: str) -> bool:
        """Apply a line and push the snapshot if it changed anything."""
        changed = self.handle(line)
        if changed:
            await self._publish()
        return changed

    async def run(self) -> None:
        """Track the broker log until cancelled. Starts from an empty map."""
        self.reset()
        tailer = LogTailer(self.log_file, interval=self.poll_interval)
        logger.info("[TRACKER] Tracking clients via log: %s", self.log_file)
        async for line in tailer.follow():
            await self.feed(line)

    async def _publish(self) -> None:
        snapshot = self.sessions()
        for callback in list(self._subscribers):
            try:
                await callback(snapshot)
            except Exception:
                logger.exception("[TRACKER] Session subscriber failed")
