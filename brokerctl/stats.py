"""
Mosquitto Manager - Broker Stats Aggregator
=============================================
Keeps one snapshot of broker metrics fed by the broker's $SYS topics.

The aggregator subscribes to ``$SYS/#`` on the internal loopback listener
(authenticated with the internal service account) via aiomqtt, and maps
these topics to snapshot fields:

    $SYS/broker/uptime                        -> uptime ("123 seconds")
    $SYS/broker/clients/total                 -> clients_total
    $SYS/broker/clients/active                -> clients_active
    $SYS/broker/messages/sent                 -> messages_sent
    $SYS/broker/messages/received             -> messages_received
    $SYS/broker/load/messages/received/1min   -> load_messages_received_1min
    $SYS/broker/load/messages/sent/1min       -> load_messages_sent_1min
    $SYS/broker/bytes/received                -> bytes_received
    $SYS/broker/bytes/sent                    -> bytes_sent
    $SYS/broker/subscriptions/count           -> subscriptions
    $SYS/broker/retained messages/count       -> retained_messages

Payloads are parsed by their leading number; anything else is dropped.
Each accepted value replaces the snapshot and pushes it to subscribers.
No history is kept.
"""

import asyncio
import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable

import aiomqtt

from brokerctl.credentials import InternalAccount
from brokerctl.paths import INTERNAL_LISTENER_ADDRESS, INTERNAL_LISTENER_PORT


logger = logging.getLogger(__name__)

SYS_TOPIC = "$SYS/#"
SYS_PREFIX = "$SYS/broker/"
CLIENT_IDENTIFIER = "backend-stats-monitor"

TOPIC_FIELDS = {
    "uptime": "uptime",
    "clients/total": "clients_total",
    "clients/active": "clients_active",
    "messages/sent": "messages_sent",
    "messages/received": "messages_received",
    "load/messages/received/1min": "load_messages_received_1min",
    "load/messages/sent/1min": "load_messages_sent_1min",
    "bytes/received": "bytes_received",
    "bytes/sent": "bytes_sent",
    "subscriptions/count": "subscriptions",
    "retained messages/count": "retained_messages",
}

_LEADING_NUMBER = re.compile(r"\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")


@dataclass(frozen=True)
class BrokerStatsSnapshot:
    uptime: float = 0
    clients_total: float = 0
    clients_active: float = 0
    messages_sent: float = 0
    messages_received: float = 0
    load_messages_received_1min: float = 0
    load_messages_sent_1min: float = 0
    bytes_received: float = 0
    bytes_sent: float = 0
    subscriptions: float = 0
    retained_messages: float = 0

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


StatsSubscriber = Callable[[BrokerStatsSnapshot], Awaitable[None]]


def parse_metric(payload: str) -> float | None:
    """Leading number of a $SYS payload ("42 seconds" -> 42.0), or None."""
    match = _LEADING_NUMBER.match(payload)
    if not match:
        return None
    try:
        return float(match.group(1))
    except ValueError:
        return None


def field_for_topic(topic: str) -> str | None:
    if not topic.startswith(SYS_PREFIX):
        return None
    return TOPIC_FIELDS.get(topic[len(SYS_PREFIX):])


class StatsAggregator:
    """
    Single-writer owner of the broker stats snapshot.

    Attributes:
        account:            Credentials for the internal listener.
        host / port:        Internal listener address.
        reconnect_interval: Seconds to wait after a connection failure.
    """

    def __init__(
        self,
        account: InternalAccount,
        host: str = INTERNAL_LISTENER_ADDRESS,
        port: int = INTERNAL_LISTENER_PORT,
        reconnect_interval: float = 5.0,
    ):
        self.account = account
        self.host = host
        self.port = port
        self.reconnect_interval = reconnect_interval
        self._snapshot = BrokerStatsSnapshot()
        self._received = False
        self._subscribers: list[StatsSubscriber] = []

    @property
    def snapshot(self) -> BrokerStatsSnapshot:
        return self._snapshot

    @property
    def has_data(self) -> bool:
        """True once at least one metric has been accepted."""
        return self._received

    def subscribe(self, callback: StatsSubscriber) -> None:
        self._subscribers.append(callback)

    def update(self, topic: str, payload) -> bool:
        """
        Apply one metric message.

        Returns:
            True if a snapshot field was replaced.
        """
        name = field_for_topic(topic)
        if name is None:
            return False
        if payload is None:
            return False
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode("utf-8", errors="replace")
        value = parse_metric(str(payload))
        if value is None:
            return False

        self._snapshot = dataclasses.replace(self._snapshot, **{name: value})
        self._received = True
        return True

    async def feed(self, topic: str, payload) -> bool:
        changed = self.update(topic, payload)
        if changed:
            await self._publish()
        return changed

    async def run(self) -> None:
        """Subscribe to $SYS and keep reconnecting until cancelled."""
        while True:
            try:
                async with aiomqtt.Client(
                    hostname=self.host,
                    port=self.port,
                    username=self.account.username,
                    password=self.account.password,
                    identifier=CLIENT_IDENTIFIER,
                ) as client:
                    logger.info("[STATS] Connected to broker at %s:%d", self.host, self.port)
                    await client.subscribe(SYS_TOPIC)
                    async for message in client.messages:
                        await self.feed(message.topic.value, message.payload)
            except aiomqtt.MqttError as e:
                logger.warning(
                    "[STATS] Broker connection lost (%s); retrying in %ss",
                    e, self.reconnect_interval,
                )
                await asyncio.sleep(self.reconnect_interval)

    async def _publish(self) -> None:
        snapshot = self._snapshot
        for callback in list(self._subscribers):
            try:
                await callback(snapshot)
            except Exception:
                logger.exception("[STATS] Stats subscriber failed")
