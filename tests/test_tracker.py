import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from brokerctl.tail import LogTailer
from brokerctl.tracker import LineKind, SessionTracker, classify_line


CONNECT_ALICE = (
    "1700000000: New client connected from 10.0.0.5:4410 as dev-123 "
    "(p2, c1, k60, u'alice')."
)
DISCONNECT = "1700000001: Client dev-123 disconnected."


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def tracker(tmp_path):
    return SessionTracker(str(tmp_path / "mosquitto.log"), clock=FakeClock())


# =============================================================================
# classify_line
# =============================================================================

@pytest.mark.parametrize(
    "line, kind, client_id",
    [
        (CONNECT_ALICE, LineKind.CONNECT, "dev-123"),
        ("1600000000: New client connected from 10.0.0.5 as dev-123 (c1, k60, u'alice').", LineKind.CONNECT, "dev-123"),
        (DISCONNECT, LineKind.DISCONNECT, "dev-123"),
        ("Client dev-123 closed its connection.", LineKind.DISCONNECT, "dev-123"),
        ("Client dev-123 has exceeded timeout, disconnecting.", LineKind.DISCONNECT, "dev-123"),
        ("Client dev-123 [10.0.0.5:4410] disconnected.", LineKind.DISCONNECT, "dev-123"),
        ("Client dev-123 already connected, closing old connection.", LineKind.SUPERSEDED, "dev-123"),
        ("1700000000: mosquitto version 2.0.18 running", LineKind.UNRECOGNIZED, None),
        ("", LineKind.UNRECOGNIZED, None),
    ],
)
def test_classify_line(line, kind, client_id):
    event = classify_line(line)

    assert event.kind is kind
    assert event.client_id == client_id


def test_connect_fields():
    event = classify_line(CONNECT_ALICE)

    assert event.address == "10.0.0.5"
    assert event.username == "alice"


def test_connect_without_port():
    event = classify_line("1600000000: New client connected from 10.0.0.5 as dev-123 (c1, k60, u'alice').")

    assert event.address == "10.0.0.5"
    assert event.username == "alice"


def test_connect_without_username_and_ipv6_address():
    event = classify_line("New client connected from ::1:51234 as monitor-1 (p2, c1, k60).")

    assert event.kind is LineKind.CONNECT
    assert event.address == "::1"
    assert event.username is None


# =============================================================================
# SessionTracker
# =============================================================================

def test_connect_creates_session(tracker):
    assert tracker.handle(CONNECT_ALICE) is True

    (session,) = tracker.sessions()
    assert session.id == "dev-123"
    assert session.address == "10.0.0.5"
    assert session.username == "alice"


async def test_disconnect_removes_session_and_pushes_smaller_snapshot(tracker):
    pushed = []

    async def record(snapshot):
        pushed.append(snapshot)

    tracker.subscribe(record)
    await tracker.feed(CONNECT_ALICE)
    await tracker.feed(DISCONNECT)

    assert tracker.sessions() == ()
    assert [len(s) for s in pushed] == [1, 0]


def test_superseded_notice_never_changes_sessions(tracker):
    tracker.handle(CONNECT_ALICE)
    before = tracker.sessions()

    changed = tracker.handle("Client dev-123 already connected, closing old connection.")

    assert changed is False
    assert tracker.sessions() == before


def test_reconnect_with_same_id_keeps_one_session_with_latest_details(tracker):
    tracker.handle(CONNECT_ALICE)
    first = tracker.sessions()[0]
    tracker.handle("New client connected from 10.0.0.9:5000 as dev-123 (p2, c1, k60, u'bob').")

    (session,) = tracker.sessions()
    assert session.address == "10.0.0.9"
    assert session.username == "bob"
    assert session.connected_at > first.connected_at


def test_unknown_disconnect_is_a_noop(tracker):
    tracker.handle(CONNECT_ALICE)

    assert tracker.handle("Client other disconnected.") is False
    assert len(tracker.sessions()) == 1


def test_snapshots_are_immutable(tracker):
    tracker.handle(CONNECT_ALICE)
    snapshot = tracker.sessions()

    tracker.handle(DISCONNECT)

    assert len(snapshot) == 1


async def test_failing_subscriber_does_not_block_others(tracker):
    received = []

    async def broken(snapshot):
        raise RuntimeError("boom")

    async def ok(snapshot):
        received.append(snapshot)

    tracker.subscribe(broken)
    tracker.subscribe(ok)
    await tracker.feed(CONNECT_ALICE)

    assert len(received) == 1


# =============================================================================
# LogTailer
# =============================================================================

def test_tailer_starts_at_end_of_file(tmp_path):
    log = tmp_path / "mosquitto.log"
    log.write_text(CONNECT_ALICE + "\n", encoding="utf-8")
    tailer = LogTailer(str(log))
    tailer.prime()

    with log.open("a", encoding="utf-8") as f:
        f.write(DISCONNECT + "\n")

    assert tailer.poll() == [DISCONNECT]
    assert tailer.poll() == []


def test_tailer_holds_back_partial_lines(tmp_path):
    log = tmp_path / "mosquitto.log"
    log.write_text("", encoding="utf-8")
    tailer = LogTailer(str(log))
    tailer.prime()

    with log.open("a", encoding="utf-8") as f:
        f.write("Client dev-123 dis")
    assert tailer.poll() == []

    with log.open("a", encoding="utf-8") as f:
        f.write("connected.\n")
    assert tailer.poll() == ["Client dev-123 disconnected."]


def test_tailer_rewinds_after_truncation(tmp_path):
    log = tmp_path / "mosquitto.log"
    log.write_text("old line one\nold line two\n", encoding="utf-8")
    tailer = LogTailer(str(log))
    tailer.prime()

    log.write_text("new\n", encoding="utf-8")

    assert tailer.poll() == ["new"]


def test_tailer_creates_missing_file(tmp_path):
    tailer = LogTailer(str(tmp_path / "logs" / "mosquitto.log"))

    assert tailer.ensure_exists() is True
    assert Path(tailer.path).exists()


async def test_run_follows_appended_log_lines(tmp_path):
    log = tmp_path / "mosquitto.log"
    log.write_text("1699999999: Client stale disconnected.\n", encoding="utf-8")
    tracker = SessionTracker(str(log), poll_interval=0.01)
    pushed = asyncio.Queue()

    async def record(snapshot):
        await pushed.put(snapshot)

    tracker.subscribe(record)
    task = asyncio.create_task(tracker.run())
    try:
        await asyncio.sleep(0.05)
        with log.open("a", encoding="utf-8") as f:
            f.write(CONNECT_ALICE + "\n")
        connected = await asyncio.wait_for(pushed.get(), timeout=2)

        with log.open("a", encoding="utf-8") as f:
            f.write(DISCONNECT + "\n")
        disconnected = await asyncio.wait_for(pushed.get(), timeout=2)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert [s.id for s in connected] == ["dev-123"]
    assert disconnected == ()
