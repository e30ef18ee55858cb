import asyncio
import signal
from pathlib import Path

import pytest

from brokerctl.admins import verify_administrator
from brokerctl.errors import NotRunningError
from brokerctl.model import AccessProfile, BrokerUser, ConfigurationDocument, Listener
from brokerctl.paths import LEGACY_PASSWORD_FILE
from brokerctl.pipeline import STEP_ORDER, migrate_document


def _read(path) -> bytes:
    return Path(path).read_bytes()


def _usernames(password_file) -> list[str]:
    lines = Path(password_file).read_text(encoding="utf-8").splitlines()
    return [line.split(":", 1)[0] for line in lines if line]


def test_step_order_is_pinned():
    assert STEP_ORDER == (
        "ensure_administrator",
        "migrate",
        "write_config",
        "materialize_credentials",
        "seed_internal_account",
        "sync_secure",
        "restart",
    )


async def test_startup_seeds_single_verifiable_admin(reconciler, store, running_broker):
    result = await reconciler.run_startup_reconciliation()

    doc = store.load()
    assert result.admin_seeded is True
    assert [a.username for a in doc.administrators] == ["admin"]
    assert verify_administrator(doc, "admin", "admin") is not None
    assert verify_administrator(doc, "admin", "wrong") is None


async def test_existing_admin_is_not_reseeded(reconciler, store, running_broker):
    await reconciler.run_startup_reconciliation()
    first_hash = store.load().administrators[0].password_hash

    result = await reconciler.run_apply_reconciliation()

    assert result.admin_seeded is False
    assert store.load().administrators[0].password_hash == first_hash


async def test_run_executes_every_step_and_restarts(reconciler, running_broker, broker_pid):
    result = await reconciler.run_apply_reconciliation()

    assert tuple(result.steps) == STEP_ORDER
    assert result.trigger == "apply"
    assert result.restarted is True
    assert running_broker == [(broker_pid, signal.SIGTERM)]


async def test_rerun_produces_identical_artifacts(reconciler, store, paths, running_broker):
    doc = store.load()
    doc.users = [
        BrokerUser(username="alice", password="wonderland"),
        BrokerUser(username="bob", password="builder"),
    ]
    store.save(doc)

    await reconciler.run_apply_reconciliation()
    conf_1 = _read(paths.conf_file)
    passwd_1 = _read(paths.staging_password_file)
    secure_1 = _read(paths.secure_password_file)

    await reconciler.run_apply_reconciliation()

    assert _read(paths.conf_file) == conf_1
    assert _read(paths.staging_password_file) == passwd_1
    assert _read(paths.secure_password_file) == secure_1


async def test_internal_account_survives_truncation(reconciler, store, paths, internal_account, running_broker):
    doc = store.load()
    doc.users = [
        BrokerUser(username="alice", password="a"),
        BrokerUser(username="ghost", password="g", enabled=False),
    ]
    store.save(doc)

    await reconciler.run_apply_reconciliation()

    names = _usernames(paths.secure_password_file)
    assert names == ["alice", internal_account.username]


async def test_one_bad_credential_does_not_stop_the_run(reconciler, store, paths, running_broker):
    doc = store.load()
    doc.users = [
        BrokerUser(username="alice", password="a"),
        BrokerUser(username="broken", password=""),
        BrokerUser(username="carol", password="c"),
    ]
    store.save(doc)

    result = await reconciler.run_apply_reconciliation()

    assert result.credential_failures == ["broken"]
    assert result.restarted is True
    assert "broken" not in _usernames(paths.staging_password_file)
    assert {"alice", "carol"} <= set(_usernames(paths.staging_password_file))


async def test_nul_byte_in_password_only_loses_that_entry(reconciler, store, paths, internal_account, running_broker):
    doc = store.load()
    doc.users = [
        BrokerUser(username="alice", password="a"),
        BrokerUser(username="broken", password="bad\x00pw"),
        BrokerUser(username="carol", password="c"),
    ]
    store.save(doc)

    result = await reconciler.run_apply_reconciliation()

    assert result.credential_failures == ["broken"]
    assert result.restarted is True
    assert _usernames(paths.secure_password_file) == ["alice", "carol", internal_account.username]


async def test_restart_without_broker_raises_after_sync(reconciler, paths, signals):
    with pytest.raises(NotRunningError):
        await reconciler.run_startup_reconciliation()

    assert Path(paths.conf_file).exists()
    assert Path(paths.secure_password_file).exists()


async def test_stale_acl_files_are_removed_from_staging(reconciler, store, paths, running_broker):
    doc = store.load()
    doc.acl_profiles = [AccessProfile(name="old"), AccessProfile(name="keep")]
    store.save(doc)
    await reconciler.run_apply_reconciliation()

    doc = store.load()
    doc.acl_profiles = [p for p in doc.acl_profiles if p.name == "keep"]
    store.save(doc)
    result = await reconciler.run_apply_reconciliation()

    assert result.acl_files == ["keep.conf"]
    assert sorted(Path(paths.staging_acl_dir).iterdir()) == [Path(paths.staging_acl_dir, "keep.conf")]
    assert sorted(p.name for p in Path(paths.secure_acl_dir).iterdir()) == ["keep.conf"]


async def test_concurrent_applies_are_serialized(reconciler, store, paths, internal_account, running_broker):
    doc = store.load()
    doc.users = [BrokerUser(username=f"user{i}", password=f"p{i}") for i in range(3)]
    store.save(doc)

    results = await asyncio.gather(
        reconciler.run_apply_reconciliation(),
        reconciler.run_apply_reconciliation(),
    )

    assert all(tuple(r.steps) == STEP_ORDER for r in results)
    assert not reconciler.busy
    assert _usernames(paths.secure_password_file) == ["user0", "user1", "user2", internal_account.username]


# =============================================================================
# Migration
# =============================================================================

def test_migration_adds_default_listener_without_anonymous(paths):
    doc = ConfigurationDocument(listeners=[Listener(id="tls", port=8883, protocol="mqtts")])

    changes = migrate_document(doc, paths)

    added = [l for l in doc.listeners if l.port == 1883]
    assert len(added) == 1
    assert added[0].allow_anonymous is False
    assert added[0].id.startswith("listener-")
    assert len(changes) == 1


def test_migration_keeps_disabled_default_listener(paths):
    doc = ConfigurationDocument(listeners=[Listener(id="off", port=1883, enabled=False)])

    assert migrate_document(doc, paths) == []
    assert doc.listeners[0].enabled is False


def test_migration_moves_password_file_into_secure_dir(paths):
    inside = paths.secure_dir + "/custom_passwd"
    doc = ConfigurationDocument(listeners=[
        Listener(id="a", port=1883, password_file=LEGACY_PASSWORD_FILE),
        Listener(id="b", port=1884, password_file="/tmp/elsewhere"),
        Listener(id="c", port=1885, password_file=inside),
    ])

    migrate_document(doc, paths)

    assert doc.find_listener("a").password_file is None
    assert doc.find_listener("b").password_file is None
    assert doc.find_listener("c").password_file == inside


async def test_migration_is_persisted(reconciler, store, running_broker):
    store.replace({"global_settings": {}, "listeners": [{"id": "ws", "port": 9001, "protocol": "ws"}]})

    result = await reconciler.run_apply_reconciliation()

    assert result.migrations
    assert any(l.port == 1883 for l in store.load().listeners)
