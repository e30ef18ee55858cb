import asyncio
import inspect
import os
import sys
import textwrap
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from brokerctl.admins import BootstrapCredentials  # noqa: E402
from brokerctl.control import ProcessController  # noqa: E402
from brokerctl.credentials import InternalAccount, PasswordFileWriter  # noqa: E402
from brokerctl.paths import BrokerPaths  # noqa: E402
from brokerctl.pipeline import Reconciler  # noqa: E402
from brokerctl.secure import SecureSync  # noqa: E402
from brokerctl.store import DocumentStore  # noqa: E402


BROKER_PID = 4242

# Stand-in for mosquitto_passwd: "-b <file> <user> <password>", replaces the
# user's line in place. The "hash" is deterministic so reruns are comparable.
# Empty passwords are rejected the way a malformed entry would be.
FAKE_PASSWD = textwrap.dedent(
    """
    import hashlib
    import os
    import sys

    _, flag, path, username, password = sys.argv
    if flag != "-b" or not password:
        sys.stderr.write("Error: invalid password\\n")
        sys.exit(1)

    lines = []
    if os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            lines = [l for l in f.read().splitlines() if not l.startswith(username + ":")]
    digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
    lines.append(f"{username}:$fake${digest}")
    with open(path, "w", encoding="utf-8") as f:
        f.write("\\n".join(lines) + "\\n")
    """
)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def paths(tmp_path):
    mosquitto_dir = tmp_path / "mosquitto"
    mosquitto_dir.mkdir()
    return BrokerPaths(
        mosquitto_dir=str(mosquitto_dir),
        secure_dir=str(tmp_path / "secure"),
        data_dir=str(tmp_path / "data"),
        pid_file=str(tmp_path / "mosquitto.pid"),
    )


@pytest.fixture
def passwd_command(tmp_path):
    script = tmp_path / "fake_mosquitto_passwd.py"
    script.write_text(FAKE_PASSWD, encoding="utf-8")
    return (sys.executable, str(script))


@pytest.fixture
def chown_calls(monkeypatch):
    """Record chown calls instead of requiring root."""
    calls = []

    def fake_chown(path, uid, gid):
        calls.append((str(path), uid, gid))

    monkeypatch.setattr(os, "chown", fake_chown)
    return calls


@pytest.fixture
def signals(monkeypatch):
    """Fake process table: only BROKER_PID exists. Delivered signals are recorded."""
    sent = []

    def fake_kill(pid, sig):
        if pid != BROKER_PID:
            raise ProcessLookupError(pid)
        if sig != 0:
            sent.append((pid, sig))

    monkeypatch.setattr(os, "kill", fake_kill)
    return sent


@pytest.fixture
def broker_pid():
    return BROKER_PID


@pytest.fixture
def running_broker(paths, signals):
    Path(paths.pid_file).write_text(f"{BROKER_PID}\n", encoding="utf-8")
    return signals


@pytest.fixture
def store(paths):
    return DocumentStore(paths.state_file)


@pytest.fixture
def internal_account():
    return InternalAccount()


@pytest.fixture
def reconciler(paths, store, passwd_command, internal_account, chown_calls):
    return Reconciler(
        store=store,
        paths=paths,
        controller=ProcessController(paths.pid_file),
        secure=SecureSync(paths, uid=100, gid=101),
        passwords=PasswordFileWriter(paths.staging_password_file, passwd_command),
        internal=internal_account,
        bootstrap=BootstrapCredentials(username="admin", password="admin"),
    )
