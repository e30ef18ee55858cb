import signal
from pathlib import Path

import pytest

from brokerctl.control import ProcessController
from brokerctl.errors import ControlError, NotRunningError


def test_restart_sends_sigterm(paths, running_broker, broker_pid):
    ProcessController(paths.pid_file).restart()

    assert running_broker == [(broker_pid, signal.SIGTERM)]


def test_reload_sends_sighup(paths, running_broker, broker_pid):
    assert ProcessController(paths.pid_file).reload() is True
    assert running_broker == [(broker_pid, signal.SIGHUP)]


def test_reload_without_pid_file_is_a_noop(paths, signals):
    assert ProcessController(paths.pid_file).reload() is False
    assert signals == []


def test_restart_without_pid_file_raises(paths, signals):
    with pytest.raises(NotRunningError):
        ProcessController(paths.pid_file).restart()


def test_stale_pid_raises_not_running(paths, signals):
    Path(paths.pid_file).write_text("999999", encoding="utf-8")
    controller = ProcessController(paths.pid_file)

    assert controller.is_running is False
    with pytest.raises(NotRunningError):
        controller.reload()
    with pytest.raises(NotRunningError):
        controller.restart()


@pytest.mark.parametrize("content", ["", "abc"])
def test_bad_pid_file(paths, signals, content):
    Path(paths.pid_file).write_text(content, encoding="utf-8")

    with pytest.raises(ControlError):
        ProcessController(paths.pid_file).read_pid()
