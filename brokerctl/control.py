"""
Mosquitto Manager - Process Controller
========================================
Signals the running broker through its pid file.

    reload()   SIGHUP  - config-only changes (no listener added/removed).
                         No pid file -> warning, nothing to reload.
    restart()  SIGTERM - structural changes. The broker is respawned by the
                         container's supervising loop, not by us.
                         No pid file -> NotRunningError.

Both calls are single-shot: they deliver a signal and return. Whether the
new config is live is observed elsewhere (stats/session feeds reconnecting).
"""

import logging
import os
import signal

from brokerctl.errors import ControlError, NotRunningError


logger = logging.getLogger(__name__)


class ProcessController:
    """
    Sends control signals to the broker process.

    Attributes:
        pid_file: Path of the broker's pid file.
    """

    def __init__(self, pid_file: str):
        self.pid_file = pid_file

    def read_pid(self) -> int | None:
        """
        Read the broker pid.

        Returns:
            The pid, or None if the pid file does not exist.

        Raises:
            ControlError: If the file is empty, unreadable or not a number.
        """
        if not os.path.exists(self.pid_file):
            return None

        try:
            with open(self.pid_file, "r", encoding="utf-8") as f:
                content = f.read().strip()
        except OSError as e:
            raise ControlError(f"Cannot read pid file {self.pid_file}: {e}") from e

        if not content:
            raise ControlError("Mosquitto PID file is empty.")
        try:
            return int(content)
        except ValueError:
            raise ControlError(f"Mosquitto PID file contains garbage: {content!r}") from None

    @staticmethod
    def is_alive(pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by someone else.
            return True
        return True

    @property
    def is_running(self) -> bool:
        try:
            pid = self.read_pid()
        except ControlError:
            return False
        return pid is not None and self.is_alive(pid)

    def reload(self) -> bool:
        """
        Ask the broker to re-read its configuration (SIGHUP).

        Returns:
            True if the signal was sent, False if there was no pid file.

        Raises:
            NotRunningError: If the pid file names a dead process.
            ControlError:    If the pid file is bad or the signal fails.
        """
        pid = self.read_pid()
        if pid is None:
            logger.warning("[CONTROL] Mosquitto PID file not found. Cannot reload.")
            return False

        if not self.is_alive(pid):
            raise NotRunningError(f"Mosquitto process {pid} not running.")

        logger.info("[CONTROL] Sending SIGHUP to Mosquitto (PID: %d)", pid)
        self._send(pid, signal.SIGHUP)
        return True

    def restart(self) -> None:
        """
        Terminate the broker so its supervisor respawns it (SIGTERM).

        Raises:
            NotRunningError: If there is no pid file or the process is gone.
            ControlError:    If the pid file is bad or the signal fails.
        """
        pid = self.read_pid()
        if pid is None:
            raise NotRunningError("Mosquitto PID file not found. Cannot restart.")

        logger.info("[CONTROL] Sending SIGTERM to Mosquitto (PID: %d) to trigger restart", pid)
        self._send(pid, signal.SIGTERM)

    def _send(self, pid: int, sig: signal.Signals) -> None:
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            raise NotRunningError(f"Mosquitto process {pid} not running.") from None
        except OSError as e:
            raise ControlError(f"Failed to signal Mosquitto (PID: {pid}): {e}") from e
