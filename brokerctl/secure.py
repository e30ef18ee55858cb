"""
Mosquitto Manager - Secure Artifact Sync
==========================================
Copies the generated password file and ACL files from the user-writable
staging area into the process-owned secure directory, and fixes ownership
and mode bits so only the broker's user can read them.

    staging/passwordfile      -> secure/passwordfile       (broker, 0700)
    staging/acls/*.conf       -> secure/acls/*.conf        (broker, 0600)
    secure/, secure/acls/                                  (broker, 0750)

ACL files that no longer exist in staging are removed from secure/acls.

Best-effort: a failing copy / chown / chmod on one file is logged and the
remaining files are still processed. A degraded broker with most of its
files in place beats a manager that refuses to start.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field

from brokerctl.paths import BrokerPaths


logger = logging.getLogger(__name__)

DIR_MODE = 0o750
PASSWORD_FILE_MODE = 0o700
ACL_FILE_MODE = 0o600


@dataclass
class SyncReport:
    """Outcome of one sync run."""
    copied: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class SecureSync:
    """
    Mirrors staging artifacts into the secure directory.

    Attributes:
        paths: Filesystem layout.
        uid:   Owner uid applied to every secure path (broker user).
        gid:   Owner gid applied to every secure path.
    """

    def __init__(self, paths: BrokerPaths, uid: int = 100, gid: int = 101):
        self.paths = paths
        self.uid = uid
        self.gid = gid

    # -- Public API -------------------------------------------------------------

    def ensure_secure_dir(self, report: SyncReport | None = None) -> SyncReport:
        """Create the secure directory if needed and harden it."""
        report = report if report is not None else SyncReport()
        self._ensure_dir(self.paths.secure_dir, report)
        return report

    def sync(self) -> SyncReport:
        """
        Copy all staging artifacts into the secure directory.

        Returns:
            A SyncReport listing copied, removed and failed paths.
        """
        logger.info("[SYNC] Syncing config to secure location %s", self.paths.secure_dir)
        report = SyncReport()
        self._ensure_dir(self.paths.secure_dir, report)

        # 1. Password file
        if os.path.exists(self.paths.staging_password_file):
            self._copy(
                self.paths.staging_password_file,
                self.paths.secure_password_file,
                PASSWORD_FILE_MODE,
                report,
            )

        # 2. ACL files
        self._ensure_dir(self.paths.secure_acl_dir, report)
        wanted = set()
        if os.path.isdir(self.paths.staging_acl_dir):
            for name in sorted(os.listdir(self.paths.staging_acl_dir)):
                src = os.path.join(self.paths.staging_acl_dir, name)
                if not os.path.isfile(src):
                    continue
                wanted.add(name)
                dest = os.path.join(self.paths.secure_acl_dir, name)
                self._copy(src, dest, ACL_FILE_MODE, report)

        # 3. Stale ACL files
        if os.path.isdir(self.paths.secure_acl_dir):
            for name in sorted(os.listdir(self.paths.secure_acl_dir)):
                if name in wanted:
                    continue
                stale = os.path.join(self.paths.secure_acl_dir, name)
                try:
                    os.remove(stale)
                    report.removed.append(stale)
                except OSError as e:
                    logger.error("[SYNC] Failed to remove stale %s: %s", stale, e)
                    report.failed.append(stale)

        if report.failed:
            logger.warning("[SYNC] Completed with %d failure(s)", len(report.failed))
        return report

    # -- Internal helpers -------------------------------------------------------

    def _ensure_dir(self, path: str, report: SyncReport) -> None:
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            logger.error("[SYNC] Cannot create %s: %s", path, e)
            report.failed.append(path)
            return
        self._harden(path, DIR_MODE, report)

    def _copy(self, src: str, dest: str, mode: int, report: SyncReport) -> None:
        try:
            shutil.copyfile(src, dest)
        except OSError as e:
            logger.error("[SYNC] Failed to copy %s -> %s: %s", src, dest, e)
            report.failed.append(dest)
            return
        report.copied.append(dest)
        self._harden(dest, mode, report)

    def _harden(self, path: str, mode: int, report: SyncReport) -> bool:
        ok = True
        try:
            os.chown(path, self.uid, self.gid)
        except OSError as e:
            logger.error("[SYNC] chown %s:%s %s failed: %s", self.uid, self.gid, path, e)
            ok = False
        try:
            os.chmod(path, mode)
        except OSError as e:
            logger.error("[SYNC] chmod %o %s failed: %s", mode, path, e)
            ok = False
        if not ok and path not in report.failed:
            report.failed.append(path)
        return ok
