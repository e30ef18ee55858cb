"""
Mosquitto Manager - Filesystem Layout
=======================================
Every path the core touches, derived from three roots:

    mosquitto_dir/            user-writable staging area (mounted volume)
      mosquitto.conf          main broker config (read by the broker)
      mosquitto.log           broker log (tailed by the session tracker)
      passwordfile            staging password file (mosquitto_passwd output)
      acls/<profile>.conf     staging ACL files
      certs/                  generated / uploaded TLS material

    secure_dir/               process-owned, broker-readable only
      passwordfile
      acls/<profile>.conf

    data_dir/
      state.json              the configuration document

The broker config always references the secure copies, never staging.
"""

import os
from dataclasses import dataclass


# Values the broker-facing artifacts are built around.
DEFAULT_SECURE_DIR = "/etc/mosquitto/secure"
DEFAULT_PID_FILE = "/run/mosquitto.pid"
INTERNAL_LISTENER_PORT = 10883
INTERNAL_LISTENER_ADDRESS = "127.0.0.1"
DEFAULT_LISTENER_PORT = 1883

# Where older releases pointed listeners' password_file (inside staging).
LEGACY_PASSWORD_FILE = "/mymosquitto/passwordfile"


@dataclass(frozen=True)
class BrokerPaths:
    """
    Immutable description of the broker filesystem layout.

    Attributes:
        mosquitto_dir:  Staging directory shared with the broker container.
        secure_dir:     Restricted directory holding broker-readable secrets.
        data_dir:       Where the configuration document is stored.
        pid_file:       Broker process-id file.
        internal_port:  Loopback listener port used by this service.
        default_port:   Port of the listener guaranteed by migration.
    """

    mosquitto_dir: str
    secure_dir: str = DEFAULT_SECURE_DIR
    data_dir: str = "data"
    pid_file: str = DEFAULT_PID_FILE
    internal_port: int = INTERNAL_LISTENER_PORT
    default_port: int = DEFAULT_LISTENER_PORT

    @property
    def conf_file(self) -> str:
        return os.path.join(self.mosquitto_dir, "mosquitto.conf")

    @property
    def log_file(self) -> str:
        return os.path.join(self.mosquitto_dir, "mosquitto.log")

    @property
    def staging_password_file(self) -> str:
        return os.path.join(self.mosquitto_dir, "passwordfile")

    @property
    def staging_acl_dir(self) -> str:
        return os.path.join(self.mosquitto_dir, "acls")

    @property
    def cert_dir(self) -> str:
        return os.path.join(self.mosquitto_dir, "certs")

    @property
    def secure_password_file(self) -> str:
        return os.path.join(self.secure_dir, "passwordfile")

    @property
    def secure_acl_dir(self) -> str:
        return os.path.join(self.secure_dir, "acls")

    @property
    def state_file(self) -> str:
        return os.path.join(self.data_dir, "state.json")

    def is_secure(self, path: str) -> bool:
        """Return True if ``path`` resolves inside the secure directory."""
        return is_within(self.secure_dir, path)

    def is_cert(self, path: str) -> bool:
        """Return True if ``path`` resolves inside the certificate directory."""
        return is_within(self.cert_dir, path)


def is_within(root: str, path: str) -> bool:
    """True if ``path`` is ``root`` or below it once symlinks and ".." are resolved."""
    if "\x00" in path:
        return False
    root = os.path.realpath(root)
    target = os.path.realpath(path)
    return target == root or target.startswith(root + os.sep)
