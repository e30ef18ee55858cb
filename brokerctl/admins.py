"""
Mosquitto Manager - Administrator Accounts
============================================
Dashboard administrators live in the configuration document, separate from
broker users. Passwords are stored as bcrypt hashes.

The list must never be empty: on first run (or after a reset) one admin is
seeded from BootstrapCredentials, which the web shell reads once from the
environment (WEB_USERNAME / WEB_PASSWORD).
"""

import logging
from dataclasses import dataclass

import bcrypt

from brokerctl.model import Administrator, ConfigurationDocument


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BootstrapCredentials:
    """First-run administrator credentials."""
    username: str = "admin"
    password: str = "admin"

    def __repr__(self) -> str:
        return f"BootstrapCredentials(username={self.username!r})"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Not a bcrypt hash
        return False


def ensure_administrator(doc: ConfigurationDocument, bootstrap: BootstrapCredentials) -> bool:
    """
    Seed an admin account if the document has none.

    Args:
        doc:       Document to mutate in place.
        bootstrap: Credentials for the seeded account.

    Returns:
        True if an administrator was added.
    """
    if doc.administrators:
        return False

    logger.info("[ADMIN] No administrators found, creating '%s' from bootstrap credentials", bootstrap.username)
    doc.administrators.append(
        Administrator(
            username=bootstrap.username,
            password_hash=hash_password(bootstrap.password),
            role="admin",
        )
    )
    return True


def verify_administrator(
    doc: ConfigurationDocument, username: str, password: str
) -> Administrator | None:
    """Return the matching administrator if the password checks out."""
    for admin in doc.administrators:
        if admin.username == username and verify_password(password, admin.password_hash):
            return admin
    return None
