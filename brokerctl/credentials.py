"""
Mosquitto Manager - Password File Materialization
===================================================
Builds the broker password file exclusively through the external
``mosquitto_passwd`` tool, so hashes always match the broker's verifier.

Invocation (one per user, never batched):

    mosquitto_passwd -b <password_file> <username> <password>

A malformed password only loses that one entry; other users are unaffected.

The internal service account (used by the stats subscriber on the loopback
listener) is generated once per process and must be re-added every time the
file is truncated.
"""

import asyncio
import logging
import os
import secrets
from dataclasses import dataclass, field
from typing import Sequence

from brokerctl.errors import ToolError
from brokerctl.model import BrokerUser


logger = logging.getLogger(__name__)

DEFAULT_PASSWD_COMMAND = ("mosquitto_passwd",)


@dataclass(frozen=True)
class InternalAccount:
    """Credentials this service uses on the internal listener."""
    username: str = "sys_monitor"
    password: str = field(default_factory=lambda: secrets.token_hex(12), repr=False)


async def run_tool(command: Sequence[str]) -> str:
    """
    Run an external command without a shell and wait for it.

    Args:
        command: argv list. Arguments are passed verbatim (no quoting issues
                 with special characters in passwords).

    Returns:
        The command's stdout, decoded.

    Raises:
        ToolError: If the command is missing or exits non-zero.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (OSError, ValueError) as e:
        # ValueError: an argument with an embedded NUL byte
        raise ToolError(f"Cannot run {command[0]}: {e}") from e

    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        err = stderr.decode("utf-8", errors="replace").strip()
        raise ToolError(
            f"{command[0]} exited with status {proc.returncode}: {err}",
            returncode=proc.returncode,
            stderr=err,
        )
    return stdout.decode("utf-8", errors="replace")


class PasswordFileWriter:
    """
    Writes the staging password file.

    Attributes:
        password_file: Path of the staging password file.
        command:       Base argv of the hashing tool.
    """

    def __init__(self, password_file: str, command: Sequence[str] = DEFAULT_PASSWD_COMMAND):
        self.password_file = password_file
        self.command = tuple(command)

    def truncate(self) -> None:
        """Create or empty the password file."""
        directory = os.path.dirname(self.password_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.password_file, "w", encoding="utf-8"):
            pass

    async def add(self, username: str, password: str) -> None:
        """Add or update one entry. Raises ToolError on failure."""
        await run_tool([*self.command, "-b", self.password_file, username, password])

    async def materialize(self, users: Sequence[BrokerUser]) -> list[str]:
        """
        Add every enabled user, one tool invocation each.

        Args:
            users: Broker users from the document.

        Returns:
            Usernames whose entry could not be written (already logged).
        """
        failed = []
        for user in users:
            if not user.enabled:
                continue
            try:
                await self.add(user.username, user.password)
            except ToolError as e:
                logger.error("[PASSWD] Failed to add user %s: %s", user.username, e)
                failed.append(user.username)
        return failed

    async def seed_internal(self, account: InternalAccount) -> None:
        """(Re-)add the internal service account."""
        await self.add(account.username, account.password)
        logger.info("[PASSWD] System monitoring user updated/created in %s", self.password_file)
