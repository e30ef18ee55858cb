"""
Mosquitto Manager - Startup/Apply Reconciler
==============================================
Regenerates every broker artifact from the configuration document and
restarts the broker. Runs once at process startup and on every "apply".

Pipeline (STEPS, executed strictly in this order):

    1. ensure_administrator     seed an admin from bootstrap credentials
    2. migrate                  default listener + secure password_file paths
    3. write_config             mosquitto.conf + ACL files -> staging
    4. materialize_credentials  truncate passwordfile, one mosquitto_passwd
                                call per enabled user
    5. seed_internal_account    re-add the internal service account
    6. sync_secure              staging -> secure dir, fix owners/modes
    7. restart                  SIGTERM; the supervisor respawns the broker

Steps 4-7 are order-sensitive: truncation wipes the internal account, so it
is re-added after the users; the secure copy must see the final file; the
restart must see the secure copy. Reordering loses the internal account or
restarts the broker against a stale password file.

Only one run executes at a time (asyncio.Lock): the staging password file
is truncated and rebuilt by every run.

Failures:
    - one user's credential entry, one file's permission fix: logged, skipped
    - store, artifact write and process-control errors: raised to the caller
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from brokerctl.admins import BootstrapCredentials, ensure_administrator
from brokerctl.certs import DEFAULT_OPENSSL_COMMAND, CertificateBundle, generate_certificate_bundle
from brokerctl.control import ProcessController
from brokerctl.credentials import InternalAccount, PasswordFileWriter
from brokerctl.errors import ArtifactError, ToolError
from brokerctl.generator import generate_acl_files, generate_mosquitto_conf
from brokerctl.model import ConfigurationDocument, Listener, new_listener_id
from brokerctl.paths import LEGACY_PASSWORD_FILE, BrokerPaths
from brokerctl.secure import SecureSync, SyncReport
from brokerctl.store import DocumentStore


logger = logging.getLogger(__name__)


# =============================================================================
# Migration
# =============================================================================

def migrate_document(doc: ConfigurationDocument, paths: BrokerPaths) -> list[str]:
    """
    Apply one-time fixes to the document in place.

    - A listener on the default port must exist. If missing, one is added
      with anonymous access DISABLED (stricter than the first-boot default).
    - A listener's password_file override must live in the secure dir.
      Legacy staging paths and anything else outside it are stripped so the
      listener falls back to the managed secure password file.

    Args:
        doc:   Document to mutate.
        paths: Filesystem layout.

    Returns:
        Human-readable descriptions of the changes (empty if none).
    """
    changes = []

    if not any(l.port == paths.default_port for l in doc.listeners):
        listener = Listener(
            id=new_listener_id(),
            port=paths.default_port,
            bind_address="0.0.0.0",
            protocol="mqtt",
            enabled=True,
            allow_anonymous=False,
        )
        doc.listeners.append(listener)
        changes.append(f"added default listener {listener.id} on port {paths.default_port}")

    for listener in doc.listeners:
        override = listener.password_file
        if not override:
            continue
        if override == LEGACY_PASSWORD_FILE or not paths.is_secure(override):
            listener.password_file = None
            changes.append(
                f"listener {listener.port} now uses the secure password file (was {override})"
            )

    return changes


# =============================================================================
# Pipeline Types
# =============================================================================

@dataclass
class ReconcileResult:
    """What one pipeline run did."""
    trigger: str
    steps: list[str] = field(default_factory=list)
    admin_seeded: bool = False
    migrations: list[str] = field(default_factory=list)
    acl_files: list[str] = field(default_factory=list)
    credential_failures: list[str] = field(default_factory=list)
    sync: SyncReport | None = None
    restarted: bool = False

    def to_dict(self) -> dict:
        return {
            "trigger": self.trigger,
            "steps": list(self.steps),
            "admin_seeded": self.admin_seeded,
            "migrations": list(self.migrations),
            "acl_files": list(self.acl_files),
            "credential_failures": list(self.credential_failures),
            "sync_failures": list(self.sync.failed) if self.sync else [],
            "restarted": self.restarted,
        }


@dataclass
class _Run:
    result: ReconcileResult
    doc: ConfigurationDocument | None = None


@dataclass(frozen=True)
class PipelineStep:
    """
    A named pipeline stage.

    Attributes:
        name:     Stable identifier (tests pin the order by name).
        run:      Coroutine function taking (reconciler, run state).
        requires: Precondition, for readers.
        ensures:  Postcondition, for readers.
    """
    name: str
    run: Callable[["Reconciler", _Run], Awaitable[None]]
    requires: str
    ensures: str


# =============================================================================
# Reconciler
# =============================================================================

class Reconciler:
    """
    Owns the reconciliation pipeline and its collaborators.

    Attributes:
        store:      Document store.
        paths:      Filesystem layout.
        controller: Broker process controller.
        secure:     Secure artifact sync.
        passwords:  Staging password file writer.
        internal:   Internal service account (generated per process).
        bootstrap:  First-run administrator credentials.
    """

    def __init__(
        self,
        store: DocumentStore,
        paths: BrokerPaths,
        controller: ProcessController,
        secure: SecureSync,
        passwords: PasswordFileWriter,
        internal: InternalAccount,
        bootstrap: BootstrapCredentials,
        openssl_command: tuple[str, ...] = DEFAULT_OPENSSL_COMMAND,
    ):
        self.store = store
        self.paths = paths
        self.controller = controller
        self.secure = secure
        self.passwords = passwords
        self.internal = internal
        self.bootstrap = bootstrap
        self.openssl_command = tuple(openssl_command)
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    # -- Entry points -----------------------------------------------------------

    async def run_startup_reconciliation(self) -> ReconcileResult:
        """Run the pipeline at process startup."""
        return await self._run("startup")

    async def run_apply_reconciliation(self) -> ReconcileResult:
        """Run the pipeline for an explicit "apply" request."""
        return await self._run("apply")

    async def generate_certificate_bundle(self) -> CertificateBundle:
        """Create TLS material in the staging cert directory via openssl."""
        return await generate_certificate_bundle(self.paths.cert_dir, self.openssl_command)

    async def _run(self, trigger: str) -> ReconcileResult:
        async with self._lock:
            logger.info("[RECONCILE] Running %s reconciliation", trigger)
            state = _Run(result=ReconcileResult(trigger=trigger))
            for step in STEPS:
                logger.debug("[RECONCILE] -> %s", step.name)
                await step.run(self, state)
                state.result.steps.append(step.name)
            logger.info("[RECONCILE] %s reconciliation complete", trigger.capitalize())
            return state.result

    # -- Steps ------------------------------------------------------------------

    async def _ensure_administrator(self, state: _Run) -> None:
        doc = self.store.load()
        if ensure_administrator(doc, self.bootstrap):
            self.store.save(doc)
            doc = self.store.load()
            state.result.admin_seeded = True
        state.doc = doc

    async def _migrate(self, state: _Run) -> None:
        changes = migrate_document(state.doc, self.paths)
        for change in changes:
            logger.info("[MIGRATE] %s", change)
        if changes:
            self.store.save(state.doc)
            state.doc = self.store.load()
        state.result.migrations = changes

    async def _write_config(self, state: _Run) -> None:
        conf = generate_mosquitto_conf(state.doc, self.paths)
        acl_files = generate_acl_files(state.doc)
        acl_dir = self.paths.staging_acl_dir

        try:
            os.makedirs(acl_dir, exist_ok=True)
            with open(self.paths.conf_file, "w", encoding="utf-8") as f:
                f.write(conf)
            for filename, content in acl_files.items():
                with open(os.path.join(acl_dir, filename), "w", encoding="utf-8") as f:
                    f.write(content)
            # Profiles deleted from the document
            for name in os.listdir(acl_dir):
                if name.endswith(".conf") and name not in acl_files:
                    os.remove(os.path.join(acl_dir, name))
        except OSError as e:
            raise ArtifactError(f"Failed to write broker config: {e}") from e

        state.result.acl_files = sorted(acl_files)

    async def _materialize_credentials(self, state: _Run) -> None:
        try:
            self.passwords.truncate()
        except OSError as e:
            raise ArtifactError(f"Failed to reset password file: {e}") from e
        failed = await self.passwords.materialize(state.doc.users)
        state.result.credential_failures.extend(failed)

    async def _seed_internal_account(self, state: _Run) -> None:
        try:
            await self.passwords.seed_internal(self.internal)
        except ToolError as e:
            logger.error("[PASSWD] Failed to create system user: %s", e)
            state.result.credential_failures.append(self.internal.username)

    async def _sync_secure(self, state: _Run) -> None:
        state.result.sync = self.secure.sync()

    async def _restart(self, state: _Run) -> None:
        self.controller.restart()
        state.result.restarted = True


STEPS: tuple[PipelineStep, ...] = (
    PipelineStep(
        "ensure_administrator", Reconciler._ensure_administrator,
        requires="document store readable",
        ensures="document loaded; administrators non-empty and persisted",
    ),
    PipelineStep(
        "migrate", Reconciler._migrate,
        requires="document loaded",
        ensures="default-port listener exists; password_file overrides inside secure dir",
    ),
    PipelineStep(
        "write_config", Reconciler._write_config,
        requires="migrated document",
        ensures="staging mosquitto.conf and acls/*.conf match the document",
    ),
    PipelineStep(
        "materialize_credentials", Reconciler._materialize_credentials,
        requires="migrated document",
        ensures="staging passwordfile holds exactly the enabled users",
    ),
    PipelineStep(
        "seed_internal_account", Reconciler._seed_internal_account,
        requires="passwordfile rebuilt (truncation already happened)",
        ensures="internal service account present in staging passwordfile",
    ),
    PipelineStep(
        "sync_secure", Reconciler._sync_secure,
        requires="all staging artifacts final",
        ensures="secure dir mirrors staging with broker ownership and modes",
    ),
    PipelineStep(
        "restart", Reconciler._restart,
        requires="secure dir up to date",
        ensures="SIGTERM delivered; supervisor respawns the broker",
    ),
)

STEP_ORDER: tuple[str, ...] = tuple(step.name for step in STEPS)
