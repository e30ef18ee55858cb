"""
Mosquitto Manager - Configuration Document
============================================
The single structured document every broker artifact is generated from.

Stored as JSON (data/state.json) with the same snake_case keys the web UI
sends and receives:

    {
      "global_settings": {...},
      "listeners":       [...],
      "users":           [...],
      "acl_profiles":    [...],
      "administrators":  [...]
    }

Listeners are identified by ``id`` (assigned once, never reused). Ports are
not checked for uniqueness: the generator emits whatever it is given.

The internal service listener is NOT part of this document. It is
synthesized by the generator on every run.
"""

import logging
import uuid
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


logger = logging.getLogger(__name__)

Protocol = Literal["mqtt", "mqtts", "ws", "wss"]
Access = Literal["read", "write", "readwrite"]
Role = Literal["admin", "viewer"]

TLS_PROTOCOLS = frozenset({"mqtts", "wss"})
WEBSOCKET_PROTOCOLS = frozenset({"ws", "wss"})

DEFAULT_LOG_TYPES = ["error", "warning", "notice", "information"]


# =============================================================================
# Global Settings
# =============================================================================

class Certificates(BaseModel):
    """Shared TLS material used by every TLS listener."""
    cafile: str = ""
    certfile: str = ""
    keyfile: str = ""


class GlobalSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    persistence: bool = True
    persistence_location: str = "/mymosquitto/data/"
    log_dest: str = "file /mymosquitto/mosquitto.log"
    log_type: list[str] = Field(default_factory=lambda: list(DEFAULT_LOG_TYPES))
    certificates: Certificates | None = None


# =============================================================================
# Listeners
# =============================================================================

class Listener(BaseModel):
    """
    A broker network endpoint.

    ``password_file`` is an optional override; when unset the generator
    points the listener at the managed password file in the secure dir.
    ``acl_profile`` references an AccessProfile by name.
    """
    model_config = ConfigDict(extra="allow")

    id: str
    port: int
    bind_address: str = "0.0.0.0"
    protocol: Protocol = "mqtt"
    enabled: bool = True
    allow_anonymous: bool = False
    require_certificate: bool = False
    use_identity_as_username: bool = False
    tls_version: str | None = None
    acl_profile: str | None = None
    password_file: str | None = None

    @field_validator("acl_profile")
    @classmethod
    def _acl_profile_is_file_stem(cls, name: str | None) -> str | None:
        # The UI sends "" for "no profile"
        return check_profile_name(name) if name else None

    @property
    def is_tls(self) -> bool:
        return self.protocol in TLS_PROTOCOLS

    @property
    def is_websocket(self) -> bool:
        return self.protocol in WEBSOCKET_PROTOCOLS


def check_profile_name(name: str) -> str:
    """
    An access profile name becomes "<name>.conf" inside the ACL directories,
    so it must be a plain file stem.

    Raises:
        ValueError: On an empty name, a path separator, "..", or a NUL byte.
    """
    if not name or name.strip() != name:
        raise ValueError("profile name must be non-empty without surrounding spaces")
    if "/" in name or "\\" in name or ".." in name or "\x00" in name:
        raise ValueError(f"invalid profile name {name!r}")
    return name


def new_listener_id() -> str:
    """Allocate a fresh listener id. Ids are never recycled."""
    return f"listener-{uuid.uuid4().hex[:12]}"


# =============================================================================
# Broker Users and Access Profiles
# =============================================================================

class BrokerUser(BaseModel):
    """An account the broker authenticates. Password is cleartext at rest."""
    username: str
    password: str
    enabled: bool = True


class AclRule(BaseModel):
    access: Access
    value: str


class AclUserEntry(BaseModel):
    username: str
    rules: list[AclRule] = Field(default_factory=list)

    @field_validator("rules", mode="before")
    @classmethod
    def _drop_non_topic_rules(cls, rules):
        # Older documents tagged rules with a "type"; only topic rules exist.
        if not isinstance(rules, list):
            return rules
        kept = []
        for rule in rules:
            if isinstance(rule, dict) and rule.get("type", "topic") != "topic":
                logger.warning(
                    "[MODEL] Dropping unsupported ACL rule type %r (%s)",
                    rule.get("type"), rule.get("value", ""),
                )
                continue
            kept.append(rule)
        return kept


class AccessProfile(BaseModel):
    name: str
    description: str | None = None
    users: list[AclUserEntry] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _name_is_file_stem(cls, name: str) -> str:
        return check_profile_name(name)


# =============================================================================
# Administrators (dashboard accounts, separate from broker users)
# =============================================================================

class Administrator(BaseModel):
    username: str
    password_hash: str
    role: Role = "admin"


# =============================================================================
# Root Document
# =============================================================================

class ConfigurationDocument(BaseModel):
    """
    Root of the persisted configuration.

    ``listeners`` is required: a document without a listener set is treated
    as malformed and rejected before anything is written.
    """
    model_config = ConfigDict(extra="allow")

    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)
    listeners: list[Listener]
    users: list[BrokerUser] = Field(default_factory=list)
    acl_profiles: list[AccessProfile] = Field(default_factory=list)
    administrators: list[Administrator] = Field(
        default_factory=list,
        validation_alias=AliasChoices("administrators", "dashboard_users"),
    )

    @classmethod
    def default(cls) -> "ConfigurationDocument":
        """
        The first-boot document.

        Favors ease of first use: one plain listener on 1883 with anonymous
        access enabled. Migration adds stricter listeners later.
        """
        return cls(
            global_settings=GlobalSettings(),
            listeners=[
                Listener(
                    id="default-1883",
                    port=1883,
                    bind_address="0.0.0.0",
                    protocol="mqtt",
                    allow_anonymous=True,
                ),
            ],
        )

    def to_dict(self) -> dict:
        """JSON-ready dict, omitting unset optional fields."""
        return self.model_dump(mode="json", exclude_none=True)

    def find_listener(self, listener_id: str) -> Listener | None:
        for listener in self.listeners:
            if listener.id == listener_id:
                return listener
        return None
