"""
Mosquitto Manager - Config Generator
======================================
Pure functions turning a ConfigurationDocument into broker artifacts:

    generate_mosquitto_conf()  -> mosquitto.conf text
    generate_password_lines()  -> "username:password" lines (cleartext;
                                  hashing happens later via mosquitto_passwd)
    generate_acl_files()       -> {"<profile>.conf": text} per access profile

Nothing here touches the filesystem or validates input. Directive names and
ordering are what mosquitto's parser expects; keep them byte-for-byte.
"""

import os

from brokerctl.model import AccessProfile, ConfigurationDocument, Listener
from brokerctl.paths import INTERNAL_LISTENER_ADDRESS, BrokerPaths


BANNER = "# " + "=" * 59


def acl_filename(profile_name: str) -> str:
    """File name of an access profile's ACL file."""
    return f"{profile_name}.conf"


def acl_path(profile_name: str, paths: BrokerPaths) -> str:
    """Broker-visible ACL path of a profile (always inside the secure dir)."""
    return os.path.join(paths.secure_acl_dir, acl_filename(profile_name))


# =============================================================================
# mosquitto.conf
# =============================================================================

def _global_lines(doc: ConfigurationDocument) -> list[str]:
    settings = doc.global_settings
    lines = [
        "# ============================",
        "# Global Mosquitto Settings",
        "# ============================",
        "",
        # Each listener carries its own auth/TLS settings.
        "per_listener_settings true",
    ]

    if settings.persistence:
        lines.append("persistence true")
        lines.append(f"persistence_location {settings.persistence_location}")
        lines.append("autosave_interval 1800")
    else:
        lines.append("persistence false")

    # $SYS statistics every 2 seconds
    lines.append("sys_interval 2")

    lines.append(f"log_dest {settings.log_dest}")
    lines.append("log_dest stdout")
    for log_type in settings.log_type:
        lines.append(f"log_type {log_type}")
    lines.append("")
    return lines


def _listener_lines(
    listener: Listener, doc: ConfigurationDocument, paths: BrokerPaths
) -> list[str]:
    lines = [
        BANNER,
        f"# Listener: {listener.id}",
        BANNER,
        f"listener {listener.port} {listener.bind_address}",
        "protocol websockets" if listener.is_websocket else "protocol mqtt",
    ]

    if listener.is_tls:
        certs = doc.global_settings.certificates
        if certs is not None:
            if certs.cafile:
                lines.append(f"cafile {certs.cafile}")
            if certs.certfile:
                lines.append(f"certfile {certs.certfile}")
            if certs.keyfile:
                lines.append(f"keyfile {certs.keyfile}")
        if listener.tls_version:
            lines.append(f"tls_version {listener.tls_version}")

    lines.append(f"allow_anonymous {'true' if listener.allow_anonymous else 'false'}")
    if listener.require_certificate:
        lines.append("require_certificate true")
    if listener.use_identity_as_username:
        lines.append("use_identity_as_username true")

    if not listener.allow_anonymous or listener.password_file:
        password_file = listener.password_file or paths.secure_password_file
        lines.append(f"password_file {password_file}")

    if listener.acl_profile:
        lines.append(f"acl_file {acl_path(listener.acl_profile, paths)}")

    lines.append("")
    return lines


def _internal_listener_lines(paths: BrokerPaths) -> list[str]:
    return [
        BANNER,
        "# Internal Listener (Backend)",
        BANNER,
        f"listener {paths.internal_port} {INTERNAL_LISTENER_ADDRESS}",
        "allow_anonymous false",
        f"password_file {paths.secure_password_file}",
        "",
    ]


def generate_mosquitto_conf(doc: ConfigurationDocument, paths: BrokerPaths) -> str:
    """
    Render the main broker config.

    Layout: global directives, one stanza per enabled listener in document
    order, then the internal service listener, always last.

    Args:
        doc:   The configuration document.
        paths: Filesystem layout (secure paths referenced by stanzas).

    Returns:
        The mosquitto.conf text, ending with a single newline.
    """
    lines = _global_lines(doc)
    for listener in doc.listeners:
        if not listener.enabled:
            continue
        lines.extend(_listener_lines(listener, doc, paths))
    lines.extend(_internal_listener_lines(paths))
    return "\n".join(lines) + "\n"


# =============================================================================
# Password file
# =============================================================================

def generate_password_lines(doc: ConfigurationDocument) -> list[str]:
    """One "username:password" line per enabled user. Disabled users are omitted."""
    return [f"{user.username}:{user.password}" for user in doc.users if user.enabled]


def generate_password_file(doc: ConfigurationDocument) -> str:
    return "\n".join(generate_password_lines(doc)) + "\n"


# =============================================================================
# ACL files
# =============================================================================

def generate_acl_text(profile: AccessProfile) -> str:
    lines = [f"# Access Profile: {profile.name}"]
    if profile.description:
        lines.append(f"# {profile.description}")
    lines.append("")

    for entry in profile.users:
        lines.append(f"user {entry.username}")
        for rule in entry.rules:
            lines.append(f"topic {rule.access} {rule.value}")
        lines.append("")

    return "\n".join(lines)


def generate_acl_files(doc: ConfigurationDocument) -> dict[str, str]:
    """
    Render every access profile.

    Returns:
        Mapping of ACL file name (``<profile>.conf``) to file content.
    """
    return {
        acl_filename(profile.name): generate_acl_text(profile)
        for profile in doc.acl_profiles
    }
