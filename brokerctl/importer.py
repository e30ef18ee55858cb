"""
Mosquitto Manager - mosquitto.conf Importer
=============================================
Turns an existing mosquitto.conf into a ConfigurationDocument so a broker
configured by hand can be taken over.

What is imported:
    - listener <port> [bind]      (bind defaults to 0.0.0.0)
    - allow_anonymous             per listener
    - cafile/certfile/keyfile     mark the listener as TLS-requiring; port
                                  8883 becomes mqtts. Paths are NOT imported:
                                  certificates are managed by this tool.
    - persistence, persistence_location, log_dest

What is not:
    - per-listener password_file (every listener uses the managed file)
    - the internal service listener port (synthesized by the generator)
    - users and ACLs (hashes cannot be reversed)

A listener on 1883 is always present in the result.
"""

import time

from brokerctl.model import ConfigurationDocument, GlobalSettings, Listener
from brokerctl.paths import DEFAULT_LISTENER_PORT, INTERNAL_LISTENER_PORT


def parse_mosquitto_conf(
    content: str, internal_port: int = INTERNAL_LISTENER_PORT
) -> ConfigurationDocument:
    """
    Parse mosquitto.conf text.

    Args:
        content:       The file content.
        internal_port: Port reserved for the internal listener; ignored.

    Returns:
        A new document (not saved).
    """
    listeners: list[Listener] = []
    current: Listener | None = None
    skipping = False
    persistence = False
    persistence_location = "/mymosquitto/data/"
    log_dest = ""
    stamp = int(time.time() * 1000)

    for raw in content.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split()
        key = parts[0]

        if key == "listener":
            if current is not None:
                listeners.append(current)
            current = None
            skipping = False
            try:
                port = int(parts[1])
            except (IndexError, ValueError):
                skipping = True
                continue
            if port == internal_port:
                skipping = True
                continue
            current = Listener(
                id=f"imported-{port}-{stamp}-{len(listeners)}",
                port=port,
                bind_address=parts[2] if len(parts) > 2 else "0.0.0.0",
                protocol="mqtt",
                allow_anonymous=False,
            )
        elif key == "persistence" and len(parts) > 1:
            persistence = parts[1] == "true"
        elif key == "persistence_location" and len(parts) > 1:
            persistence_location = parts[1]
        elif key == "log_dest" and len(parts) > 1:
            if parts[1] != "stdout":
                log_dest = " ".join(parts[1:])
        elif current is not None and not skipping:
            if key == "allow_anonymous" and len(parts) > 1:
                current.allow_anonymous = parts[1] == "true"
            elif key == "protocol" and len(parts) > 1 and parts[1] == "websockets":
                current.protocol = "wss" if current.protocol == "mqtts" else "ws"
            elif key in ("cafile", "certfile", "keyfile"):
                if current.protocol == "ws":
                    current.protocol = "wss"
                elif current.port == 8883:
                    current.protocol = "mqtts"
                current.require_certificate = True

    if current is not None:
        listeners.append(current)

    if not any(l.port == DEFAULT_LISTENER_PORT for l in listeners):
        listeners.append(
            Listener(
                id="default-1883",
                port=DEFAULT_LISTENER_PORT,
                bind_address="0.0.0.0",
                protocol="mqtt",
                allow_anonymous=True,
            )
        )

    return ConfigurationDocument(
        global_settings=GlobalSettings(
            persistence=persistence,
            persistence_location=persistence_location,
            log_dest=log_dest or "file /mymosquitto/mosquitto.log",
        ),
        listeners=listeners,
    )


def merge_imported(current: ConfigurationDocument, imported: ConfigurationDocument) -> ConfigurationDocument:
    """
    Replace listeners and global settings, keep users, profiles and admins.
    """
    return current.model_copy(
        update={
            "global_settings": imported.global_settings,
            "listeners": imported.listeners,
        }
    )
