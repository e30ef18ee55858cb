"""
Mosquitto Manager - Settings Manager
======================================
Loads the manager's own runtime settings from two sources:

1. config.yaml  - Paths, ports, broker ownership, external tool commands
2. .env         - Secrets (bootstrap administrator credentials)

Environment variables override both (MOSQUITTO_DIR, DATA_DIR, PORT,
WEB_USERNAME, WEB_PASSWORD), so the usual container setup needs no files.

Usage:
    settings = SettingsManager(project_dir="/app")
    config = settings.load()                 # merged dict
    paths = settings.broker_paths(config)    # BrokerPaths for the core
    bootstrap = settings.bootstrap_credentials()
"""

import copy
import os
import shlex

import yaml
from dotenv import dotenv_values

from brokerctl.admins import BootstrapCredentials
from brokerctl.paths import BrokerPaths


# Default settings used when config.yaml is missing or incomplete.
DEFAULTS = {
    "web": {
        "host": "0.0.0.0",
        "port": 3000,
    },
    "broker": {
        "mosquitto_dir": "/mymosquitto",
        "secure_dir": "/etc/mosquitto/secure",
        "data_dir": "data",
        "pid_file": "/run/mosquitto.pid",
        "internal_port": 10883,
        "default_port": 1883,
        "broker_uid": 100,
        "broker_gid": 101,
        "passwd_command": ["mosquitto_passwd"],
        "openssl_command": ["openssl"],
        "log_poll_interval": 0.2,
        "stats_reconnect_interval": 5,
    },
}

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "MOSQUITTO_DIR": ("broker", "mosquitto_dir"),
    "DATA_DIR": ("broker", "data_dir"),
    "PORT": ("web", "port"),
}


class SettingsManager:
    """
    Reads config.yaml and .env for the manager process.

    Attributes:
        project_dir: Root directory of the installation.
        config_path: Full path to config.yaml.
        env_path:    Full path to .env.
    """

    def __init__(self, project_dir: str):
        self.project_dir = project_dir
        self.config_path = os.path.join(project_dir, "config.yaml")
        self.env_path = os.path.join(project_dir, ".env")

    def load(self) -> dict:
        """
        Load config.yaml merged over DEFAULTS, then apply env overrides.

        A corrupted config.yaml falls back to defaults and records the
        problem under ``_config_error``.

        Returns:
            The full settings dictionary.
        """
        config = copy.deepcopy(DEFAULTS)

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    user_config = yaml.safe_load(f) or {}
                _deep_merge(config, user_config)
            except (yaml.YAMLError, OSError) as e:
                config["_config_error"] = str(e)

        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                config[section][key] = int(value) if key == "port" else value

        return config

    def secrets(self) -> dict:
        """Merged .env values and process environment (environment wins)."""
        values = dotenv_values(self.env_path) if os.path.exists(self.env_path) else {}
        merged = {k: v for k, v in values.items() if v is not None}
        merged.update(os.environ)
        return merged

    def bootstrap_credentials(self) -> BootstrapCredentials:
        """First-run administrator credentials (WEB_USERNAME / WEB_PASSWORD)."""
        secrets = self.secrets()
        return BootstrapCredentials(
            username=secrets.get("WEB_USERNAME") or "admin",
            password=secrets.get("WEB_PASSWORD") or "admin",
        )

    def broker_paths(self, config: dict | None = None) -> BrokerPaths:
        """Build the core's filesystem layout from the settings."""
        broker = (config or self.load())["broker"]
        data_dir = broker["data_dir"]
        if not os.path.isabs(data_dir):
            data_dir = os.path.join(self.project_dir, data_dir)

        return BrokerPaths(
            mosquitto_dir=broker["mosquitto_dir"],
            secure_dir=broker["secure_dir"],
            data_dir=data_dir,
            pid_file=broker["pid_file"],
            internal_port=int(broker["internal_port"]),
            default_port=int(broker["default_port"]),
        )


def command(value) -> tuple[str, ...]:
    """Normalize a tool command given as a list or a shell-style string."""
    if isinstance(value, str):
        return tuple(shlex.split(value))
    return tuple(str(part) for part in value)


def _deep_merge(base: dict, override: dict) -> None:
    """
    Recursively merge 'override' into 'base' (in-place).

    For nested dicts, values are merged recursively.
    For all other types, override replaces base.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
