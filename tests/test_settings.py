import os

import pytest
import yaml

from console.settings import DEFAULTS, SettingsManager, command


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("MOSQUITTO_DIR", "DATA_DIR", "PORT", "WEB_USERNAME", "WEB_PASSWORD"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_files(tmp_path):
    config = SettingsManager(str(tmp_path)).load()

    assert config["web"]["port"] == DEFAULTS["web"]["port"]
    assert config["broker"]["internal_port"] == 10883
    assert "_config_error" not in config


def test_yaml_is_merged_over_defaults(tmp_path):
    (tmp_path / "config.yaml").write_text(
        yaml.safe_dump({"broker": {"mosquitto_dir": "/srv/mqtt", "broker_uid": 1883}}),
        encoding="utf-8",
    )

    broker = SettingsManager(str(tmp_path)).load()["broker"]

    assert broker["mosquitto_dir"] == "/srv/mqtt"
    assert broker["broker_uid"] == 1883
    assert broker["secure_dir"] == "/etc/mosquitto/secure"


def test_corrupt_yaml_falls_back_to_defaults(tmp_path):
    (tmp_path / "config.yaml").write_text("broker: [unclosed", encoding="utf-8")

    config = SettingsManager(str(tmp_path)).load()

    assert "_config_error" in config
    assert config["broker"]["mosquitto_dir"] == "/mymosquitto"


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("MOSQUITTO_DIR", "/env/mosquitto")
    monkeypatch.setenv("PORT", "8080")

    config = SettingsManager(str(tmp_path)).load()

    assert config["broker"]["mosquitto_dir"] == "/env/mosquitto"
    assert config["web"]["port"] == 8080


def test_broker_paths_resolve_relative_data_dir(tmp_path):
    paths = SettingsManager(str(tmp_path)).broker_paths()

    assert paths.state_file == os.path.join(str(tmp_path), "data", "state.json")
    assert paths.conf_file == "/mymosquitto/mosquitto.conf"


def test_bootstrap_credentials_from_dotenv(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("WEB_USERNAME=operator\nWEB_PASSWORD=s3cret\n", encoding="utf-8")

    bootstrap = SettingsManager(str(tmp_path)).bootstrap_credentials()

    assert bootstrap.username == "operator"
    assert bootstrap.password == "s3cret"
    assert "s3cret" not in repr(bootstrap)


def test_environment_beats_dotenv(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("WEB_PASSWORD=fromfile\n", encoding="utf-8")
    monkeypatch.setenv("WEB_PASSWORD", "fromenv")

    bootstrap = SettingsManager(str(tmp_path)).bootstrap_credentials()

    assert bootstrap.username == "admin"
    assert bootstrap.password == "fromenv"


def test_command_normalization():
    assert command("docker exec broker mosquitto_passwd") == ("docker", "exec", "broker", "mosquitto_passwd")
    assert command(["openssl"]) == ("openssl",)
