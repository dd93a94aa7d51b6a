from __future__ import annotations

from pathlib import Path

import pytest

from federation_checks.config import load_config, parse_config
from federation_checks.errors import ConfigError


BASE = {
    "servername": "matrix.example.org",
    "username": "@fedmon:example.org",
    "password": "hunter2",
    "logroom": "!log:example.org",
    "interval": 60,
}


def test_load_config_from_yaml(tmp_path: Path) -> None:
    p = tmp_path / "config.yaml"
    p.write_text(
        "servername: https://matrix.example.org/\n"
        "username: '@fedmon:example.org'\n"
        "password: hunter2\n"
        "logroom: '!log:example.org'\n"
        "interval: 60\n"
        "retry:\n"
        "  max_attempts: 4\n"
        "  initial_delay_seconds: 1\n",
        encoding="utf-8",
    )
    cfg = load_config(p)
    assert cfg.homeserver_url == "https://matrix.example.org"
    assert cfg.username == "@fedmon:example.org"
    assert cfg.log_room == "!log:example.org"
    assert cfg.interval_seconds == 60
    assert cfg.probe_timeout_seconds == 5.0
    assert cfg.retry.max_attempts == 4
    assert cfg.retry.initial_delay_seconds == 1.0
    assert "hunter2" not in repr(cfg)


def test_homeserver_url_defaults_to_https() -> None:
    assert parse_config(dict(BASE), environ={}).homeserver_url == "https://matrix.example.org"


def test_password_from_environment() -> None:
    data = dict(BASE)
    data.pop("password")
    cfg = parse_config(data, environ={"MATRIX_PASSWORD": "from-env"})
    assert cfg.password == "from-env"


def test_missing_password_is_fatal() -> None:
    data = dict(BASE, password="")
    with pytest.raises(ConfigError):
        parse_config(data, environ={})


@pytest.mark.parametrize("key", ["servername", "username", "logroom"])
def test_missing_required_key(key: str) -> None:
    data = dict(BASE)
    data.pop(key)
    with pytest.raises(ConfigError):
        parse_config(data, environ={})


@pytest.mark.parametrize("interval", [0, -5, "soon", 1.5, True])
def test_interval_must_be_positive_int(interval) -> None:
    with pytest.raises(ConfigError):
        parse_config(dict(BASE, interval=interval), environ={})


def test_invalid_username_format_is_fatal() -> None:
    with pytest.raises(ConfigError):
        parse_config(dict(BASE, username="fedmon"), environ={})


def test_invalid_log_room_is_fatal() -> None:
    with pytest.raises(ConfigError):
        parse_config(dict(BASE, logroom="#log:example.org"), environ={})


def test_retry_section_must_be_mapping() -> None:
    with pytest.raises(ConfigError):
        parse_config(dict(BASE, retry=[1, 2]), environ={})


def test_non_mapping_yaml_rejected(tmp_path: Path) -> None:
    p = tmp_path / "config.yaml"
    p.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(p)


def test_missing_file_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "nope.yaml")
