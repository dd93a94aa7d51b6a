from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from federation_checks.errors import ConfigError
from federation_checks.identifiers import validate_room_id, validate_user_id
from federation_checks.probe import PROBE_TIMEOUT_SECONDS
from federation_checks.resolver import DEFAULT_LOOKUP_TIMEOUT_SECONDS
from federation_checks.retry import RetryPolicy


PASSWORD_ENV_VAR = "MATRIX_PASSWORD"

DEFAULT_INTERVAL_SECONDS = 300
DEFAULT_CHECK_CONCURRENCY = 10


@dataclass(frozen=True)
class MonitorConfig:
    server_name: str
    username: str
    password: str = field(repr=False)
    log_room: str
    interval_seconds: int = DEFAULT_INTERVAL_SECONDS
    check_concurrency: int = DEFAULT_CHECK_CONCURRENCY
    lookup_timeout_seconds: float = DEFAULT_LOOKUP_TIMEOUT_SECONDS
    probe_timeout_seconds: float = PROBE_TIMEOUT_SECONDS
    verify_tls: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @property
    def homeserver_url(self) -> str:
        s = self.server_name.strip().rstrip("/")
        if "://" not in s:
            s = f"https://{s}"
        return s


def load_config_mapping(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Config YAML must be a mapping")
    return data


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Config key {key!r} is required and must be a non-empty string")
    return value.strip()


def _positive_int(value: Any, *, key: str, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Config key {key!r} must be a positive integer")
    try:
        n = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config key {key!r} must be a positive integer, got {value!r}") from exc
    if n <= 0 or (isinstance(value, float) and value != n):
        raise ConfigError(f"Config key {key!r} must be a positive integer, got {value!r}")
    return n


def _positive_float(value: Any, *, key: str, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Config key {key!r} must be a positive number")
    try:
        f = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config key {key!r} must be a positive number, got {value!r}") from exc
    if f <= 0:
        raise ConfigError(f"Config key {key!r} must be a positive number, got {value!r}")
    return f


def _parse_retry(raw: Any) -> RetryPolicy:
    if raw is None:
        return RetryPolicy()
    if not isinstance(raw, dict):
        raise ConfigError("Config key 'retry' must be a mapping")
    defaults = RetryPolicy()
    multiplier = _positive_float(raw.get("multiplier"), key="retry.multiplier", default=defaults.multiplier)
    if multiplier < 1.0:
        raise ConfigError("Config key 'retry.multiplier' must be >= 1")
    return RetryPolicy(
        max_attempts=_positive_int(raw.get("max_attempts"), key="retry.max_attempts", default=defaults.max_attempts),
        initial_delay_seconds=_positive_float(
            raw.get("initial_delay_seconds"),
            key="retry.initial_delay_seconds",
            default=defaults.initial_delay_seconds,
        ),
        multiplier=multiplier,
        max_delay_seconds=_positive_float(
            raw.get("max_delay_seconds"),
            key="retry.max_delay_seconds",
            default=defaults.max_delay_seconds,
        ),
    )


def parse_config(data: dict[str, Any], *, environ: dict[str, str] | None = None) -> MonitorConfig:
    env = os.environ if environ is None else environ

    password = data.get("password")
    if password is None or (isinstance(password, str) and not password):
        password = env.get(PASSWORD_ENV_VAR)
    if not isinstance(password, str) or not password:
        raise ConfigError(f"Config key 'password' is required (or set {PASSWORD_ENV_VAR})")

    verify_tls = data.get("verify_tls", True)
    if not isinstance(verify_tls, bool):
        raise ConfigError("Config key 'verify_tls' must be true or false")

    return MonitorConfig(
        server_name=_require_str(data, "servername"),
        username=validate_user_id(_require_str(data, "username")),
        password=password,
        log_room=validate_room_id(_require_str(data, "logroom")),
        interval_seconds=_positive_int(data.get("interval"), key="interval", default=DEFAULT_INTERVAL_SECONDS),
        check_concurrency=_positive_int(
            data.get("check_concurrency"), key="check_concurrency", default=DEFAULT_CHECK_CONCURRENCY
        ),
        lookup_timeout_seconds=_positive_float(
            data.get("lookup_timeout_seconds"),
            key="lookup_timeout_seconds",
            default=DEFAULT_LOOKUP_TIMEOUT_SECONDS,
        ),
        probe_timeout_seconds=_positive_float(
            data.get("probe_timeout_seconds"),
            key="probe_timeout_seconds",
            default=PROBE_TIMEOUT_SECONDS,
        ),
        verify_tls=verify_tls,
        retry=_parse_retry(data.get("retry")),
    )


def load_config(path: Path) -> MonitorConfig:
    return parse_config(load_config_mapping(path))
