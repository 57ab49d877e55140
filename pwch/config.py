from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Optional

import yaml

from .exceptions import ConfigError

DEFAULT_CONFIG_PATH = "/etc/pwch/config.yml"

DEFAULTS: dict[str, dict[str, Any]] = {
    "server": {"listen_address": "127.0.0.1", "port": "8080"},
    "db": {"path": ""},
    "bcrypt": {"cost": "12"},
    "smtp": {
        "host": "",
        "port": "587",
        "security": "starttls",
        "login_user": "",
        "login_password": "",
        "sender": "",
        "timeout_seconds": "15",
    },
    "password_policy": {
        "min_length": "12",
        "max_length": "64",
        "lower_case": "1",
        "upper_case": "1",
        "digits": "1",
        "special_char": "1",
    },
    "otl": {"valid_for": "10m", "sweep_interval": "30s"},
    "rate_limit": {"cooldown_seconds": "5"},
    "bridge": {
        "path": "/usr/local/bin/doveadm_wrapper",
        "timeout_seconds": "30",
    },
    "mailbox": {"digest_key": ""},
}

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|ms|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


@dataclass(frozen=True)
class ServerSettings:
    listen_address: str
    port: int


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    security: str
    login_user: str
    login_password: str
    sender: str
    timeout_seconds: int


@dataclass(frozen=True)
class PolicySettings:
    min_length: int
    max_length: int
    lower_case: bool
    upper_case: bool
    digits: bool
    special_char: bool


@dataclass(frozen=True)
class BridgeSettings:
    path: str
    timeout_seconds: float


@dataclass(frozen=True)
class AppSettings:
    domain: str
    url_prefix: str
    assets_path: str
    server: ServerSettings
    db_path: str
    bcrypt_cost: int
    smtp: SmtpSettings
    password_policy: PolicySettings
    otl_valid_for: float
    sweep_interval: float
    cooldown_seconds: float
    bridge: BridgeSettings
    digest_key: Optional[str]


def parse_duration(raw: Any) -> float:
    """Seconds from a plain number or a duration such as ``10m``/``1h30m``."""
    if isinstance(raw, bool):
        raise ValueError("invalid duration")
    if isinstance(raw, (int, float)):
        return float(raw)
    s = str(raw).strip()
    if not s:
        raise ValueError("invalid duration")
    try:
        return float(s)
    except ValueError:
        pass
    pos = 0
    total = 0.0
    for m in _DURATION_RE.finditer(s):
        if m.start() != pos:
            raise ValueError(f"invalid duration: {s}")
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s):
        raise ValueError(f"invalid duration: {s}")
    return total


def _truthy(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in {"1", "true", "on", "yes"}


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"section {name!r} must be a mapping")
    merged = dict(DEFAULTS.get(name, {}))
    merged.update({k: v for k, v in raw.items() if v is not None})
    return merged


def _int(section: dict[str, Any], key: str, default: int) -> int:
    try:
        return int(str(section.get(key, "")).strip())
    except ValueError:
        return default


def _float(section: dict[str, Any], key: str, default: float) -> float:
    try:
        return float(str(section.get(key, "")).strip())
    except ValueError:
        return default


def _data_dir() -> str:
    base_dir = os.environ.get("PWCH_DATA_DIR")
    if not base_dir:
        base_dir = os.path.join(os.getcwd(), "data")
    return base_dir


def _default_assets_path() -> str:
    return os.path.join(os.path.dirname(__file__), "templates")


def settings_from_mapping(data: dict[str, Any]) -> AppSettings:
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")

    server = _section(data, "server")
    db = _section(data, "db")
    bcrypt = _section(data, "bcrypt")
    smtp = _section(data, "smtp")
    policy = _section(data, "password_policy")
    otl = _section(data, "otl")
    rate = _section(data, "rate_limit")
    bridge = _section(data, "bridge")
    mailbox = _section(data, "mailbox")

    smtp_password = str(smtp["login_password"]).strip()
    if not smtp_password:
        smtp_password = os.environ.get("PWCH_SMTP_PASSWORD", "").strip()

    try:
        valid_for = parse_duration(otl["valid_for"])
        sweep_interval = parse_duration(otl["sweep_interval"])
    except ValueError as e:
        raise ConfigError(str(e)) from e

    min_length = _int(policy, "min_length", 12)
    max_length = _int(policy, "max_length", 64)
    if max_length < min_length:
        raise ConfigError("password_policy.max_length is below min_length")

    url_prefix = str(data.get("url_prefix") or "").strip().rstrip("/")
    if url_prefix and not url_prefix.startswith("/"):
        url_prefix = "/" + url_prefix

    digest_key = str(mailbox["digest_key"] or "").strip() or None

    return AppSettings(
        domain=str(data.get("domain") or "").strip(),
        url_prefix=url_prefix,
        assets_path=str(data.get("assets_path") or "").strip()
        or _default_assets_path(),
        server=ServerSettings(
            listen_address=str(server["listen_address"]).strip() or "127.0.0.1",
            port=_int(server, "port", 8080),
        ),
        db_path=str(db["path"] or "").strip()
        or os.path.join(_data_dir(), "pwch.db"),
        bcrypt_cost=_int(bcrypt, "cost", 12),
        smtp=SmtpSettings(
            host=str(smtp["host"]).strip(),
            port=_int(smtp, "port", 587),
            security=str(smtp["security"]).strip().lower() or "starttls",
            login_user=str(smtp["login_user"]).strip(),
            login_password=smtp_password,
            sender=str(smtp["sender"]).strip(),
            timeout_seconds=_int(smtp, "timeout_seconds", 15),
        ),
        password_policy=PolicySettings(
            min_length=min_length,
            max_length=max_length,
            lower_case=_truthy(policy["lower_case"]),
            upper_case=_truthy(policy["upper_case"]),
            digits=_truthy(policy["digits"]),
            special_char=_truthy(policy["special_char"]),
        ),
        otl_valid_for=valid_for,
        sweep_interval=sweep_interval,
        cooldown_seconds=_float(rate, "cooldown_seconds", 5.0),
        bridge=BridgeSettings(
            path=str(bridge["path"]).strip(),
            timeout_seconds=_float(bridge, "timeout_seconds", 30.0),
        ),
        digest_key=digest_key,
    )


def load_settings(path: Optional[str] = None) -> AppSettings:
    path = path or os.environ.get("PWCH_CONFIG") or DEFAULT_CONFIG_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e.strerror}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse {path}: {e}") from e
    return settings_from_mapping(data)
