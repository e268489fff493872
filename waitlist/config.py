"""Configuration management for the waitlist service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

DEFAULT_FROM_EMAIL = "onboarding@resend.dev"
DEFAULT_FROM_NAME = "Zintle Team"
DEFAULT_SPOTS_TOTAL = 500
DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_DELAY = 1.0
DEFAULT_RATE_LIMIT = 100
DEFAULT_RATE_WINDOW = 15 * 60


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the waitlist database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "waitlist.sqlite3").resolve(strict=False)


def _split_list(value: object) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ValueError(f"Expected a list or comma separated string, got {value!r}")
    return tuple(item.strip() for item in items if item.strip())


def _parse_int(name: str, value: object, *, minimum: int) -> int:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if number < minimum:
        raise ValueError(f"{name} must be at least {minimum}")
    return number


def _parse_float(name: str, value: object) -> float:
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number") from exc
    if number < 0:
        raise ValueError(f"{name} must not be negative")
    return number


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the waitlist service."""

    database_path: Path = field(default_factory=lambda: resolve_database_path(None))
    resend_api_key: Optional[str] = None
    from_email: str = DEFAULT_FROM_EMAIL
    from_name: str = DEFAULT_FROM_NAME
    development: bool = False
    spots_total: int = DEFAULT_SPOTS_TOTAL
    broadcast_batch_size: int = DEFAULT_BATCH_SIZE
    broadcast_batch_delay: float = DEFAULT_BATCH_DELAY
    admin_tokens: Tuple[str, ...] = ()
    cors_origins: Tuple[str, ...] = ("*",)
    rate_limit_requests: int = DEFAULT_RATE_LIMIT
    rate_limit_window: float = DEFAULT_RATE_WINDOW

    @property
    def mail_configured(self) -> bool:
        return bool(self.resend_api_key)

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from raw dictionary data, e.g. a YAML file."""

        known = {item.name for item in fields(Settings)}
        unknown = set(data.keys()) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        return _apply(Settings(), dict(data), base_path=base_path)


def _apply(settings: Settings, values: Dict[str, object], *, base_path: Path | None = None) -> Settings:
    updates: Dict[str, object] = {}
    for key, value in values.items():
        if value is None:
            continue
        if key == "database_path":
            raw_path = Path(str(value)).expanduser()
            if not raw_path.is_absolute() and base_path is not None:
                raw_path = base_path / raw_path
            updates[key] = raw_path.resolve(strict=False)
        elif key in {"resend_api_key", "from_email", "from_name"}:
            text = str(value).strip()
            if text:
                updates[key] = text
        elif key == "development":
            if isinstance(value, str):
                updates[key] = value.strip().lower() in {"1", "true", "yes", "on", "development"}
            else:
                updates[key] = bool(value)
        elif key == "spots_total":
            updates[key] = _parse_int(key, value, minimum=0)
        elif key == "broadcast_batch_size":
            updates[key] = _parse_int(key, value, minimum=1)
        elif key == "rate_limit_requests":
            updates[key] = _parse_int(key, value, minimum=1)
        elif key in {"broadcast_batch_delay", "rate_limit_window"}:
            updates[key] = _parse_float(key, value)
        elif key in {"admin_tokens", "cors_origins"}:
            updates[key] = _split_list(value)
        else:
            raise ValueError(f"Unknown configuration key: {key}")
    return replace(settings, **updates)


_ENVIRONMENT_KEYS = {
    "WAITLIST_DB_PATH": "database_path",
    "RESEND_API_KEY": "resend_api_key",
    "FROM_EMAIL": "from_email",
    "FROM_NAME": "from_name",
    "WAITLIST_SPOTS_TOTAL": "spots_total",
    "WAITLIST_BATCH_SIZE": "broadcast_batch_size",
    "WAITLIST_BATCH_DELAY": "broadcast_batch_delay",
    "WAITLIST_ADMIN_TOKENS": "admin_tokens",
    "WAITLIST_CORS_ORIGINS": "cors_origins",
    "WAITLIST_RATE_LIMIT": "rate_limit_requests",
    "WAITLIST_RATE_WINDOW": "rate_limit_window",
}


def load_settings_file(config_path: Path) -> Settings:
    """Load settings from a YAML file."""

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return Settings.from_dict(raw, base_path=config_path.parent)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from an optional YAML file plus environment overrides."""

    env = os.environ if environ is None else environ

    config_file = env.get("WAITLIST_CONFIG")
    if config_file:
        settings = load_settings_file(Path(config_file).expanduser().resolve(strict=False))
    else:
        settings = Settings()

    overrides: Dict[str, object] = {}
    for variable, key in _ENVIRONMENT_KEYS.items():
        value = env.get(variable)
        if value is None or value == "":
            continue
        overrides[key] = value

    environment = env.get("WAITLIST_ENV")
    if environment:
        overrides["development"] = environment.strip().lower() == "development"

    try:
        return _apply(settings, overrides)
    except ValueError as exc:
        reverse = {key: variable for variable, key in _ENVIRONMENT_KEYS.items()}
        message = str(exc)
        for key, variable in reverse.items():
            if message.startswith(f"{key} "):
                message = variable + message[len(key):]
                break
        raise ValueError(message) from exc


__all__ = ["Settings", "load_settings", "load_settings_file", "resolve_database_path"]
