"""Configuration management for the messagely service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

DEFAULT_BCRYPT_WORK_FACTOR = 12
MIN_BCRYPT_WORK_FACTOR = 4
MAX_BCRYPT_WORK_FACTOR = 31


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "messagely.sqlite3").resolve(strict=False)


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the optional YAML configuration file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    candidate = (Path(__file__).resolve().parent.parent / "config" / "messagely.yaml").resolve(strict=False)
    return candidate if candidate.exists() else None


def _parse_work_factor(value: object) -> int:
    try:
        rounds = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"bcrypt work factor must be an integer, got {value!r}") from exc
    if not MIN_BCRYPT_WORK_FACTOR <= rounds <= MAX_BCRYPT_WORK_FACTOR:
        raise ValueError(
            f"bcrypt work factor must be between {MIN_BCRYPT_WORK_FACTOR} and {MAX_BCRYPT_WORK_FACTOR}"
        )
    return rounds


@dataclass(frozen=True)
class Settings:
    """Process-wide settings injected into the identity service and guard."""

    secret_key: str
    bcrypt_work_factor: int = DEFAULT_BCRYPT_WORK_FACTOR
    database_path: Path = resolve_database_path(None)

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        secret_key = str(data.get("secret_key") or "").strip()
        if not secret_key:
            raise ValueError("A secret key must be configured to sign tokens")

        raw_rounds = data.get("bcrypt_work_factor")
        rounds = DEFAULT_BCRYPT_WORK_FACTOR if raw_rounds is None else _parse_work_factor(raw_rounds)

        raw_path = data.get("database_path")
        return Settings(
            secret_key=secret_key,
            bcrypt_work_factor=rounds,
            database_path=resolve_database_path(str(raw_path) if raw_path else None),
        )


def _load_yaml(config_path: Path) -> Dict[str, object]:
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return dict(raw)


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from an optional YAML file, then apply environment overrides."""

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get("MESSAGELY_CONFIG"))

    data: Dict[str, object] = {}
    if config_path is not None:
        data.update(_load_yaml(config_path))

    overrides = {
        "secret_key": env.get("MESSAGELY_SECRET_KEY"),
        "bcrypt_work_factor": env.get("MESSAGELY_BCRYPT_WORK_FACTOR"),
        "database_path": env.get("MESSAGELY_DB_PATH"),
    }
    for key, value in overrides.items():
        if value:
            data[key] = value

    return Settings.from_dict(data)


__all__ = [
    "DEFAULT_BCRYPT_WORK_FACTOR",
    "Settings",
    "load_settings",
    "resolve_config_path",
    "resolve_database_path",
]
