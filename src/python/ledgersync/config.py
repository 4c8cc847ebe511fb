"""Settings loaded from the JSON config file and environment overrides."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any
import json
import os

from ledgersync.reconcile import MatchThresholds

CONFIG_ENV = "LEDGERSYNC_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".ledgersync" / "config.json"
DEFAULT_LOCAL_DB_NAME = "local.db"
DEFAULT_PUSH_TIMEOUT_SECONDS = 10.0

ENV_OVERRIDES = {
    "LEDGERSYNC_PUSH_URL": "push_url",
    "LEDGERSYNC_BULK_URL": "bulk_url",
    "LEDGERSYNC_BULK_TOKEN": "bulk_token",
}


@dataclass(frozen=True)
class Settings:
    """Resolved ledgersync configuration."""

    local_db_path: Path = DEFAULT_CONFIG_PATH.parent / DEFAULT_LOCAL_DB_NAME
    store_db_path: Path | None = None
    push_url: str | None = None
    push_timeout_seconds: float = DEFAULT_PUSH_TIMEOUT_SECONDS
    bulk_url: str | None = None
    bulk_token: str | None = None
    match_thresholds: MatchThresholds = field(default_factory=MatchThresholds)

    def __post_init__(self) -> None:
        if self.push_timeout_seconds <= 0:
            raise ValueError("push_timeout_seconds must be greater than zero")

    @property
    def has_bulk_channel(self) -> bool:
        return bool(self.bulk_url and self.bulk_token)


def resolve_config_path(path: str | Path | None = None) -> Path:
    if path is not None:
        return Path(path)
    from_env = os.environ.get(CONFIG_ENV, "").strip()
    if from_env:
        return Path(from_env)
    return DEFAULT_CONFIG_PATH


def _load_config(config_path: Path) -> dict[str, Any]:
    """Load config file if present, else return empty config."""
    if not config_path.exists():
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Config file {config_path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        return {}
    return payload


def _optional_text(value: Any) -> str | None:
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def load_settings(path: str | Path | None = None) -> Settings:
    """Build settings from the config file, then apply environment overrides."""
    config_path = resolve_config_path(path)
    payload = _load_config(config_path)
    defaults = Settings()

    local_db = _optional_text(payload.get("local_db_path"))
    store_db = _optional_text(payload.get("store_db_path"))
    settings = Settings(
        local_db_path=Path(local_db) if local_db else config_path.parent / DEFAULT_LOCAL_DB_NAME,
        store_db_path=Path(store_db) if store_db else None,
        push_url=_optional_text(payload.get("push_url")),
        push_timeout_seconds=float(
            payload.get("push_timeout_seconds", defaults.push_timeout_seconds)
        ),
        bulk_url=_optional_text(payload.get("bulk_url")),
        bulk_token=_optional_text(payload.get("bulk_token")),
        match_thresholds=MatchThresholds.from_dict(payload.get("match_thresholds")),
    )

    overrides = {}
    for env_name, attribute in ENV_OVERRIDES.items():
        value = _optional_text(os.environ.get(env_name))
        if value:
            overrides[attribute] = value
    return replace(settings, **overrides) if overrides else settings
