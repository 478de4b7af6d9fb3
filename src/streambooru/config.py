from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from streambooru.models import RATINGS, SITE_TYPES, SiteConfig
from streambooru.utils.url_utils import is_http_url, normalize_base_url

_MULTISPACE = re.compile(r"\s+")

_CREDENTIAL_FIELDS = {
    "danbooru": ("login", "api_key"),
    "moebooru": ("login", "password_hash"),
    "gelbooru": ("user_id", "api_key"),
    "e621": ("login", "api_key"),
    "derpibooru": ("filter_id",),
}


class ConfigError(ValueError):
    """Raised when configuration is invalid."""


@dataclass(slots=True)
class FeedSettings:
    page_size: int = 40
    max_workers: int = 8
    timeout_seconds: int = 30


@dataclass(slots=True)
class SyncSettings:
    server_url: str = ""
    token_env_var: str = "STREAMBOORU_TOKEN"
    reconnect_delay_seconds: float = 3.0


@dataclass(slots=True)
class StorageSettings:
    type: str = "sqlite"
    path: str = "data/state.sqlite"


@dataclass(slots=True)
class AppConfig:
    sites: list[SiteConfig] = field(default_factory=list)
    feed: FeedSettings = field(default_factory=FeedSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    log_level: str = "INFO"


def _clean_text(value: Any, max_length: int) -> str:
    return _MULTISPACE.sub(" ", str(value or "")).strip()[:max_length]


def _as_int(value: Any, *, field_name: str, minimum: int | None = None) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be an integer")

    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer") from exc

    if minimum is not None and parsed < minimum:
        raise ConfigError(f"{field_name} must be >= {minimum}")
    return parsed


def _as_float(value: Any, *, field_name: str, minimum: float | None = None) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be a number")

    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be a number") from exc

    if minimum is not None and parsed < minimum:
        raise ConfigError(f"{field_name} must be >= {minimum}")
    return parsed


def _as_mapping(value: Any, *, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{field_name} must be a mapping")
    return value


def _resolve_relative_path(config_path: Path, raw_path: str) -> str:
    candidate = Path(raw_path).expanduser()
    if candidate.is_absolute():
        return str(candidate)
    return str((config_path.parent / candidate).resolve())


def normalize_rating(value: Any) -> str:
    rating = str(value or "").strip().lower()
    return rating if rating in RATINGS else "any"


def sanitize_credentials(site_type: str, credentials: Any) -> dict[str, str]:
    if not isinstance(credentials, dict):
        return {}
    kept: dict[str, str] = {}
    for name in _CREDENTIAL_FIELDS.get(site_type, ()):
        value = credentials.get(name)
        if value:
            kept[name] = _clean_text(value, 200)
    return kept


def parse_site(raw: Any, *, label: str = "site") -> SiteConfig:
    """Validate one site entry from a config file, the local store or the sync server."""
    if not isinstance(raw, dict):
        raise ConfigError(f"{label} must be a mapping")

    site_type = str(raw.get("type", "")).strip().lower()
    if site_type not in SITE_TYPES:
        allowed = ", ".join(SITE_TYPES)
        raise ConfigError(f"{label} has unsupported type '{site_type}' (expected one of: {allowed})")

    raw_url = raw.get("url") or raw.get("baseUrl") or raw.get("base_url") or ""
    if not is_http_url(str(raw_url)):
        raise ConfigError(f"{label} needs an http(s) url")
    base_url = normalize_base_url(str(raw_url))

    order_raw = raw.get("order_index")
    order_index = (
        _as_int(order_raw, field_name=f"{label}.order_index", minimum=0)
        if order_raw is not None
        else None
    )

    return SiteConfig(
        name=_clean_text(raw.get("name") or base_url, 200),
        type=site_type,
        base_url=base_url,
        rating=normalize_rating(raw.get("rating")),
        tags=_clean_text(raw.get("tags"), 800),
        credentials=sanitize_credentials(site_type, raw.get("credentials")),
        order_index=order_index,
    )


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        parsed = yaml.safe_load(handle) or {}

    if not isinstance(parsed, dict):
        raise ConfigError("Config root must be a mapping")

    raw_sites = parsed.get("sites", [])
    if not isinstance(raw_sites, list):
        raise ConfigError("sites must be a list")

    sites = [
        parse_site(raw_site, label=f"Site entry #{index}")
        for index, raw_site in enumerate(raw_sites, start=1)
    ]

    raw_feed = _as_mapping(parsed.get("feed"), field_name="feed")
    feed_settings = FeedSettings(
        page_size=_as_int(raw_feed.get("page_size", 40), field_name="feed.page_size", minimum=1),
        max_workers=_as_int(raw_feed.get("max_workers", 8), field_name="feed.max_workers", minimum=1),
        timeout_seconds=_as_int(
            raw_feed.get("timeout_seconds", 30),
            field_name="feed.timeout_seconds",
            minimum=1,
        ),
    )

    raw_sync = _as_mapping(parsed.get("sync"), field_name="sync")
    server_url = str(raw_sync.get("server_url") or "").strip()
    if server_url and not is_http_url(server_url):
        raise ConfigError("sync.server_url must be an http(s) url")
    sync_settings = SyncSettings(
        server_url=normalize_base_url(server_url),
        token_env_var=str(raw_sync.get("token_env_var", "STREAMBOORU_TOKEN")).strip()
        or "STREAMBOORU_TOKEN",
        reconnect_delay_seconds=_as_float(
            raw_sync.get("reconnect_delay_seconds", 3.0),
            field_name="sync.reconnect_delay_seconds",
            minimum=0,
        ),
    )

    raw_storage = _as_mapping(parsed.get("storage"), field_name="storage")
    storage_path = str(raw_storage.get("path", "data/state.sqlite")).strip() or "data/state.sqlite"
    storage_settings = StorageSettings(
        type=str(raw_storage.get("type", "sqlite")).strip() or "sqlite",
        path=_resolve_relative_path(config_path, storage_path),
    )

    return AppConfig(
        sites=sites,
        feed=feed_settings,
        sync=sync_settings,
        storage=storage_settings,
        log_level=str(parsed.get("log_level", "INFO")).upper(),
    )
