from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterable
from typing import Any

from streambooru.models import FavoriteEntry, Post
from streambooru.ranking import sort_favorites
from streambooru.store.base import StateStore
from streambooru.utils.datetime_utils import now_millis

logger = logging.getLogger(__name__)

FAVORITES_DOCUMENT = "favorites"
MAX_STRING_LENGTH = 2000
MAX_SNAPSHOT_BYTES = 300_000

_POST_FIELDS = (
    "id",
    "site",
    "created_at",
    "score",
    "favorites",
    "preview_url",
    "sample_url",
    "file_url",
    "width",
    "height",
    "tags",
    "rating",
    "source",
    "post_url",
)


def clamp_post(raw: Any) -> dict[str, Any] | None:
    """Keep the known post fields, trim long strings and reject oversized snapshots."""
    if not isinstance(raw, dict):
        return None

    clamped = {name: _clamp_value(raw[name]) for name in _POST_FIELDS if name in raw}
    if not clamped.get("id"):
        return None
    try:
        encoded = json.dumps(clamped, ensure_ascii=False)
    except (TypeError, ValueError):
        return None
    if len(encoded.encode("utf-8")) > MAX_SNAPSHOT_BYTES:
        return None
    return clamped


def parse_entry(raw: Any) -> FavoriteEntry | None:
    """Build an entry from a stored or remote ``{key, added_at, post}`` record."""
    if not isinstance(raw, dict):
        return None
    key = str(raw.get("key") or "").strip()
    snapshot = clamp_post(raw.get("post"))
    if not key or snapshot is None:
        return None

    try:
        added_at = int(raw.get("added_at") or 0)
    except (TypeError, ValueError):
        added_at = 0
    return FavoriteEntry(key=key, added_at=added_at, post=Post.from_dict(snapshot))


def _clamp_value(value: Any) -> Any:
    if isinstance(value, str):
        return value[:MAX_STRING_LENGTH]
    if isinstance(value, list):
        return [_clamp_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _clamp_value(item) for key, item in value.items()}
    return value


class FavoritesStore:
    """Local key -> entry mapping; every mutation is written through before returning."""

    def __init__(self, state_store: StateStore) -> None:
        self.state_store = state_store
        self._lock = threading.RLock()
        self._entries: dict[str, FavoriteEntry] | None = None

    def toggle(self, post: Post) -> tuple[bool, FavoriteEntry]:
        """Add or remove ``post``; returns ``(favorited, entry)``."""
        with self._lock:
            entries = self._load()
            existing = entries.pop(post.key, None)
            if existing is not None:
                self._persist()
                return False, existing

            snapshot = clamp_post(post.to_dict())
            if snapshot is None:
                raise ValueError(f"post {post.key} cannot be stored as a favorite")
            entry = FavoriteEntry(key=post.key, added_at=now_millis(), post=Post.from_dict(snapshot))
            entries[entry.key] = entry
            self._persist()
            return True, entry

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._load()

    def keys(self) -> set[str]:
        with self._lock:
            return set(self._load())

    def get(self, key: str) -> FavoriteEntry | None:
        with self._lock:
            return self._load().get(key)

    def entries(self) -> list[FavoriteEntry]:
        with self._lock:
            return sort_favorites(self._load().values())

    def remove(self, key: str) -> bool:
        with self._lock:
            removed = self._load().pop(key, None) is not None
            if removed:
                self._persist()
            return removed

    def replace_all(self, records: Iterable[Any]) -> int:
        """Replace the whole store; invalid records are dropped. Returns the new size."""
        with self._lock:
            replaced: dict[str, FavoriteEntry] = {}
            dropped = 0
            for record in records:
                entry = record if isinstance(record, FavoriteEntry) else parse_entry(record)
                if entry is None:
                    dropped += 1
                    continue
                replaced[entry.key] = entry
            if dropped:
                logger.info("Dropped %d invalid favorite records", dropped)
            self._entries = replaced
            self._persist()
            return len(replaced)

    def clear(self) -> None:
        with self._lock:
            self._entries = {}
            self._persist()

    def _load(self) -> dict[str, FavoriteEntry]:
        if self._entries is None:
            raw = self.state_store.load(FAVORITES_DOCUMENT, [])
            loaded: dict[str, FavoriteEntry] = {}
            for record in raw if isinstance(raw, list) else []:
                entry = parse_entry(record)
                if entry is not None:
                    loaded[entry.key] = entry
            self._entries = loaded
        return self._entries

    def _persist(self) -> None:
        entries = self._entries or {}
        self.state_store.save(
            FAVORITES_DOCUMENT,
            [entry.to_dict() for entry in sort_favorites(entries.values())],
        )
