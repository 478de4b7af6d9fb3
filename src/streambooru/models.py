from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from streambooru.utils.url_utils import normalize_base_url

SITE_TYPES = ("danbooru", "moebooru", "gelbooru", "e621", "derpibooru")
RATINGS = ("safe", "questionable", "explicit", "any")


@dataclass(slots=True, frozen=True)
class SiteRef:
    name: str
    type: str
    base_url: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.type, "baseUrl": self.base_url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SiteRef:
        return cls(
            name=str(data.get("name") or ""),
            type=str(data.get("type") or ""),
            base_url=str(data.get("baseUrl") or data.get("base_url") or ""),
        )


@dataclass(slots=True)
class SiteConfig:
    name: str
    type: str
    base_url: str
    rating: str = "any"
    tags: str = ""
    credentials: dict[str, Any] = field(default_factory=dict)
    order_index: int | None = None

    @property
    def identity(self) -> str:
        return site_identity(self.type, self.base_url)

    def ref(self) -> SiteRef:
        return SiteRef(name=self.name, type=self.type, base_url=normalize_base_url(self.base_url))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "type": self.type,
            "baseUrl": self.base_url,
            "rating": self.rating,
            "tags": self.tags,
            "credentials": dict(self.credentials),
        }
        if self.order_index is not None:
            data["order_index"] = self.order_index
        return data


@dataclass(slots=True)
class Post:
    id: str
    site: SiteRef
    created_at: str | None = None
    score: int = 0
    favorites: int = 0
    preview_url: str = ""
    sample_url: str = ""
    file_url: str = ""
    width: int | None = None
    height: int | None = None
    tags: list[str] = field(default_factory=list)
    rating: str = ""
    source: str = ""
    post_url: str = ""

    @property
    def key(self) -> str:
        return canonical_key(self.site.base_url, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "site": self.site.to_dict(),
            "created_at": self.created_at,
            "score": self.score,
            "favorites": self.favorites,
            "preview_url": self.preview_url,
            "sample_url": self.sample_url,
            "file_url": self.file_url,
            "width": self.width,
            "height": self.height,
            "tags": list(self.tags),
            "rating": self.rating,
            "source": self.source,
            "post_url": self.post_url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Post:
        raw_site = data.get("site")
        site = SiteRef.from_dict(raw_site if isinstance(raw_site, dict) else {})
        raw_tags = data.get("tags")
        if isinstance(raw_tags, str):
            tags = raw_tags.split()
        elif isinstance(raw_tags, list):
            tags = [str(tag) for tag in raw_tags if tag]
        else:
            tags = []

        return cls(
            id=str(data.get("id", "")),
            site=site,
            created_at=data.get("created_at") or None,
            score=_as_int(data.get("score")),
            favorites=_as_int(data.get("favorites")),
            preview_url=str(data.get("preview_url") or ""),
            sample_url=str(data.get("sample_url") or ""),
            file_url=str(data.get("file_url") or ""),
            width=_as_optional_int(data.get("width")),
            height=_as_optional_int(data.get("height")),
            tags=tags,
            rating=str(data.get("rating") or ""),
            source=str(data.get("source") or ""),
            post_url=str(data.get("post_url") or ""),
        )


@dataclass(slots=True)
class FetchResult:
    posts: list[Post] = field(default_factory=list)
    next_cursor: Any = None


@dataclass(slots=True)
class FavoriteEntry:
    key: str
    added_at: int
    post: Post

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "added_at": self.added_at, "post": self.post.to_dict()}


def canonical_key(base_url: str, post_id: Any) -> str:
    return f"{normalize_base_url(base_url)}#{post_id}"


def site_identity(site_type: str, base_url: str) -> str:
    return f"{(site_type or '').lower()}:{normalize_base_url(base_url)}"


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def _as_optional_int(value: Any) -> int | None:
    if value in (None, "", 0, "0"):
        return None
    parsed = _as_int(value)
    return parsed or None
