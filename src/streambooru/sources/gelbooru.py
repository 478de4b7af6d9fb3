from __future__ import annotations

from typing import Any

from streambooru.models import FetchResult, Post, SiteConfig

from .base import SourceAdapter
from .common import (
    build_query_tags,
    cursor_int,
    extract_list,
    fetch_with_fallbacks,
    normalize_items,
    normalize_post,
    page_result,
    site_root,
)
from .registry import register_source

_MAX_LIMIT = 100


class GelbooruSource(SourceAdapter):
    """Gelbooru 0.2 "dapi" installs (gelbooru.com, safebooru.org, ...)."""

    def fetch_new(
        self,
        site: SiteConfig,
        *,
        cursor: Any = None,
        limit: int = 40,
        search: str = "",
    ) -> FetchResult:
        return self._fetch(
            site,
            cursor=cursor,
            limit=limit,
            search=search,
            ranking=None,
            alternates=("sort:score", "order:score"),
        )

    def fetch_popular(
        self,
        site: SiteConfig,
        *,
        cursor: Any = None,
        limit: int = 40,
        search: str = "",
    ) -> FetchResult:
        return self._fetch(
            site,
            cursor=cursor,
            limit=limit,
            search=search,
            ranking="sort:score",
            alternates=("order:score",),
        )

    def _fetch(
        self,
        site: SiteConfig,
        *,
        cursor: Any,
        limit: int,
        search: str,
        ranking: str | None,
        alternates: tuple[str, ...],
    ) -> FetchResult:
        pid = cursor_int(cursor, "pid", 0)

        def query(order: str | None) -> list[Post]:
            params: dict[str, Any] = {
                "page": "dapi",
                "s": "post",
                "q": "index",
                "json": 1,
                "limit": min(limit, _MAX_LIMIT),
                "pid": pid,
            }
            tags = build_query_tags(site, *(part for part in (order, search) if part))
            if tags:
                params["tags"] = tags
            user_id = site.credentials.get("user_id")
            api_key = site.credentials.get("api_key")
            if user_id and api_key:
                params.update(user_id=user_id, api_key=api_key)
            payload = self.transport.get_json(f"{site_root(site)}/index.php", params=params)
            return normalize_items(site, extract_list(payload, "post", "posts"), _to_post)

        posts = fetch_with_fallbacks(
            site,
            search,
            lambda: query(ranking),
            [lambda order=order: query(order) for order in alternates],
        )
        return page_result(posts, {"pid": pid + 1})


def _to_post(site: SiteConfig, item: dict[str, Any]) -> Post:
    post_id = item.get("id") or item.get("post_id")
    favorites = item.get("fav_count")
    if favorites is None:
        favorites = item.get("favorite_count", item.get("favorites", 0))

    return normalize_post(
        site,
        id=post_id,
        created_at=item.get("created_at") or item.get("date") or _as_number(item.get("change")),
        score=item.get("score"),
        favorites=favorites,
        preview_url=(
            item.get("preview_url")
            or item.get("preview_file_url")
            or item.get("sample_url")
            or item.get("file_url")
        ),
        sample_url=item.get("sample_url") or item.get("file_url"),
        file_url=item.get("file_url"),
        width=item.get("width") or item.get("image_width"),
        height=item.get("height") or item.get("image_height"),
        tags=item.get("tags") or item.get("tag_string") or "",
        rating=item.get("rating"),
        source=item.get("source"),
        post_url=f"{site_root(site)}/index.php?page=post&s=view&id={post_id}",
    )


def _as_number(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@register_source("gelbooru")
def _build_gelbooru_source(transport) -> SourceAdapter:
    return GelbooruSource(transport)
