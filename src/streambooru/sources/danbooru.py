from __future__ import annotations

from typing import Any
from urllib.parse import urlencode

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

_MAX_LIMIT = 200


class DanbooruSource(SourceAdapter):
    def fetch_new(
        self,
        site: SiteConfig,
        *,
        cursor: Any = None,
        limit: int = 40,
        search: str = "",
    ) -> FetchResult:
        return self._fetch(site, cursor=cursor, limit=limit, search=search, ranking=None, alternates=())

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
            ranking="order:rank",
            alternates=("order:score",),
        )

    def favorite(self, site: SiteConfig, post_id: str, action: str = "add") -> Any:
        login, api_key = _credentials(site)
        if not login or not api_key:
            raise ValueError("Danbooru favorites require login + API key")

        auth = {"login": login, "api_key": api_key}
        root = site_root(site)
        if action == "remove":
            return self.transport.delete(f"{root}/favorites/{post_id}.json?{urlencode(auth)}")
        return self.transport.post_form(
            f"{root}/favorites.json",
            {"post_id": str(post_id), **auth},
        )

    def auth_check(self, site: SiteConfig) -> dict[str, Any]:
        login, api_key = _credentials(site)
        if not login or not api_key:
            return {"ok": False, "info": {"reason": "Missing login or API key"}}

        profile = self.transport.get_json(
            f"{site_root(site)}/profile.json",
            params={"login": login, "api_key": api_key},
        )
        profile = profile if isinstance(profile, dict) else {}
        return {
            "ok": True,
            "info": {
                "id": profile.get("id"),
                "name": profile.get("name") or login,
                "level": profile.get("level"),
            },
        }

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
        page = cursor_int(cursor, "page", 1)

        def query(order: str | None) -> list[Post]:
            params: dict[str, Any] = {"limit": min(limit, _MAX_LIMIT), "page": page}
            tags = build_query_tags(site, *(part for part in (order, search) if part))
            if tags:
                params["tags"] = tags
            params.update(_auth_params(site))
            payload = self.transport.get_json(f"{site_root(site)}/posts.json", params=params)
            return normalize_items(site, extract_list(payload, "posts"), _to_post, _is_visible)

        posts = fetch_with_fallbacks(
            site,
            search,
            lambda: query(ranking),
            [lambda order=order: query(order) for order in alternates],
        )
        return page_result(posts, {"page": page + 1})


def _is_visible(item: dict[str, Any]) -> bool:
    if item.get("is_banned") or item.get("is_deleted"):
        return False
    if item.get("is_visible") is False:
        return False

    media_asset = item.get("media_asset")
    variants = media_asset.get("variants") if isinstance(media_asset, dict) else None
    has_full_variant = isinstance(variants, list) and any(
        isinstance(variant, dict) and variant.get("type") in {"original", "sample"}
        for variant in variants
    )
    has_full_url = bool(item.get("file_url") or item.get("large_file_url"))
    return has_full_url or has_full_variant


def _to_post(site: SiteConfig, item: dict[str, Any]) -> Post:
    favorites = item.get("fav_count")
    if favorites is None:
        favorites = item.get("favorite_count", 0)
    return normalize_post(
        site,
        id=item["id"],
        created_at=item.get("created_at"),
        score=item.get("score"),
        favorites=favorites,
        preview_url=item.get("preview_file_url") or item.get("preview_url"),
        sample_url=item.get("large_file_url") or item.get("file_url"),
        file_url=item.get("file_url") or item.get("large_file_url"),
        width=item.get("image_width"),
        height=item.get("image_height"),
        tags=item.get("tag_string") or "",
        rating=item.get("rating"),
        source=item.get("source"),
        post_url=f"{site_root(site)}/posts/{item['id']}",
    )


def _credentials(site: SiteConfig) -> tuple[str, str]:
    return str(site.credentials.get("login") or ""), str(site.credentials.get("api_key") or "")


def _auth_params(site: SiteConfig) -> dict[str, str]:
    login, api_key = _credentials(site)
    if login and api_key:
        return {"login": login, "api_key": api_key}
    return {}


@register_source("danbooru")
def _build_danbooru_source(transport) -> SourceAdapter:
    return DanbooruSource(transport)
