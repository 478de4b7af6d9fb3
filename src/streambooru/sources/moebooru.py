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


class MoebooruSource(SourceAdapter):
    """yande.re, konachan and other Moebooru installs."""

    def fetch_new(
        self,
        site: SiteConfig,
        *,
        cursor: Any = None,
        limit: int = 40,
        search: str = "",
    ) -> FetchResult:
        return self._fetch(site, cursor=cursor, limit=limit, search=search, ranking=None, alternates=("order:score",))

    def fetch_popular(
        self,
        site: SiteConfig,
        *,
        cursor: Any = None,
        limit: int = 40,
        search: str = "",
    ) -> FetchResult:
        return self._fetch(site, cursor=cursor, limit=limit, search=search, ranking="order:score", alternates=())

    def favorite(self, site: SiteConfig, post_id: str, action: str = "add") -> Any:
        login, password_hash = _credentials(site)
        if not login or not password_hash:
            raise ValueError("Moebooru favorites require login + password_hash")

        endpoint = "destroy" if action == "remove" else "create"
        return self.transport.post_form(
            f"{site_root(site)}/favorite/{endpoint}.json",
            {"post_id": str(post_id), "login": login, "password_hash": password_hash},
        )

    def auth_check(self, site: SiteConfig) -> dict[str, Any]:
        login, password_hash = _credentials(site)
        if not login or not password_hash:
            return {"ok": False, "info": {"reason": "Missing login or password_hash"}}

        user = self.transport.get_json(
            f"{site_root(site)}/user.json",
            params={"login": login, "password_hash": password_hash},
        )
        if isinstance(user, list):
            user = user[0] if user else {}
        user = user if isinstance(user, dict) else {}
        info = {
            "id": user.get("id"),
            "name": user.get("name") or login,
            "level": user.get("level", user.get("user_level")),
        }
        return {"ok": bool(info["id"] or info["name"]), "info": info}

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
            login, password_hash = _credentials(site)
            if login and password_hash:
                params.update(login=login, password_hash=password_hash)
            payload = self.transport.get_json(f"{site_root(site)}/post.json", params=params)
            return normalize_items(site, extract_list(payload, "posts"), _to_post)

        posts = fetch_with_fallbacks(
            site,
            search,
            lambda: query(ranking),
            [lambda order=order: query(order) for order in alternates],
        )
        return page_result(posts, {"page": page + 1})


def _to_post(site: SiteConfig, item: dict[str, Any]) -> Post:
    favorites = item.get("fav_count")
    if favorites is None:
        favorites = item.get("favorite_count", 0)
    return normalize_post(
        site,
        id=item["id"],
        created_at=item.get("created_at") or item.get("created_at_s") or item.get("change"),
        score=item.get("score"),
        favorites=favorites,
        preview_url=item.get("preview_url"),
        sample_url=item.get("sample_url") or item.get("jpeg_url") or item.get("file_url"),
        file_url=item.get("file_url") or item.get("sample_url") or item.get("jpeg_url"),
        width=item.get("width"),
        height=item.get("height"),
        tags=item.get("tags") or "",
        rating=item.get("rating"),
        source=item.get("source"),
        post_url=f"{site_root(site)}/post/show/{item['id']}",
    )


def _credentials(site: SiteConfig) -> tuple[str, str]:
    return (
        str(site.credentials.get("login") or ""),
        str(site.credentials.get("password_hash") or ""),
    )


@register_source("moebooru")
def _build_moebooru_source(transport) -> SourceAdapter:
    return MoebooruSource(transport)
