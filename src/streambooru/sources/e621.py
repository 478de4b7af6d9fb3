from __future__ import annotations

import base64
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

_MAX_LIMIT = 320

_RATING_TAGS = {
    "safe": "rating:s",
    "questionable": "rating:q",
    "explicit": "rating:e",
}


class E621Source(SourceAdapter):
    """e621 / e926. The newest feed pages with ``page=b<id>`` so inserts don't shift it."""

    def fetch_new(
        self,
        site: SiteConfig,
        *,
        cursor: Any = None,
        limit: int = 40,
        search: str = "",
    ) -> FetchResult:
        before_id = cursor.get("before_id") if isinstance(cursor, dict) else None

        def query(order: str | None) -> list[Post]:
            params: dict[str, Any] = {"limit": min(limit, _MAX_LIMIT)}
            if before_id:
                params["page"] = f"b{before_id}"
            return self._query(site, params, order, search)

        posts = fetch_with_fallbacks(
            site,
            search,
            lambda: query("order:id_desc"),
            [lambda: query("order:score")],
        )
        ids = [int(post.id) for post in posts if post.id.isdigit()]
        next_cursor = {"before_id": min(ids)} if ids else None
        return page_result(posts, next_cursor)

    def fetch_popular(
        self,
        site: SiteConfig,
        *,
        cursor: Any = None,
        limit: int = 40,
        search: str = "",
    ) -> FetchResult:
        page = cursor_int(cursor, "page", 1)

        def query() -> list[Post]:
            params: dict[str, Any] = {"limit": min(limit, _MAX_LIMIT), "page": page}
            return self._query(site, params, "order:score", search)

        posts = fetch_with_fallbacks(site, search, query)
        return page_result(posts, {"page": page + 1})

    def favorite(self, site: SiteConfig, post_id: str, action: str = "add") -> Any:
        headers = _auth_headers(site)
        if not headers:
            raise ValueError("e621 favorites require login + API key")

        root = site_root(site)
        if action == "remove":
            return self.transport.delete(f"{root}/favorites/{post_id}.json", headers=headers)
        return self.transport.post_form(
            f"{root}/favorites.json",
            {"post_id": str(post_id)},
            headers=headers,
        )

    def auth_check(self, site: SiteConfig) -> dict[str, Any]:
        headers = _auth_headers(site)
        if not headers:
            return {"ok": False, "info": {"reason": "Missing login or API key"}}

        login = str(site.credentials.get("login"))
        user = self.transport.get_json(f"{site_root(site)}/users/{login}.json", headers=headers)
        user = user if isinstance(user, dict) else {}
        return {
            "ok": True,
            "info": {
                "id": user.get("id"),
                "name": user.get("name") or login,
                "level": user.get("level_string", user.get("level")),
            },
        }

    def _query(self, site: SiteConfig, params: dict[str, Any], order: str | None, search: str) -> list[Post]:
        tags = build_query_tags(
            site,
            *(part for part in (order, search) if part),
            rating_tags=_RATING_TAGS,
        )
        if tags:
            params["tags"] = tags
        payload = self.transport.get_json(
            f"{site_root(site)}/posts.json",
            params=params,
            headers=_auth_headers(site),
        )
        return normalize_items(site, extract_list(payload, "posts"), _to_post, _is_visible)


def _is_visible(item: dict[str, Any]) -> bool:
    flags = item.get("flags")
    if isinstance(flags, dict) and flags.get("deleted"):
        return False
    return True


def _to_post(site: SiteConfig, item: dict[str, Any]) -> Post:
    file_info = _section(item, "file")
    sample = _section(item, "sample")
    preview = _section(item, "preview")

    score = item.get("score")
    if isinstance(score, dict):
        score = score.get("total", (score.get("up") or 0) + (score.get("down") or 0))

    return normalize_post(
        site,
        id=item["id"],
        created_at=item.get("created_at"),
        score=score,
        favorites=item.get("fav_count", 0),
        preview_url=preview.get("url"),
        sample_url=sample.get("url"),
        file_url=file_info.get("url"),
        width=file_info.get("width"),
        height=file_info.get("height"),
        tags=_flatten_tags(item.get("tags")),
        rating=item.get("rating"),
        source=_first_source(item.get("sources")),
        post_url=f"{site_root(site)}/posts/{item['id']}",
    )


def _section(item: dict[str, Any], name: str) -> dict[str, Any]:
    value = item.get(name)
    return value if isinstance(value, dict) else {}


def _flatten_tags(tags: Any) -> list[str]:
    if isinstance(tags, dict):
        flat: list[str] = []
        for group in tags.values():
            if isinstance(group, list):
                flat.extend(str(tag) for tag in group if tag)
        return flat
    if isinstance(tags, str):
        return tags.split()
    return []


def _first_source(sources: Any) -> str:
    if isinstance(sources, list) and sources:
        return str(sources[0])
    return ""


def _auth_headers(site: SiteConfig) -> dict[str, str]:
    login = str(site.credentials.get("login") or "")
    api_key = str(site.credentials.get("api_key") or "")
    if not login or not api_key:
        return {}
    token = base64.b64encode(f"{login}:{api_key}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {token}"}


@register_source("e621")
def _build_e621_source(transport) -> SourceAdapter:
    return E621Source(transport)
