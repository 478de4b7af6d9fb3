from __future__ import annotations

from typing import Any

from streambooru.models import FetchResult, Post, SiteConfig

from .base import SourceAdapter
from .common import (
    cursor_int,
    extract_list,
    fetch_with_fallbacks,
    normalize_items,
    normalize_post,
    page_result,
    rating_to_tag,
    site_root,
)
from .registry import register_source

_MAX_LIMIT = 50

# Philomena ratings are plain tags.
_RATING_TAGS = {
    "safe": "safe",
    "questionable": "questionable",
    "explicit": "explicit",
}
_RATING_BY_TAG = {
    "safe": "s",
    "suggestive": "q",
    "questionable": "q",
    "explicit": "e",
}


class DerpibooruSource(SourceAdapter):
    """Philomena boards (derpibooru, ponybooru, ...)."""

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
            sort_field="created_at",
            alternates=("score",),
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
            sort_field="score",
            alternates=("wilson_score",),
        )

    def _fetch(
        self,
        site: SiteConfig,
        *,
        cursor: Any,
        limit: int,
        search: str,
        sort_field: str,
        alternates: tuple[str, ...],
    ) -> FetchResult:
        page = cursor_int(cursor, "page", 1)

        def query(field: str) -> list[Post]:
            params: dict[str, Any] = {
                "q": build_search_query(site, search),
                "per_page": min(limit, _MAX_LIMIT),
                "page": page,
                "sf": field,
                "sd": "desc",
            }
            filter_id = site.credentials.get("filter_id")
            if filter_id:
                params["filter_id"] = filter_id
            payload = self.transport.get_json(
                f"{site_root(site)}/api/v1/json/search/images",
                params=params,
            )
            return normalize_items(site, extract_list(payload, "images"), _to_post, _is_visible)

        posts = fetch_with_fallbacks(
            site,
            search,
            lambda: query(sort_field),
            [lambda field=field: query(field) for field in alternates],
        )
        return page_result(posts, {"page": page + 1})


def build_search_query(site: SiteConfig, search: str = "") -> str:
    """Philomena wants comma separated terms; an empty query matches nothing.

    Each whitespace separated token becomes its own term, with ``_`` mapped back to
    the space Philomena uses inside tag names.
    """
    terms: list[str] = []
    rating = rating_to_tag(site.rating, _RATING_TAGS)
    if rating:
        terms.append(rating)
    for token in f"{site.tags} {search}".split():
        term = token.replace("_", " ")
        if term not in terms:
            terms.append(term)
    return ", ".join(terms) or "score.gte:0"


def _is_visible(item: dict[str, Any]) -> bool:
    return not item.get("deletion_reason") and not item.get("duplicate_of") and not item.get("hidden_from_users")


def _to_post(site: SiteConfig, item: dict[str, Any]) -> Post:
    representations = item.get("representations")
    representations = representations if isinstance(representations, dict) else {}

    score = item.get("score")
    if score is None:
        score = (item.get("upvotes") or 0) - (item.get("downvotes") or 0)

    tags = item.get("tags") or []
    if isinstance(tags, str):
        tags = [tag.strip() for tag in tags.split(",")]
    tags = [str(tag).replace(" ", "_") for tag in tags if tag]

    return normalize_post(
        site,
        id=item["id"],
        created_at=item.get("created_at") or item.get("first_seen_at"),
        score=score,
        favorites=item.get("faves", 0),
        preview_url=representations.get("thumb") or representations.get("small"),
        sample_url=representations.get("large") or representations.get("medium"),
        file_url=representations.get("full") or item.get("view_url"),
        width=item.get("width"),
        height=item.get("height"),
        tags=tags,
        rating=_rating_from_tags(tags),
        source=item.get("source_url"),
        post_url=f"{site_root(site)}/images/{item['id']}",
    )


def _rating_from_tags(tags: list[str]) -> str:
    for tag in tags:
        rating = _RATING_BY_TAG.get(tag)
        if rating:
            return rating
    return ""


@register_source("derpibooru")
def _build_derpibooru_source(transport) -> SourceAdapter:
    return DerpibooruSource(transport)
