"""Stateless helpers shared by every source adapter."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from streambooru.models import FetchResult, Post, SiteConfig
from streambooru.transport import TransportError
from streambooru.utils.datetime_utils import to_iso_date
from streambooru.utils.url_utils import absolutize, normalize_base_url

logger = logging.getLogger(__name__)

_RATING_TAGS = {
    "safe": "rating:safe",
    "questionable": "rating:questionable",
    "explicit": "rating:explicit",
}

Attempt = Callable[[], list[Post]]


def rating_to_tag(rating: str | None, tags: dict[str, str] | None = None) -> str:
    return (tags or _RATING_TAGS).get((rating or "").lower(), "")


def build_query_tags(site: SiteConfig, *extras: str, rating_tags: dict[str, str] | None = None) -> str:
    """Join the rating token, the site's own tags and any extras, dropping duplicates."""
    parts = " ".join(
        part for part in (rating_to_tag(site.rating, rating_tags), site.tags, *extras) if part
    ).split()

    seen: set[str] = set()
    tokens: list[str] = []
    for token in parts:
        if token not in seen:
            seen.add(token)
            tokens.append(token)
    return " ".join(tokens)


def site_root(site: SiteConfig) -> str:
    return normalize_base_url(site.base_url)


def normalize_post(
    site: SiteConfig,
    *,
    id: Any,
    created_at: Any = None,
    score: Any = 0,
    favorites: Any = 0,
    preview_url: str | None = None,
    sample_url: str | None = None,
    file_url: str | None = None,
    width: Any = None,
    height: Any = None,
    tags: Any = None,
    rating: str | None = None,
    source: str | None = None,
    post_url: str = "",
) -> Post:
    if id is None or str(id).strip() == "":
        raise ValueError("post has no id")

    root = site_root(site)
    preview = absolutize(root, preview_url)
    sample = absolutize(root, sample_url)
    full = absolutize(root, file_url)

    if isinstance(tags, str):
        tag_list = tags.split()
    elif isinstance(tags, (list, tuple)):
        tag_list = [str(tag) for tag in tags if tag]
    else:
        tag_list = []

    return Post(
        id=str(id),
        site=site.ref(),
        created_at=to_iso_date(created_at),
        score=_coerce_int(score),
        favorites=_coerce_int(favorites),
        preview_url=preview or sample or full,
        sample_url=sample or full,
        file_url=full or sample or preview,
        width=_coerce_dimension(width),
        height=_coerce_dimension(height),
        tags=tag_list,
        rating=str(rating or ""),
        source=str(source or ""),
        post_url=post_url,
    )


def normalize_items(
    site: SiteConfig,
    items: Iterable[Any],
    normalizer: Callable[[SiteConfig, dict[str, Any]], Post],
    visible: Callable[[dict[str, Any]], bool] | None = None,
) -> list[Post]:
    posts: list[Post] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        if visible is not None and not visible(item):
            continue
        try:
            post = normalizer(site, item)
        except (KeyError, TypeError, ValueError) as exc:
            logger.debug("Skipping malformed %s item %r: %s", site.name, item.get("id"), exc)
            continue
        # Full-size or sample asset required; a preview alone is not viewable.
        if not post.sample_url:
            logger.debug("Skipping %s item %r without a full-size asset", site.name, item.get("id"))
            continue
        posts.append(post)
    return posts


def fetch_with_fallbacks(
    site: SiteConfig,
    search: str,
    primary: Attempt,
    alternates: Sequence[Attempt] = (),
) -> list[Post]:
    """Run the primary query, then each alternate in order while a search yields nothing.

    A transport failure counts as an empty attempt. If every attempt failed the last
    error is raised so the caller keeps its cursor.
    """
    attempts = [primary]
    if search.strip():
        attempts.extend(alternates)

    last_error: TransportError | None = None
    succeeded = False
    for index, attempt in enumerate(attempts):
        if index > 0:
            logger.info("%s: no results for %r, trying fallback query #%d", site.name, search, index)
        try:
            posts = attempt()
        except TransportError as exc:
            logger.warning("%s: query attempt #%d failed: %s", site.name, index, exc)
            last_error = exc
            continue
        succeeded = True
        if posts:
            return posts

    if not succeeded and last_error is not None:
        raise last_error
    return []


def page_result(posts: list[Post], next_cursor: Any) -> FetchResult:
    """An empty page keeps the caller's cursor so the same position is retried."""
    return FetchResult(posts=posts, next_cursor=next_cursor if posts else None)


def extract_list(payload: Any, *keys: str) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return []


def cursor_int(cursor: Any, key: str, default: int) -> int:
    if isinstance(cursor, dict):
        try:
            return max(default, int(cursor.get(key) or default))
        except (TypeError, ValueError):
            return default
    return default


def _coerce_int(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def _coerce_dimension(value: Any) -> int | None:
    parsed = _coerce_int(value)
    return parsed if parsed > 0 else None
