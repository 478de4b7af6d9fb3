"""Cross-site popularity scoring and the feed comparators.

Raw favorite and score counts are not comparable between a board with a
million users and one with a thousand, so each metric is divided by the 95th
percentile of that metric within the post's own site before weighting.
"""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from streambooru.models import FavoriteEntry, Post, site_identity
from streambooru.utils.datetime_utils import epoch_millis, now_millis

FAVORITES_WEIGHT = 1.0
SCORE_WEIGHT = 0.6
RECENCY_WEIGHT = 0.15
RECENCY_HALF_LIFE_HOURS = 48.0

_MILLIS_PER_HOUR = 3_600_000


@dataclass(slots=True, frozen=True)
class SiteStats:
    fav_p95: float = 0.0
    score_p95: float = 0.0


def percentile(values: Sequence[float], fraction: float = 0.95) -> float:
    """Order statistic with linear interpolation between the two bracketing values."""
    if not values:
        return 0.0
    ordered = sorted(values)
    position = (len(ordered) - 1) * fraction
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return float(ordered[lower])
    weight = position - lower
    return ordered[lower] * (1 - weight) + ordered[upper] * weight


def time_key(post: Post) -> float:
    """Epoch milliseconds of ``created_at``, the numeric id as a surrogate, else -inf."""
    millis = epoch_millis(post.created_at)
    if millis is not None:
        return millis
    try:
        return float(post.id)
    except (TypeError, ValueError):
        return float("-inf")


def site_stats(posts: Iterable[Post]) -> dict[str, SiteStats]:
    favorites: dict[str, list[float]] = defaultdict(list)
    scores: dict[str, list[float]] = defaultdict(list)
    identities: set[str] = set()

    for post in posts:
        identity = site_identity(post.site.type, post.site.base_url)
        identities.add(identity)
        if post.favorites > 0:
            favorites[identity].append(post.favorites)
        if post.score != 0:
            scores[identity].append(post.score)

    return {
        identity: SiteStats(
            fav_p95=percentile(favorites.get(identity, [])),
            score_p95=percentile(scores.get(identity, [])),
        )
        for identity in identities
    }


def recency_boost(post: Post, now_ms: float) -> float:
    timestamp = time_key(post)
    if not math.isfinite(timestamp) or timestamp <= 0:
        return 0.0
    age_hours = max(0.0, (now_ms - timestamp) / _MILLIS_PER_HOUR)
    return math.exp(-age_hours / RECENCY_HALF_LIFE_HOURS)


def popularity(post: Post, stats: SiteStats, now_ms: float) -> float:
    fav_norm = min(1.0, post.favorites / stats.fav_p95) if stats.fav_p95 > 0 else 0.0
    score_norm = min(1.0, max(0, post.score) / stats.score_p95) if stats.score_p95 > 0 else 0.0
    return (
        FAVORITES_WEIGHT * fav_norm
        + SCORE_WEIGHT * score_norm
        + RECENCY_WEIGHT * recency_boost(post, now_ms)
    )


def compute_popularity(posts: Sequence[Post], now_ms: float | None = None) -> dict[str, float]:
    """Popularity per canonical key, computed fresh over ``posts``."""
    now_ms = now_millis() if now_ms is None else now_ms
    stats = site_stats(posts)
    return {
        post.key: popularity(post, stats[site_identity(post.site.type, post.site.base_url)], now_ms)
        for post in posts
    }


def sort_popular(posts: Iterable[Post], now_ms: float | None = None) -> list[Post]:
    items = list(posts)
    scores = compute_popularity(items, now_ms)
    return sorted(
        items,
        key=lambda post: (-scores[post.key], -post.favorites, -post.score, -time_key(post), post.key),
    )


def sort_new(posts: Iterable[Post]) -> list[Post]:
    return sorted(
        posts,
        key=lambda post: (-time_key(post), -post.favorites, -post.score, post.key),
    )


def sort_favorites(entries: Iterable[FavoriteEntry]) -> list[FavoriteEntry]:
    return sorted(
        entries,
        key=lambda entry: (-entry.added_at, -time_key(entry.post), entry.key),
    )
