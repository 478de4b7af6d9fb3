from __future__ import annotations

import math

import pytest

from streambooru.models import FavoriteEntry, Post, SiteRef
from streambooru.ranking import (
    compute_popularity,
    percentile,
    site_stats,
    sort_favorites,
    sort_new,
    sort_popular,
    time_key,
)

NOW = 1_700_000_000_000  # 2023-11-14T22:13:20Z

SMALL = SiteRef(name="Small", type="moebooru", base_url="https://small.test")
LARGE = SiteRef(name="Large", type="danbooru", base_url="https://large.test")


def _post(site: SiteRef, post_id: str, *, favorites: int = 0, score: int = 0, created_at: str | None = None) -> Post:
    return Post(id=post_id, site=site, favorites=favorites, score=score, created_at=created_at)


def test_percentile_interpolates_between_neighbours() -> None:
    assert percentile([]) == 0.0
    assert percentile([7]) == 7.0
    # position (5 - 1) * 0.95 = 3.8 -> 40 + 0.8 * (50 - 40)
    assert percentile([50, 10, 30, 20, 40]) == pytest.approx(48.0)


def test_favorites_are_normalized_per_site() -> None:
    small = [_post(SMALL, "1", favorites=2), _post(SMALL, "2", favorites=10), _post(SMALL, "3", favorites=10)]
    large = [_post(LARGE, "1", favorites=200), _post(LARGE, "2", favorites=1000), _post(LARGE, "3", favorites=1000)]

    stats = site_stats(small + large)
    assert stats["moebooru:https://small.test"].fav_p95 == pytest.approx(10)
    assert stats["danbooru:https://large.test"].fav_p95 == pytest.approx(1000)

    scores = compute_popularity(small + large, now_ms=NOW)

    assert scores[small[1].key] == pytest.approx(1.0)
    assert scores[large[1].key] == pytest.approx(1.0)
    assert scores[small[0].key] == pytest.approx(scores[large[0].key])


def test_zero_favorites_and_scores_are_left_out_of_the_percentile() -> None:
    posts = [
        _post(SMALL, "1", favorites=0, score=0),
        _post(SMALL, "2", favorites=10, score=-5),
    ]

    stats = site_stats(posts)["moebooru:https://small.test"]

    assert stats.fav_p95 == 10
    assert stats.score_p95 == -5
    # negative P95 means no positive signal, so the score term contributes nothing
    assert compute_popularity(posts, now_ms=NOW)[posts[1].key] == pytest.approx(1.0)


def test_recent_posts_get_a_recency_boost() -> None:
    fresh = _post(SMALL, "1", created_at="2023-11-14T22:13:20Z")
    older = _post(SMALL, "2", created_at="2023-11-12T22:13:20Z")

    scores = compute_popularity([fresh, older], now_ms=NOW)

    assert scores[fresh.key] == pytest.approx(0.15)
    assert scores[older.key] == pytest.approx(0.15 * math.exp(-1))


def test_time_key_falls_back_to_numeric_id() -> None:
    assert time_key(_post(SMALL, "1234")) == 1234.0
    assert time_key(_post(SMALL, "abc")) == float("-inf")
    assert time_key(_post(SMALL, "1", created_at="2023-11-14T22:13:20Z")) == NOW


def test_popular_order_breaks_ties_deterministically() -> None:
    a = _post(LARGE, "a", favorites=5, score=1)
    b = _post(LARGE, "b", favorites=5, score=1)
    c = _post(LARGE, "c", favorites=9, score=1)

    ordered = sort_popular([b, a, c], now_ms=NOW)

    assert [post.id for post in ordered] == ["c", "a", "b"]
    assert sort_popular([a, c, b], now_ms=NOW) == ordered


def test_new_order_uses_time_then_favorites() -> None:
    dated = _post(SMALL, "1", created_at="2024-01-01T00:00:00Z")
    undated_high = _post(SMALL, "900", favorites=1)
    undated_low = _post(SMALL, "800", favorites=50)

    assert [post.id for post in sort_new([undated_low, dated, undated_high])] == ["1", "900", "800"]


def test_favorites_order_is_newest_added_first() -> None:
    entries = [
        FavoriteEntry(key="x#1", added_at=10, post=_post(SMALL, "1")),
        FavoriteEntry(key="x#2", added_at=30, post=_post(SMALL, "2")),
        FavoriteEntry(key="x#3", added_at=20, post=_post(SMALL, "3")),
    ]

    assert [entry.key for entry in sort_favorites(entries)] == ["x#2", "x#3", "x#1"]
