from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from streambooru.favorites import FavoritesStore
from streambooru.models import FetchResult, Post, SiteConfig
from streambooru.ranking import sort_new, sort_popular
from streambooru.sources import SourceAdapter, create_source
from streambooru.transport import Transport
from streambooru.utils.datetime_utils import now_millis

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FeedMode(str, Enum):
    NEW = "new"
    POPULAR = "popular"
    SEARCH = "search"
    FAVORITES = "favorites"


@dataclass(slots=True)
class FeedContext:
    """Everything one feed mode accumulates; replaced wholesale on mode or query change."""

    mode: FeedMode
    search: str = ""
    cursors: dict[str, Any] = field(default_factory=dict)
    items: dict[str, Post] = field(default_factory=dict)
    buckets: dict[str, list[Post]] = field(default_factory=dict)
    seen: set[str] = field(default_factory=set)
    rendered: list[Post] = field(default_factory=list)
    exhausted: bool = False
    cycles: int = 0


@dataclass(slots=True)
class CycleStats:
    sites: int = 0
    failed: int = 0
    fetched: int = 0
    added: int = 0


def interleave_round_robin(buckets: Sequence[Sequence[T]]) -> list[T]:
    """Take one item from each bucket in turn, skipping exhausted buckets."""
    merged: list[T] = []
    depth = max((len(bucket) for bucket in buckets), default=0)
    for index in range(depth):
        for bucket in buckets:
            if index < len(bucket):
                merged.append(bucket[index])
    return merged


class FeedAggregator:
    def __init__(
        self,
        sites: Sequence[SiteConfig],
        transport: Transport,
        *,
        favorites: FavoritesStore | None = None,
        page_size: int = 40,
        max_workers: int = 8,
        source_factory: Callable[[str, Transport], SourceAdapter] = create_source,
        clock: Callable[[], float] = now_millis,
    ) -> None:
        self.transport = transport
        self.favorites = favorites
        self.page_size = page_size
        self.max_workers = max_workers
        self.source_factory = source_factory
        self.clock = clock
        self._guard = threading.Lock()
        self.sites: list[SiteConfig] = []
        self._sources: dict[str, SourceAdapter] = {}
        self._set_sites(sites)
        self.context = FeedContext(mode=FeedMode.NEW)

    def reset(self, mode: FeedMode | str = FeedMode.NEW, search: str = "") -> FeedContext:
        mode = FeedMode(mode)
        search = " ".join(search.split())
        if mode is FeedMode.SEARCH and not search:
            mode = FeedMode.NEW
        self.context = FeedContext(mode=mode, search=search)
        logger.debug("Feed reset to %s (search=%r)", mode.value, search)
        return self.context

    def update_sites(self, sites: Sequence[SiteConfig]) -> FeedContext:
        self._set_sites(sites)
        return self.reset(self.context.mode, self.context.search)

    def request_more(self) -> list[Post] | None:
        """Run one cycle on the active context; returns None if a cycle is already running."""
        if not self._guard.acquire(blocking=False):
            logger.debug("Cycle already in flight; dropping request")
            return None
        try:
            return list(self.run_cycle(self.context))
        finally:
            self._guard.release()

    def run_cycle(self, context: FeedContext) -> list[Post]:
        if context.exhausted:
            return context.rendered

        if context.mode is FeedMode.FAVORITES:
            self._render_favorites(context)
        else:
            results = self._fetch_all(context)
            if context.mode is FeedMode.SEARCH:
                stats = self._merge_search(context, results)
            else:
                stats = self._merge_global(context, results)

            if stats.fetched == 0 and stats.failed == 0:
                context.exhausted = True
            logger.info(
                "Cycle complete | mode=%s sites=%d failed=%d fetched=%d added=%d total=%d",
                context.mode.value,
                stats.sites,
                stats.failed,
                stats.fetched,
                stats.added,
                len(context.rendered),
            )

        context.cycles += 1
        return context.rendered

    def _set_sites(self, sites: Sequence[SiteConfig]) -> None:
        ordered = sorted(
            enumerate(sites),
            key=lambda pair: (pair[1].order_index if pair[1].order_index is not None else pair[0], pair[0]),
        )
        self.sites = []
        self._sources = {}
        for _, site in ordered:
            if site.identity in self._sources:
                logger.warning("Ignoring duplicate site %s (%s)", site.name, site.identity)
                continue
            self._sources[site.identity] = self.source_factory(site.type, self.transport)
            self.sites.append(site)

    def _fetch_all(self, context: FeedContext) -> list[tuple[SiteConfig, FetchResult | None]]:
        if not self.sites:
            return []

        workers = max(1, min(self.max_workers, len(self.sites)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [
                (site, executor.submit(self._fetch_site, context, site))
                for site in self.sites
            ]
            results: list[tuple[SiteConfig, FetchResult | None]] = []
            for site, future in futures:
                try:
                    results.append((site, future.result()))
                except Exception as exc:  # noqa: BLE001
                    logger.warning("%s: fetch failed, keeping cursor: %s", site.name, exc)
                    results.append((site, None))
        return results

    def _fetch_site(self, context: FeedContext, site: SiteConfig) -> FetchResult:
        source = self._sources[site.identity]
        cursor = context.cursors.get(site.identity)
        fetch = source.fetch_popular if context.mode is FeedMode.POPULAR else source.fetch_new
        return fetch(
            site,
            cursor=cursor,
            limit=self.page_size,
            search=context.search if context.mode is FeedMode.SEARCH else "",
        )

    def _merge_global(
        self,
        context: FeedContext,
        results: list[tuple[SiteConfig, FetchResult | None]],
    ) -> CycleStats:
        stats = CycleStats(sites=len(results))
        for site, result in results:
            if result is None:
                stats.failed += 1
                continue
            if result.next_cursor:
                context.cursors[site.identity] = result.next_cursor
            stats.fetched += len(result.posts)
            for post in result.posts:
                if post.key not in context.items:
                    stats.added += 1
                context.items[post.key] = post

        if context.mode is FeedMode.POPULAR:
            context.rendered = sort_popular(context.items.values(), self.clock())
        else:
            context.rendered = sort_new(context.items.values())
        return stats

    def _merge_search(
        self,
        context: FeedContext,
        results: list[tuple[SiteConfig, FetchResult | None]],
    ) -> CycleStats:
        stats = CycleStats(sites=len(results))
        for site, result in results:
            bucket = context.buckets.setdefault(site.identity, [])
            if result is None:
                stats.failed += 1
                continue
            if result.next_cursor:
                context.cursors[site.identity] = result.next_cursor
            stats.fetched += len(result.posts)
            for post in result.posts:
                if post.key in context.seen:
                    continue
                context.seen.add(post.key)
                bucket.append(post)
                stats.added += 1

        order = [site.identity for site in self.sites]
        context.rendered = interleave_round_robin([context.buckets.get(identity, []) for identity in order])
        return stats

    def _render_favorites(self, context: FeedContext) -> None:
        wanted = [token.lower() for token in context.search.split()]
        entries = self.favorites.entries() if self.favorites is not None else []
        context.rendered = [
            entry.post
            for entry in entries
            if not wanted or _has_all_tags(entry.post, wanted)
        ]


def _has_all_tags(post: Post, wanted: list[str]) -> bool:
    tags = {tag.lower() for tag in post.tags}
    return all(token in tags for token in wanted)
