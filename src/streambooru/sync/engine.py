from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import replace
from typing import Any

from streambooru.favorites import FavoritesStore
from streambooru.models import Post, SiteConfig
from streambooru.store.base import StateStore
from streambooru.store.site_list import SiteListStore, parse_site_list
from streambooru.transport import Transport

from .client import RemoteSyncClient, Session, SyncError
from .event_stream import EventStreamClient, ThreadFactory, TimerFactory, daemon_thread

logger = logging.getLogger(__name__)

SYNC_DOCUMENT = "sync"

FavoritesListener = Callable[[], None]
SitesListener = Callable[[list[SiteConfig]], None]


def union_sites(local: Sequence[SiteConfig], remote: Sequence[SiteConfig]) -> list[SiteConfig]:
    """Remote entries first and winning on identity; local-only entries appended; dense order_index."""
    merged: dict[str, SiteConfig] = {}
    for site in [*remote, *local]:
        merged.setdefault(site.identity, site)
    return [replace(site, order_index=index) for index, site in enumerate(merged.values())]


def token_fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


class SyncEngine:
    def __init__(
        self,
        favorites: FavoritesStore,
        sites: SiteListStore,
        state_store: StateStore,
        transport: Transport,
        *,
        executor: Executor | None = None,
        reconnect_delay: float = 3.0,
        thread_factory: ThreadFactory = daemon_thread,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.favorites = favorites
        self.sites = sites
        self.state_store = state_store
        self.transport = transport
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="streambooru-sync")
        self.stream = EventStreamClient(
            transport,
            self.handle_event,
            reconnect_delay=reconnect_delay,
            thread_factory=thread_factory,
            timer_factory=timer_factory,
        )
        self.session: Session | None = None
        self._client: RemoteSyncClient | None = None
        self._favorites_listeners: list[FavoritesListener] = []
        self._sites_listeners: list[SitesListener] = []
        self._pull_lock = threading.Lock()
        self._pull_running = False
        self._pull_again = False

    @property
    def client(self) -> RemoteSyncClient | None:
        return self._client

    def on_favorites_changed(self, listener: FavoritesListener) -> None:
        self._favorites_listeners.append(listener)

    def on_sites_changed(self, listener: SitesListener) -> None:
        self._sites_listeners.append(listener)

    def login(self, session: Session) -> bool:
        """Start a session: upload, pull, union the site lists, then go live."""
        if not self.start(session):
            return False
        self.push_all_favorites()
        self.pull_favorites_merge()
        self.reconcile_sites()
        self.stream.connect(session)
        return True

    def resume(self, session: Session) -> bool:
        """Startup path for a session that was already established."""
        if not self.start(session):
            return False
        self.push_all_favorites()
        self.pull_favorites_merge()
        self.stream.connect(session)
        return True

    def logout(self) -> None:
        self.stream.close()
        self.session = None
        self._client = None

    def close(self) -> None:
        self.logout()
        if self._owns_executor:
            self.executor.shutdown(wait=False)

    def toggle_favorite(self, post: Post) -> bool:
        """Flip the local favorite, then send the remote write in the background."""
        favorited, entry = self.favorites.toggle(post)
        client = self._client
        if client is not None:
            if favorited:
                self.executor.submit(self._push_one, client, entry.key, entry.post.to_dict(), entry.added_at)
            else:
                self.executor.submit(self._delete_one, client, entry.key)
        self._notify_favorites()
        return favorited

    def pull_favorites_merge(self) -> bool:
        client = self._client
        if client is None:
            return False
        try:
            items = client.list_favorites()
        except SyncError as exc:
            logger.warning("Favorites pull failed: %s", exc)
            return False

        count = self.favorites.replace_all(items)
        logger.info("Pulled %d favorites", count)
        self._notify_favorites()
        return True

    def push_all_favorites(self, *, force: bool = False) -> bool:
        client = self._client
        if client is None:
            return False

        fingerprint = token_fingerprint(client.session.token)
        meta = self.state_store.load(SYNC_DOCUMENT, {}) or {}
        if not force and meta.get("pushed_for") == fingerprint:
            logger.debug("Favorites already uploaded for this session")
            return False

        items = [entry.to_dict() for entry in self.favorites.entries()]
        try:
            if items:
                client.bulk_upsert(items)
        except SyncError as exc:
            logger.warning("Bulk favorites upload failed: %s", exc)
            return False

        self.state_store.save(SYNC_DOCUMENT, {**meta, "pushed_for": fingerprint})
        logger.info("Uploaded %d local favorites", len(items))
        return True

    def request_pull(self) -> None:
        """Schedule a pull; requests arriving while one runs collapse into one re-run."""
        with self._pull_lock:
            if self._pull_running:
                self._pull_again = True
                return
            self._pull_running = True
        self.executor.submit(self._pull_until_settled)

    def handle_event(self, name: str, data: Any) -> None:
        if name == "fav_changed":
            if isinstance(data, dict) and data.get("removed") and data.get("key"):
                if self.favorites.remove(str(data["key"])):
                    self._notify_favorites()
                return
            self.request_pull()
        elif name == "sites_changed":
            self.refresh_sites()
        else:
            logger.debug("Ignoring event %s", name)

    def refresh_sites(self) -> bool:
        """Replace the local site list with the remote one."""
        client = self._client
        if client is None:
            return False
        try:
            remote = parse_site_list(client.get_sites())
        except SyncError as exc:
            logger.warning("Site list refresh failed: %s", exc)
            return False

        self.sites.save(remote)
        self._notify_sites(remote)
        return True

    def reconcile_sites(self) -> list[SiteConfig] | None:
        client = self._client
        if client is None:
            return None
        try:
            remote = parse_site_list(client.get_sites())
        except SyncError as exc:
            logger.warning("Site list fetch failed: %s", exc)
            return None

        merged = union_sites(self.sites.load(), remote)
        self.sites.save(merged)
        try:
            client.put_sites([site.to_dict() for site in merged])
        except SyncError as exc:
            logger.warning("Site list upload failed: %s", exc)
        self._notify_sites(merged)
        return merged

    def start(self, session: Session) -> bool:
        """Attach a session without touching local state."""
        if not session.active:
            logger.info("Sync disabled: no server url or token")
            return False
        self.session = session
        self._client = RemoteSyncClient(session, self.transport)
        return True

    def _pull_until_settled(self) -> None:
        try:
            while True:
                try:
                    self.pull_favorites_merge()
                except Exception:  # noqa: BLE001
                    logger.exception("Favorites pull crashed")
                    return
                with self._pull_lock:
                    if not self._pull_again:
                        return
                    self._pull_again = False
        finally:
            with self._pull_lock:
                self._pull_running = False
                self._pull_again = False

    @staticmethod
    def _push_one(client: RemoteSyncClient, key: str, post: dict[str, Any], added_at: int) -> None:
        try:
            client.put_favorite(key, post, added_at)
        except SyncError as exc:
            logger.warning("Remote favorite upsert failed for %s: %s", key, exc)

    @staticmethod
    def _delete_one(client: RemoteSyncClient, key: str) -> None:
        try:
            client.delete_favorite(key)
        except SyncError as exc:
            logger.warning("Remote favorite delete failed for %s: %s", key, exc)

    def _notify_favorites(self) -> None:
        for listener in self._favorites_listeners:
            try:
                listener()
            except Exception:  # noqa: BLE001
                logger.exception("Favorites listener failed")

    def _notify_sites(self, sites: list[SiteConfig]) -> None:
        for listener in self._sites_listeners:
            try:
                listener(list(sites))
            except Exception:  # noqa: BLE001
                logger.exception("Sites listener failed")
