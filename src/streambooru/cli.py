from __future__ import annotations

import argparse
import logging
import os
import sys
import threading

from streambooru.aggregator import FeedAggregator, FeedMode
from streambooru.config import AppConfig, ConfigError, load_config
from streambooru.favorites import FavoritesStore
from streambooru.logging_config import setup_logging
from streambooru.models import Post, SiteConfig
from streambooru.store import SiteListStore, SQLiteStore
from streambooru.sync import Session, SyncEngine
from streambooru.transport import RequestsTransport

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="streambooru",
        description="Aggregate image board feeds and sync favorites.",
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to config YAML file (default: config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        help="Override config log level (e.g. INFO, DEBUG)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    feed = subparsers.add_parser("feed", help="Fetch and print a ranked feed")
    feed.add_argument("mode", choices=[mode.value for mode in FeedMode])
    feed.add_argument("--search", default="", help="Tag search (search and favorites modes)")
    feed.add_argument("--pages", type=int, default=1, help="Number of cycles to run (default: 1)")

    favorites = subparsers.add_parser("favorites", help="Inspect local favorites")
    favorites_commands = favorites.add_subparsers(dest="favorites_command", required=True)
    favorites_commands.add_parser("list", help="Print local favorites, newest first")

    sync = subparsers.add_parser("sync", help="Synchronize with the sync server")
    sync_commands = sync.add_subparsers(dest="sync_command", required=True)
    sync_commands.add_parser("pull", help="Replace local favorites with the remote list")
    sync_commands.add_parser("push", help="Upload all local favorites")
    sync_commands.add_parser("login", help="Start a session: upload, pull and merge site lists")
    sync_commands.add_parser("listen", help="Follow the live event stream until interrupted")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        app_config = load_config(args.config)
        store = _build_store(app_config)
    except ConfigError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        return 2

    log_level = args.log_level or app_config.log_level
    setup_logging(log_level)

    store.init_db()
    transport = RequestsTransport(timeout_seconds=app_config.feed.timeout_seconds)
    favorites = FavoritesStore(store)
    site_list = SiteListStore(store)

    if args.command == "feed":
        if args.pages < 1:
            parser.error("--pages must be >= 1")
        sites = _active_sites(app_config, site_list)
        return _run_feed(args.mode, args.search, args.pages, sites, transport, favorites, app_config)

    if args.command == "favorites":
        for entry in favorites.entries():
            print(_format_post(entry.post))
        return 0

    session = _build_session(app_config)
    if session is None:
        return 2

    engine = SyncEngine(
        favorites,
        site_list,
        store,
        transport,
        reconnect_delay=app_config.sync.reconnect_delay_seconds,
    )
    if not site_list.exists():
        site_list.save(app_config.sites)

    try:
        return _run_sync(args.sync_command, engine, session)
    finally:
        engine.close()


def _build_store(app_config: AppConfig) -> SQLiteStore:
    if app_config.storage.type != "sqlite":
        raise ConfigError(f"Unsupported storage type: {app_config.storage.type}")
    return SQLiteStore(app_config.storage.path)


def _active_sites(app_config: AppConfig, site_list: SiteListStore) -> list[SiteConfig]:
    if site_list.exists():
        return site_list.load()
    return list(app_config.sites)


def _build_session(app_config: AppConfig) -> Session | None:
    if not app_config.sync.server_url:
        logger.error("sync.server_url is not configured")
        return None
    token = os.getenv(app_config.sync.token_env_var, "").strip()
    if not token:
        logger.error("Missing sync token in environment variable %s", app_config.sync.token_env_var)
        return None
    return Session(server_url=app_config.sync.server_url, token=token)


def _run_feed(
    mode: str,
    search: str,
    pages: int,
    sites: list[SiteConfig],
    transport: RequestsTransport,
    favorites: FavoritesStore,
    app_config: AppConfig,
) -> int:
    aggregator = FeedAggregator(
        sites,
        transport,
        favorites=favorites,
        page_size=app_config.feed.page_size,
        max_workers=app_config.feed.max_workers,
    )
    context = aggregator.reset(mode, search)

    rendered: list[Post] = []
    for _ in range(pages):
        rendered = aggregator.request_more() or rendered
        if context.exhausted:
            logger.info("End of results after %d cycles", context.cycles)
            break

    for post in rendered:
        print(_format_post(post))
    return 0


def _run_sync(command: str, engine: SyncEngine, session: Session) -> int:
    if command == "login":
        return 0 if engine.login(session) else 1

    if command == "listen":
        engine.on_favorites_changed(
            lambda: logger.info("Favorites updated (%d local)", len(engine.favorites.keys()))
        )
        engine.on_sites_changed(lambda sites: logger.info("Site list updated (%d sites)", len(sites)))
        if not engine.resume(session):
            return 1
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            logger.info("Stopping event stream")
        return 0

    engine.start(session)
    if command == "pull":
        return 0 if engine.pull_favorites_merge() else 1
    return 0 if engine.push_all_favorites(force=True) else 1


def _format_post(post: Post) -> str:
    return f"{post.key} | {post.created_at or '-'} | {post.favorites} | {post.score}"


if __name__ == "__main__":
    raise SystemExit(main())
