from __future__ import annotations

import logging

from streambooru.config import ConfigError, parse_site
from streambooru.models import SiteConfig

from .base import StateStore

logger = logging.getLogger(__name__)

SITES_DOCUMENT = "sites"


class SiteListStore:
    """The locally persisted ``{sites: [...]}`` document."""

    def __init__(self, state_store: StateStore) -> None:
        self.state_store = state_store

    def load(self) -> list[SiteConfig]:
        document = self.state_store.load(SITES_DOCUMENT, {}) or {}
        raw_sites = document.get("sites") if isinstance(document, dict) else None
        return parse_site_list(raw_sites)

    def save(self, sites: list[SiteConfig]) -> None:
        self.state_store.save(SITES_DOCUMENT, {"sites": [site.to_dict() for site in sites]})

    def exists(self) -> bool:
        return self.state_store.load(SITES_DOCUMENT) is not None


def parse_site_list(raw_sites: object) -> list[SiteConfig]:
    """Parse site entries, skipping invalid ones."""
    if not isinstance(raw_sites, list):
        return []

    sites: list[SiteConfig] = []
    for index, raw in enumerate(raw_sites, start=1):
        try:
            sites.append(parse_site(raw, label=f"site #{index}"))
        except ConfigError as exc:
            logger.warning("Skipping invalid site entry: %s", exc)
    return sites
