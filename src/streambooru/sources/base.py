from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from streambooru.models import FetchResult, SiteConfig
from streambooru.transport import Transport


class SourceAdapter(ABC):
    """One image board API family, normalized into canonical posts and an opaque cursor."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    @abstractmethod
    def fetch_new(
        self,
        site: SiteConfig,
        *,
        cursor: Any = None,
        limit: int = 40,
        search: str = "",
    ) -> FetchResult:
        """Fetch one page in the board's native newest-first order."""

    @abstractmethod
    def fetch_popular(
        self,
        site: SiteConfig,
        *,
        cursor: Any = None,
        limit: int = 40,
        search: str = "",
    ) -> FetchResult:
        """Fetch one page biased towards the board's own popularity ranking."""

    @property
    def supports_favorite(self) -> bool:
        return type(self).favorite is not SourceAdapter.favorite

    @property
    def supports_auth_check(self) -> bool:
        return type(self).auth_check is not SourceAdapter.auth_check

    def favorite(self, site: SiteConfig, post_id: str, action: str = "add") -> Any:
        raise NotImplementedError(f"{site.type} does not support remote favorites")

    def auth_check(self, site: SiteConfig) -> dict[str, Any]:
        raise NotImplementedError(f"{site.type} does not support account checks")
