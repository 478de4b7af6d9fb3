from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

from streambooru.transport import EventSource, HttpResponse, Transport, TransportError
from streambooru.utils.url_utils import normalize_base_url


class SyncError(RuntimeError):
    """Raised when the sync server rejects a call or cannot be reached."""


@dataclass(slots=True, frozen=True)
class Session:
    server_url: str
    token: str

    @property
    def active(self) -> bool:
        return bool(self.server_url.strip() and self.token.strip())

    @property
    def base_url(self) -> str:
        return normalize_base_url(self.server_url)


class RemoteSyncClient:
    """HTTP client for the favourites/sites sync server."""

    def __init__(self, session: Session, transport: Transport) -> None:
        if not session.active:
            raise SyncError("sync session needs a server url and a token")
        self.session = session
        self.transport = transport

    def list_favorites(self) -> list[dict[str, Any]]:
        payload = self._get(f"{self.session.base_url}/api/favourites")
        items = payload.get("items") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise SyncError("favourites response has no items list")
        return items

    def put_favorite(self, key: str, post: Mapping[str, Any], added_at: int) -> None:
        self._check(
            "PUT favourite",
            lambda: self.transport.put_json(
                self._favorite_url(key),
                {"post": dict(post), "added_at": added_at},
                headers=self.headers,
            ),
        )

    def delete_favorite(self, key: str) -> None:
        self._check(
            "DELETE favourite",
            lambda: self.transport.delete(self._favorite_url(key), headers=self.headers),
        )

    def bulk_upsert(self, items: list[dict[str, Any]]) -> None:
        self._check(
            "bulk upsert",
            lambda: self.transport.post_json(
                f"{self.session.base_url}/api/favourites/bulk_upsert",
                {"items": items},
                headers=self.headers,
            ),
        )

    def get_sites(self) -> list[dict[str, Any]]:
        payload = self._get(f"{self.session.base_url}/api/sites")
        sites = payload.get("sites") if isinstance(payload, dict) else None
        if not isinstance(sites, list):
            raise SyncError("sites response has no sites list")
        return sites

    def put_sites(self, sites: list[dict[str, Any]]) -> None:
        self._check(
            "PUT sites",
            lambda: self.transport.put_json(
                f"{self.session.base_url}/api/sites",
                {"sites": sites},
                headers=self.headers,
            ),
        )

    def open_stream(self) -> EventSource:
        try:
            return self.transport.stream(f"{self.session.base_url}/api/stream", headers=self.headers)
        except TransportError as exc:
            raise SyncError(f"event stream failed: {exc}") from exc

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.session.token}"}

    def _favorite_url(self, key: str) -> str:
        return f"{self.session.base_url}/api/favourites/{quote(key, safe='')}"

    def _get(self, url: str) -> Any:
        try:
            return self.transport.get_json(url, headers=self.headers)
        except TransportError as exc:
            raise SyncError(f"GET {url} failed: {exc}") from exc

    @staticmethod
    def _check(label: str, call) -> HttpResponse:
        try:
            response = call()
        except TransportError as exc:
            raise SyncError(f"{label} failed: {exc}") from exc
        if not response.ok:
            raise SyncError(f"{label} failed with status {response.status}")
        return response
