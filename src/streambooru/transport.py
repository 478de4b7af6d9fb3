from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

import requests

DEFAULT_USER_AGENT = "streambooru/0.4 (+https://github.com/)"


class TransportError(RuntimeError):
    """Raised when a request fails, returns an error status or an undecodable body."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(slots=True)
class HttpResponse:
    status: int
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class EventSource(ABC):
    @abstractmethod
    def iter_chunks(self) -> Iterator[bytes | str]:
        """Yield raw chunks as they arrive until the server closes the stream."""

    @abstractmethod
    def close(self) -> None:
        """Abort the underlying connection."""


class Transport(ABC):
    @abstractmethod
    def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """GET a URL and return the decoded JSON body."""

    @abstractmethod
    def get_text(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> str:
        """GET a URL and return the body as text."""

    @abstractmethod
    def post_form(
        self,
        url: str,
        data: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        """POST form fields."""

    @abstractmethod
    def post_json(
        self,
        url: str,
        body: Any,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        """POST a JSON document."""

    @abstractmethod
    def put_json(
        self,
        url: str,
        body: Any,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        """PUT a JSON document."""

    @abstractmethod
    def delete(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        """Send a DELETE request."""

    @abstractmethod
    def stream(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> EventSource:
        """Open a long-lived streamed GET."""


class _RequestsEventSource(EventSource):
    def __init__(self, response: requests.Response) -> None:
        self._response = response

    def iter_chunks(self) -> Iterator[bytes]:
        try:
            for chunk in self._response.iter_content(chunk_size=None):
                if chunk:
                    yield chunk
        except requests.RequestException as exc:
            raise TransportError(f"stream interrupted: {exc}") from exc

    def close(self) -> None:
        self._response.close()


class RequestsTransport(Transport):
    def __init__(
        self,
        timeout_seconds: float = 30,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent

    def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = self._send("GET", url, params=params, headers=self._headers(headers, "application/json"))
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"GET {url} returned invalid JSON", status=response.status_code) from exc

    def get_text(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> str:
        response = self._send("GET", url, params=params, headers=self._headers(headers, "*/*"))
        return response.text

    def post_form(
        self,
        url: str,
        data: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        return self._to_http_response(
            self._send("POST", url, data=dict(data), headers=self._headers(headers), check=False)
        )

    def post_json(
        self,
        url: str,
        body: Any,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        return self._to_http_response(
            self._send("POST", url, json=body, headers=self._headers(headers), check=False)
        )

    def put_json(
        self,
        url: str,
        body: Any,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        return self._to_http_response(
            self._send("PUT", url, json=body, headers=self._headers(headers), check=False)
        )

    def delete(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> HttpResponse:
        return self._to_http_response(
            self._send("DELETE", url, headers=self._headers(headers), check=False)
        )

    def stream(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
    ) -> EventSource:
        response: requests.Response | None = None
        try:
            response = requests.get(
                url,
                headers=self._headers(headers, "text/event-stream"),
                stream=True,
                timeout=(self.timeout_seconds, None),
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            if response is not None:
                response.close()
            status = exc.response.status_code if exc.response is not None else None
            raise TransportError(f"stream {url} failed: {exc}", status=status) from exc
        except requests.RequestException as exc:
            raise TransportError(f"stream {url} failed: {exc}") from exc
        return _RequestsEventSource(response)

    def _headers(self, extra: Mapping[str, str] | None, accept: str | None = None) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent}
        if accept:
            headers["Accept"] = accept
        if extra:
            headers.update(extra)
        return headers

    def _send(self, method: str, url: str, *, check: bool = True, **kwargs: Any) -> requests.Response:
        sender = {
            "GET": requests.get,
            "POST": requests.post,
            "PUT": requests.put,
            "DELETE": requests.delete,
        }[method]
        try:
            response = sender(url, timeout=self.timeout_seconds, **kwargs)
            if check:
                response.raise_for_status()
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            raise TransportError(f"{method} {url} failed: {exc}", status=status) from exc
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc
        return response

    @staticmethod
    def _to_http_response(response: requests.Response) -> HttpResponse:
        body: Any
        try:
            body = response.json()
        except ValueError:
            body = response.text or None
        return HttpResponse(status=response.status_code, body=body)
