from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit


def normalize_base_url(url: str | None) -> str:
    value = (url or "").strip()
    if not value:
        return ""

    parsed = urlsplit(value)
    if not parsed.scheme or not parsed.netloc:
        return value.rstrip("/")

    return urlunsplit((parsed.scheme.lower(), parsed.netloc.lower(), parsed.path, "", "")).rstrip("/")


def absolutize(base_url: str, url: str | None) -> str:
    value = (url or "").strip()
    if not value:
        return ""
    if value.startswith(("http://", "https://")):
        return value
    if value.startswith("//"):
        return f"https:{value}"
    if value.startswith("/"):
        return f"{base_url.rstrip('/')}{value}"
    return value


def is_http_url(url: str | None) -> bool:
    parsed = urlsplit((url or "").strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)
