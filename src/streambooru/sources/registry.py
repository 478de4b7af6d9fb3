from __future__ import annotations

from typing import Callable

from streambooru.transport import Transport

from .base import SourceAdapter

SourceFactory = Callable[[Transport], SourceAdapter]

_REGISTRY: dict[str, SourceFactory] = {}


class SourceRegistrationError(ValueError):
    """Raised when an unknown site type is used."""


def register_source(site_type: str) -> Callable[[SourceFactory], SourceFactory]:
    def decorator(factory: SourceFactory) -> SourceFactory:
        _REGISTRY[site_type] = factory
        return factory

    return decorator


def create_source(site_type: str, transport: Transport) -> SourceAdapter:
    factory = _REGISTRY.get((site_type or "").lower())
    if factory is None:
        available = ", ".join(sorted(_REGISTRY)) or "none"
        raise SourceRegistrationError(
            f"Unknown site type '{site_type}'. Registered site types: {available}"
        )
    return factory(transport)


def registered_source_types() -> list[str]:
    return sorted(_REGISTRY)
