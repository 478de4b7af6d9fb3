from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class StateStore(ABC):
    """Named JSON documents persisted locally (favorites, site list, sync markers)."""

    @abstractmethod
    def init_db(self) -> None:
        """Create any required schema."""

    @abstractmethod
    def load(self, name: str, default: Any = None) -> Any:
        """Return the stored document, or ``default`` when missing or unreadable."""

    @abstractmethod
    def save(self, name: str, value: Any) -> None:
        """Replace the stored document."""
