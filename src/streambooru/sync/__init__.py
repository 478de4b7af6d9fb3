"""Favorites and site-list synchronization with the remote server."""

from .client import RemoteSyncClient, Session, SyncError
from .engine import SyncEngine, union_sites
from .event_stream import EventStreamClient, SseEvent, SseFrameParser, StreamState

__all__ = [
    "EventStreamClient",
    "RemoteSyncClient",
    "Session",
    "SseEvent",
    "SseFrameParser",
    "StreamState",
    "SyncEngine",
    "SyncError",
    "union_sites",
]
