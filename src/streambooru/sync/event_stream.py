"""Client for the sync server's ``text/event-stream`` channel.

Chunks arrive with arbitrary boundaries. ``SseFrameParser`` buffers them and
only yields a frame once its terminating blank line has been seen.
``EventStreamClient`` owns at most one live connection and reconnects after a
fixed delay. Every connect bumps a generation counter, and reconnect timers
belonging to an older generation do nothing when they fire.
"""

from __future__ import annotations

import codecs
import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from streambooru.transport import EventSource, Transport

from .client import RemoteSyncClient, Session, SyncError

logger = logging.getLogger(__name__)

KEEPALIVE_EVENTS = frozenset({"ping", "hello"})

EventHandler = Callable[[str, Any], None]
ThreadFactory = Callable[[Callable[[], None]], Any]
TimerFactory = Callable[..., Any]


@dataclass(slots=True)
class SseEvent:
    event: str
    data: str


class SseFrameParser:
    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes | str) -> list[SseEvent]:
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._buffer = (self._buffer + text).replace("\r\n", "\n")

        events: list[SseEvent] = []
        while "\n\n" in self._buffer:
            frame, self._buffer = self._buffer.split("\n\n", 1)
            event = _parse_frame(frame)
            if event is not None:
                events.append(event)
        return events


def _parse_frame(frame: str) -> SseEvent | None:
    name = ""
    data: list[str] = []
    for line in frame.split("\n"):
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            name = value.strip()
        elif field == "data":
            data.append(value)

    if not name and not data:
        return None
    return SseEvent(event=name or "message", data="\n".join(data))


class StreamState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


def daemon_thread(target: Callable[[], None]) -> threading.Thread:
    return threading.Thread(target=target, name="streambooru-events", daemon=True)


class EventStreamClient:
    def __init__(
        self,
        transport: Transport,
        on_event: EventHandler,
        *,
        reconnect_delay: float = 3.0,
        thread_factory: ThreadFactory = daemon_thread,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.transport = transport
        self.on_event = on_event
        self.reconnect_delay = reconnect_delay
        self.thread_factory = thread_factory
        self.timer_factory = timer_factory
        self.state = StreamState.DISCONNECTED
        self._lock = threading.Lock()
        self._generation = 0
        self._session: Session | None = None
        self._source: EventSource | None = None
        self._timer: Any = None

    @property
    def generation(self) -> int:
        return self._generation

    def connect(self, session: Session | None) -> bool:
        """Open a new connection, superseding any previous one."""
        if session is None or not session.active:
            logger.info("No sync session; event stream stays closed")
            self.close()
            return False

        with self._lock:
            self._generation += 1
            generation = self._generation
            self._session = session
            previous = self._release_locked()
            self.state = StreamState.CONNECTING

        if previous is not None:
            previous.close()
        self.thread_factory(lambda: self._run(generation, session)).start()
        return True

    def close(self) -> None:
        with self._lock:
            self._generation += 1
            self._session = None
            previous = self._release_locked()
            self.state = StreamState.DISCONNECTED
        if previous is not None:
            previous.close()

    def _release_locked(self) -> EventSource | None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        source, self._source = self._source, None
        return source

    def _run(self, generation: int, session: Session) -> None:
        try:
            source = RemoteSyncClient(session, self.transport).open_stream()
        except SyncError as exc:
            logger.warning("Event stream connect failed: %s", exc)
            self._schedule_reconnect(generation)
            return

        with self._lock:
            if generation != self._generation:
                superseded = True
            else:
                superseded = False
                self._source = source
                self.state = StreamState.CONNECTED
        if superseded:
            source.close()
            return

        logger.info("Event stream connected (generation %d)", generation)
        parser = SseFrameParser()
        try:
            for chunk in source.iter_chunks():
                if generation != self._generation:
                    break
                for event in parser.feed(chunk):
                    self._dispatch(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Event stream interrupted: %s", exc)
        finally:
            source.close()

        self._schedule_reconnect(generation)

    def _dispatch(self, event: SseEvent) -> None:
        if event.event in KEEPALIVE_EVENTS:
            return
        try:
            payload = json.loads(event.data) if event.data.strip() else None
        except ValueError:
            logger.debug("Dropping %s event with malformed data", event.event)
            return
        try:
            self.on_event(event.event, payload)
        except Exception:  # noqa: BLE001
            logger.exception("Event handler failed for %s", event.event)

    def _schedule_reconnect(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._session is None:
                return
            self._source = None
            self.state = StreamState.RECONNECTING
            timer = self.timer_factory(self.reconnect_delay, self._reconnect, args=(generation,))
            timer.daemon = True
            self._timer = timer
        logger.info("Event stream closed; reconnecting in %.1fs", self.reconnect_delay)
        timer.start()

    def _reconnect(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._session is None:
                logger.debug("Skipping superseded reconnect (generation %d)", generation)
                return
            session = self._session
            self._timer = None
        self.connect(session)
