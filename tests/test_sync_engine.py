from __future__ import annotations

import sqlite3

from streambooru.favorites import FavoritesStore
from streambooru.models import Post, SiteConfig, SiteRef
from streambooru.store.site_list import SiteListStore
from streambooru.store.sqlite_store import SQLiteStore
from streambooru.sync import Session, SyncEngine, union_sites
from streambooru.transport import EventSource, HttpResponse, Transport, TransportError

BASE = "https://sync.test"
SITE = SiteRef(name="Dan", type="danbooru", base_url="https://danbooru.donmai.us")


class FakeEventSource(EventSource):
    def __init__(self, chunks) -> None:
        self.chunks = list(chunks)

    def iter_chunks(self):
        yield from self.chunks

    def close(self) -> None:
        return None


class RecordingTransport(Transport):
    """In-memory sync server: canned GET payloads, recorded writes."""

    def __init__(self) -> None:
        self.payloads: dict[str, object] = {}
        self.write_status = 200
        self.calls: list[tuple[str, str, object]] = []
        self.streams: list[FakeEventSource] = []

    def get_json(self, url, *, params=None, headers=None):
        self.calls.append(("GET", url, None))
        payload = self.payloads.get(url)
        if isinstance(payload, Exception):
            raise payload
        return payload

    def get_text(self, url, *, params=None, headers=None):
        raise AssertionError("unexpected GET")

    def post_form(self, url, data, *, headers=None):
        return self._write("POST", url, dict(data))

    def post_json(self, url, body, *, headers=None):
        return self._write("POST", url, body)

    def put_json(self, url, body, *, headers=None):
        return self._write("PUT", url, body)

    def delete(self, url, *, headers=None):
        return self._write("DELETE", url, None)

    def stream(self, url, *, headers=None):
        self.calls.append(("STREAM", url, None))
        return self.streams.pop(0) if self.streams else FakeEventSource([])

    def _write(self, method, url, body):
        self.calls.append((method, url, body))
        return HttpResponse(status=self.write_status)

    def remote_calls(self) -> list[tuple[str, str, object]]:
        return [call for call in self.calls if call[0] != "STREAM"]


class ImmediateExecutor:
    def submit(self, fn, *args, **kwargs):
        fn(*args, **kwargs)


class ManualExecutor:
    def __init__(self) -> None:
        self.submitted: list = []

    def submit(self, fn, *args, **kwargs):
        self.submitted.append(lambda: fn(*args, **kwargs))


class IdleTimer:
    daemon = False

    def __init__(self, *args, **kwargs) -> None:
        return None

    def start(self) -> None:
        return None

    def cancel(self) -> None:
        return None


class DeferredThreads:
    def __init__(self) -> None:
        self.targets: list = []

    def __call__(self, target):
        self.targets.append(target)
        return self

    def start(self) -> None:
        return None


def _post(post_id: str) -> Post:
    return Post(id=post_id, site=SITE, file_url=f"https://cdn.test/{post_id}.jpg")


def _remote_item(post_id: str, added_at: int) -> dict:
    post = _post(post_id)
    return {"key": post.key, "added_at": added_at, "post": post.to_dict()}


def _engine(tmp_path, transport, executor=None, threads=None) -> SyncEngine:
    store = SQLiteStore(str(tmp_path / "state.sqlite"))
    store.init_db()
    return SyncEngine(
        FavoritesStore(store),
        SiteListStore(store),
        store,
        transport,
        executor=executor or ImmediateExecutor(),
        thread_factory=threads or DeferredThreads(),
        timer_factory=IdleTimer,
    )


def test_pull_replaces_local_favorites_and_is_idempotent(tmp_path) -> None:
    transport = RecordingTransport()
    transport.payloads[f"{BASE}/api/favourites"] = {
        "items": [_remote_item("1", 100), _remote_item("2", 200), {"key": "broken"}]
    }
    engine = _engine(tmp_path, transport)
    engine.favorites.toggle(_post("local"))
    engine.start(Session(BASE, "token"))

    assert engine.pull_favorites_merge()
    first = [entry.to_dict() for entry in engine.favorites.entries()]
    assert engine.pull_favorites_merge()
    second = [entry.to_dict() for entry in engine.favorites.entries()]

    assert first == second
    assert [entry["key"] for entry in first] == [_post("2").key, _post("1").key]


def test_toggle_writes_locally_then_pushes_upsert_and_delete(tmp_path) -> None:
    transport = RecordingTransport()
    engine = _engine(tmp_path, transport)
    engine.start(Session(BASE, "token"))
    post = _post("42")

    assert engine.toggle_favorite(post) is True
    assert engine.toggle_favorite(post) is False

    quoted = "https%3A%2F%2Fdanbooru.donmai.us%2342"
    methods = [(method, url) for method, url, _ in transport.remote_calls()]
    assert methods == [
        ("PUT", f"{BASE}/api/favourites/{quoted}"),
        ("DELETE", f"{BASE}/api/favourites/{quoted}"),
    ]
    body = transport.remote_calls()[0][2]
    assert body["post"]["id"] == "42"
    assert body["added_at"] > 0
    assert not engine.favorites.contains(post.key)


def test_failed_remote_write_keeps_local_change(tmp_path) -> None:
    transport = RecordingTransport()
    transport.write_status = 503
    engine = _engine(tmp_path, transport)
    engine.start(Session(BASE, "token"))

    assert engine.toggle_favorite(_post("9")) is True
    assert engine.favorites.contains(_post("9").key)


def test_toggle_without_session_stays_local(tmp_path) -> None:
    transport = RecordingTransport()
    engine = _engine(tmp_path, transport)

    assert engine.toggle_favorite(_post("5")) is True
    assert transport.calls == []
    assert not engine.pull_favorites_merge()


def test_push_all_runs_once_per_token(tmp_path) -> None:
    transport = RecordingTransport()
    transport.payloads[f"{BASE}/api/favourites"] = {"items": []}
    transport.payloads[f"{BASE}/api/sites"] = {"sites": []}
    engine = _engine(tmp_path, transport)
    engine.favorites.toggle(_post("offline"))

    engine.login(Session(BASE, "first"))
    engine.favorites.toggle(_post("offline"))
    engine.login(Session(BASE, "first"))
    engine.login(Session(BASE, "second"))

    bulk_calls = [call for call in transport.calls if call[1].endswith("/bulk_upsert")]
    assert len(bulk_calls) == 2
    assert bulk_calls[0][2]["items"][0]["key"] == _post("offline").key


def test_precise_remote_delete_skips_the_network(tmp_path) -> None:
    transport = RecordingTransport()
    transport.streams.append(
        FakeEventSource(
            [
                b'event: fav_changed\ndata: {"remov',
                b'ed":true,"key":"https://danbooru.donmai.us#1"}\n\n',
            ]
        )
    )
    threads = DeferredThreads()
    engine = _engine(tmp_path, transport, threads=threads)
    engine.favorites.toggle(_post("1"))
    engine.favorites.toggle(_post("2"))
    changes: list[int] = []
    engine.on_favorites_changed(lambda: changes.append(len(engine.favorites.keys())))

    session = Session(BASE, "token")
    engine.start(session)
    engine.stream.connect(session)
    threads.targets.pop(0)()

    assert engine.favorites.keys() == {_post("2").key}
    assert transport.remote_calls() == []
    assert changes == [1]


def test_other_favorite_events_trigger_coalesced_pulls(tmp_path) -> None:
    transport = RecordingTransport()
    transport.payloads[f"{BASE}/api/favourites"] = {"items": [_remote_item("3", 1)]}
    executor = ManualExecutor()
    engine = _engine(tmp_path, transport, executor=executor)
    engine.start(Session(BASE, "token"))

    engine.handle_event("fav_changed", {"key": "x"})
    engine.handle_event("fav_changed", None)
    engine.handle_event("fav_changed", {"removed": False})
    engine.handle_event("something_else", {"removed": True, "key": "x"})

    assert len(executor.submitted) == 1
    executor.submitted.pop()()

    pulls = [call for call in transport.calls if call[0] == "GET"]
    assert len(pulls) == 2
    assert engine.favorites.keys() == {_post("3").key}

    engine.handle_event("fav_changed", {})
    assert len(executor.submitted) == 1


def test_crashed_pull_does_not_block_later_pulls(tmp_path) -> None:
    class LockedOnceStore(SQLiteStore):
        def __init__(self, db_path: str) -> None:
            super().__init__(db_path)
            self.failures = 1

        def save(self, name, value) -> None:
            if name == "favorites" and self.failures:
                self.failures -= 1
                raise sqlite3.OperationalError("database is locked")
            super().save(name, value)

    transport = RecordingTransport()
    transport.payloads[f"{BASE}/api/favourites"] = {"items": [_remote_item("4", 1)]}
    store = LockedOnceStore(str(tmp_path / "state.sqlite"))
    store.init_db()
    executor = ManualExecutor()
    engine = SyncEngine(
        FavoritesStore(store),
        SiteListStore(store),
        store,
        transport,
        executor=executor,
        thread_factory=DeferredThreads(),
        timer_factory=IdleTimer,
    )
    engine.start(Session(BASE, "token"))

    engine.handle_event("fav_changed", {})
    executor.submitted.pop()()
    engine.handle_event("fav_changed", {})

    assert len(executor.submitted) == 1
    executor.submitted.pop()()

    pulls = [call for call in transport.calls if call[0] == "GET"]
    assert len(pulls) == 2
    assert store.load("favorites")[0]["key"] == _post("4").key


def test_pull_failure_is_swallowed(tmp_path) -> None:
    transport = RecordingTransport()
    transport.payloads[f"{BASE}/api/favourites"] = TransportError("down", status=502)
    engine = _engine(tmp_path, transport)
    engine.favorites.toggle(_post("1"))
    engine.start(Session(BASE, "token"))

    assert engine.pull_favorites_merge() is False
    assert engine.favorites.contains(_post("1").key)


def test_union_sites_prefers_remote_and_appends_local_only() -> None:
    local = [
        SiteConfig(name="Local A", type="danbooru", base_url="https://a.test"),
        SiteConfig(name="Local B", type="gelbooru", base_url="https://b.test"),
    ]
    remote = [
        SiteConfig(name="Remote B", type="Gelbooru", base_url="https://B.test/"),
        SiteConfig(name="Remote C", type="e621", base_url="https://c.test"),
    ]

    merged = union_sites(local, remote)

    assert [(site.name, site.order_index) for site in merged] == [
        ("Remote B", 0),
        ("Remote C", 1),
        ("Local A", 2),
    ]


def test_login_merges_site_lists_and_pushes_the_result(tmp_path) -> None:
    transport = RecordingTransport()
    transport.payloads[f"{BASE}/api/favourites"] = {"items": []}
    transport.payloads[f"{BASE}/api/sites"] = {
        "sites": [
            {"name": "Remote Dan", "type": "danbooru", "baseUrl": "https://danbooru.donmai.us/"},
            {"name": "", "type": "unknown", "baseUrl": "https://bad.test"},
        ]
    }
    threads = DeferredThreads()
    engine = _engine(tmp_path, transport, threads=threads)
    engine.sites.save(
        [
            SiteConfig(name="Local Dan", type="danbooru", base_url="https://danbooru.donmai.us"),
            SiteConfig(name="Local Gel", type="gelbooru", base_url="https://gelbooru.com"),
        ]
    )
    notified: list[list[SiteConfig]] = []
    engine.on_sites_changed(notified.append)

    assert engine.login(Session(BASE, "token"))

    saved = engine.sites.load()
    assert [(site.name, site.order_index) for site in saved] == [("Remote Dan", 0), ("Local Gel", 1)]
    put_sites = [call for call in transport.calls if call[0] == "PUT" and call[1] == f"{BASE}/api/sites"]
    assert [site["name"] for site in put_sites[0][2]["sites"]] == ["Remote Dan", "Local Gel"]
    assert len(notified) == 1
    assert len(threads.targets) == 1


def test_sites_changed_event_replaces_local_list(tmp_path) -> None:
    transport = RecordingTransport()
    transport.payloads[f"{BASE}/api/sites"] = {
        "sites": [{"name": "Only", "type": "moebooru", "url": "https://yande.re"}]
    }
    engine = _engine(tmp_path, transport)
    engine.sites.save([SiteConfig(name="Old", type="danbooru", base_url="https://danbooru.donmai.us")])
    engine.start(Session(BASE, "token"))

    engine.handle_event("sites_changed", {})

    assert [site.name for site in engine.sites.load()] == ["Only"]
