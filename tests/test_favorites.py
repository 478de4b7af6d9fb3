from __future__ import annotations

from streambooru.favorites import FavoritesStore, clamp_post, parse_entry
from streambooru.models import Post, SiteRef
from streambooru.store.sqlite_store import SQLiteStore

SITE = SiteRef(name="Dan", type="danbooru", base_url="https://danbooru.donmai.us")


def _store(tmp_path) -> SQLiteStore:
    store = SQLiteStore(str(tmp_path / "state.sqlite"))
    store.init_db()
    return store


def _post(post_id: str, **kwargs) -> Post:
    return Post(id=post_id, site=SITE, file_url=f"https://cdn.test/{post_id}.jpg", **kwargs)


def test_toggle_twice_restores_the_key_set(tmp_path) -> None:
    favorites = FavoritesStore(_store(tmp_path))
    favorites.toggle(_post("1"))
    before = favorites.keys()

    first, _ = favorites.toggle(_post("2"))
    second, _ = favorites.toggle(_post("2"))

    assert first is True
    assert second is False
    assert favorites.keys() == before


def test_toggle_is_written_through_to_the_state_store(tmp_path) -> None:
    store = _store(tmp_path)
    FavoritesStore(store).toggle(_post("7", tags=["sky"]))

    reloaded = FavoritesStore(store)

    assert reloaded.contains("https://danbooru.donmai.us#7")
    entry = reloaded.get("https://danbooru.donmai.us#7")
    assert entry is not None
    assert entry.post.tags == ["sky"]
    assert entry.added_at > 0


def test_replace_all_discards_records_without_key_or_post(tmp_path) -> None:
    favorites = FavoritesStore(_store(tmp_path))
    favorites.toggle(_post("local-only"))

    kept = favorites.replace_all(
        [
            {"key": "https://danbooru.donmai.us#1", "added_at": 5, "post": _post("1").to_dict()},
            {"key": "https://danbooru.donmai.us#2", "added_at": 6},
            {"added_at": 7, "post": _post("3").to_dict()},
            "garbage",
        ]
    )

    assert kept == 1
    assert favorites.keys() == {"https://danbooru.donmai.us#1"}


def test_entries_are_newest_first(tmp_path) -> None:
    favorites = FavoritesStore(_store(tmp_path))
    favorites.replace_all(
        [
            {"key": "a#1", "added_at": 100, "post": _post("1").to_dict()},
            {"key": "a#2", "added_at": 300, "post": _post("2").to_dict()},
            {"key": "a#3", "added_at": 200, "post": _post("3").to_dict()},
        ]
    )

    assert [entry.key for entry in favorites.entries()] == ["a#2", "a#3", "a#1"]


def test_clamp_post_trims_strings_and_drops_unknown_fields() -> None:
    snapshot = clamp_post({**_post("1").to_dict(), "source": "x" * 5000, "secret": "token"})

    assert snapshot is not None
    assert len(snapshot["source"]) == 2000
    assert "secret" not in snapshot


def test_clamp_post_rejects_oversized_snapshots() -> None:
    huge_tags = ["t" * 1999 for _ in range(200)]

    assert clamp_post({**_post("1").to_dict(), "tags": huge_tags}) is None
    assert parse_entry({"key": "a#1", "post": {"tags": ["no id"]}}) is None
