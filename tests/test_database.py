import pytest

from database import get_store, load_document, mutate_document
from errors import ConcurrentModification, NotFound, StoreUnavailable
from ratings import add_rating, is_consistent
from schemas import Song


def test_insert_and_find_roundtrip_sets_version(store, make_song):
    song_id = make_song(title="Intro")
    doc = store.find_by_id("song", song_id)
    assert doc["id"] == song_id
    assert doc["title"] == "Intro"
    assert doc["version"] == 0
    assert "_id" not in doc


def test_unknown_or_malformed_id_is_not_found(store):
    assert store.find_by_id("song", "not-an-object-id") is None
    with pytest.raises(NotFound):
        load_document(store, "song", Song, "64b7f0c2a1b2c3d4e5f60718")


def test_stale_replace_is_rejected(store, make_song):
    song_id = make_song()
    stale = load_document(store, "song", Song, song_id)
    assert store.replace("song", song_id, stale, stale.version)
    assert not store.replace("song", song_id, stale, stale.version)


def test_increment_bumps_version(store, make_song):
    song_id = make_song()
    doc = store.increment("song", song_id, "play_count", 1)
    assert doc["play_count"] == 1
    assert doc["version"] == 1


def test_concurrent_raters_do_not_lose_updates(store, make_song):
    """Another request commits between this request's read and write; the write retries."""
    song_id = make_song()
    attempts = []

    def rate_one(song):
        attempts.append(song.version)
        if len(attempts) == 1:
            mutate_document(
                store, "song", Song, song_id,
                lambda s: s.model_copy(update={"ratings": add_rating(s.ratings, 5)}),
            )
        return song.model_copy(update={"ratings": add_rating(song.ratings, 1)})

    result = mutate_document(store, "song", Song, song_id, rate_one)

    assert attempts == [0, 1]
    stored = load_document(store, "song", Song, song_id)
    assert stored.ratings.count == 2
    assert stored.ratings.average == pytest.approx(3.0)
    assert is_consistent(stored.ratings)
    assert result.version == stored.version


def test_retries_are_bounded(store, make_song):
    song_id = make_song()

    def always_loses(song):
        store.increment("song", song_id, "play_count", 1)
        return song.model_copy(update={"featured": True})

    with pytest.raises(ConcurrentModification):
        mutate_document(store, "song", Song, song_id, always_loses, attempts=3)

    stored = load_document(store, "song", Song, song_id)
    assert stored.play_count == 3
    assert stored.featured is False


def test_store_unavailable_without_database(monkeypatch):
    import database
    monkeypatch.setattr(database, "db", None)
    with pytest.raises(StoreUnavailable):
        get_store()
