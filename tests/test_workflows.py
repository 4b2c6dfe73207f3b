import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect

import catalog
import playlists
import ratings
from database import load_document
from schemas import Song, User, UserRating
from tests.helpers import NOW


def fail_song_writes(monkeypatch, store):
    original = store.replace

    def replace(collection, doc_id, data, expected_version):
        if collection == "song":
            raise AutoReconnect("connection reset")
        return original(collection, doc_id, data, expected_version)

    monkeypatch.setattr(store, "replace", replace)


# Rating writes span two documents

def test_first_rating_is_rolled_back_when_song_write_fails(monkeypatch, store, make_user, make_song):
    user_id, song_id = make_user(), make_song()
    fail_song_writes(monkeypatch, store)

    with pytest.raises(AutoReconnect):
        ratings.rate_song(store, user_id, song_id, 4)

    user = load_document(store, "user", User, user_id)
    assert user.ratings == []
    assert user.ratings_given == 0
    assert load_document(store, "song", Song, song_id).ratings.count == 0


def test_changed_rating_is_rolled_back_when_song_write_fails(monkeypatch, store, make_user, make_song):
    user_id, song_id = make_user(), make_song()
    ratings.rate_song(store, user_id, song_id, 2)
    fail_song_writes(monkeypatch, store)

    with pytest.raises(AutoReconnect):
        ratings.rate_song(store, user_id, song_id, 5)

    user = load_document(store, "user", User, user_id)
    assert [e.rating for e in user.ratings] == [2]
    assert user.ratings_given == 1
    assert load_document(store, "song", Song, song_id).ratings.distribution["2"] == 1


def test_removed_rating_is_restored_when_song_write_fails(monkeypatch, store, make_user, make_song):
    user_id, song_id = make_user(), make_song()
    ratings.rate_song(store, user_id, song_id, 3)
    fail_song_writes(monkeypatch, store)

    with pytest.raises(AutoReconnect):
        ratings.unrate_song(store, user_id, song_id)

    user = load_document(store, "user", User, user_id)
    assert [(e.song_id, e.rating) for e in user.ratings] == [(song_id, 3)]
    assert user.ratings_given == 1
    assert load_document(store, "song", Song, song_id).ratings.count == 1


def test_recent_ratings_newest_first_and_skip_missing_songs(store, make_song):
    first, second = make_song("First"), make_song("Second")
    later = NOW.replace(hour=5)
    store.insert("user", User(
        username="early", ratings_given=2,
        ratings=[
            UserRating(song_id=first, rating=2, rated_at=NOW),
            UserRating(song_id=str(ObjectId()), rating=5, rated_at=NOW.replace(hour=9)),
        ],
    ))
    store.insert("user", User(
        username="late", ratings_given=1,
        ratings=[UserRating(song_id=second, rating=4, rated_at=later)],
    ))
    store.insert("user", User(username="quiet"))

    recent = ratings.recent_ratings(store, limit=10)

    assert [(r["user"]["username"], r["song"].title, r["rating"]) for r in recent] == [
        ("late", "Second", 4),
        ("early", "First", 2),
    ]
    assert len(ratings.recent_ratings(store, limit=1)) == 1


# Membership writes

def test_concurrent_adds_keep_both_songs(monkeypatch, store, make_user, make_song):
    owner = make_user("owner")
    mine, theirs = make_song("Mine", duration=200), make_song("Theirs", duration=100)
    playlist_id = playlists.create_playlist(store, owner, {"name": "Mix"}).id

    original = store.replace
    raced = []

    def replace(collection, doc_id, data, expected_version):
        if collection == "playlist" and not raced:
            raced.append(expected_version)
            monkeypatch.setattr(store, "replace", original)
            playlists.add_song_to_playlist(store, playlist_id, theirs, owner)
            monkeypatch.setattr(store, "replace", replace)
        return original(collection, doc_id, data, expected_version)

    monkeypatch.setattr(store, "replace", replace)
    result = playlists.add_song_to_playlist(store, playlist_id, mine, owner)

    stored = playlists.get_playlist(store, playlist_id)
    assert [(e.song_id, e.position) for e in stored.songs] == [(theirs, 1), (mine, 2)]
    assert stored.metadata.total_duration == 300
    assert result.version == stored.version


# Songs and users

def test_update_song_keeps_counters(store, make_song):
    song_id = make_song("Draft", duration=100)
    store.increment("song", song_id, "play_count", 3)

    song = catalog.update_song(store, song_id, {
        "title": "Final", "duration": 180, "album": None, "genre": None, "play_count": 0,
    })

    assert song.title == "Final"
    assert song.duration == 180
    assert song.genre == ["pop"]
    assert song.play_count == 3


def test_toggle_featured_and_listing(store, make_song):
    quiet, loud = make_song("Quiet"), make_song("Loud")
    hidden = make_song("Hidden", status="inactive")
    store.increment("song", loud, "play_count", 5)
    for song_id in (quiet, loud, hidden):
        assert catalog.toggle_featured(store, song_id).featured is True

    assert [s.title for s in catalog.list_featured_songs(store)] == ["Loud", "Quiet"]
    assert catalog.toggle_featured(store, loud).featured is False
    assert [s.title for s in catalog.list_featured_songs(store)] == ["Quiet"]


def test_user_stats_counts_rated_and_liked_songs(store, make_user, make_song):
    user_id = make_user()
    rock = make_song("Rock", genre=("rock",), artist="Alpha")
    pop = make_song("Pop", genre=("pop",), artist="Alpha")
    other = make_song("Other", genre=("rock",), artist="Beta")
    ratings.rate_song(store, user_id, rock, 4)
    ratings.rate_song(store, user_id, pop, 2)
    catalog.like_song(store, user_id, rock)
    catalog.like_song(store, user_id, other)

    stats = catalog.user_stats(store, user_id)

    assert stats["ratings_given"] == 2
    assert stats["average_rating_given"] == pytest.approx(3.0)
    assert stats["liked_songs"] == 2
    assert stats["top_genres"] == [{"genre": "rock", "count": 2}, {"genre": "pop", "count": 1}]
    assert stats["top_artists"] == [{"artist": "Alpha", "count": 2}, {"artist": "Beta", "count": 1}]
