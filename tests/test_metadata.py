import pytest

from metadata import derive_metadata
from tests.helpers import playlist_value, song_value


def resolver(*songs):
    by_id = {s.id: s for s in songs}
    return by_id.get


def test_aggregates_live_songs():
    songs = resolver(
        song_value("A", duration=120, genre=("pop", "dance"), language="english", average=4.0, count=2),
        song_value("B", duration=180, genre=("rock",), language="hindi", average=2.0, count=1),
    )
    meta = derive_metadata(playlist_value("A", "B").songs, songs)
    assert meta.total_duration == 300
    assert meta.genres == ["dance", "pop", "rock"]
    assert meta.languages == ["english", "hindi"]
    assert meta.average_rating == pytest.approx(3.0)


def test_unrated_songs_excluded_from_average():
    songs = resolver(
        song_value("A", average=5.0, count=1),
        song_value("B"),
    )
    assert derive_metadata(playlist_value("A", "B").songs, songs).average_rating == 5.0


def test_dangling_and_inactive_songs_skipped():
    songs = resolver(
        song_value("A", duration=60),
        song_value("B", duration=90, status="inactive", genre=("jazz",)),
    )
    meta = derive_metadata(playlist_value("A", "B", "gone").songs, songs)
    assert meta.total_duration == 60
    assert meta.genres == ["pop"]


def test_empty_playlist():
    meta = derive_metadata([], resolver())
    assert (meta.total_duration, meta.genres, meta.languages, meta.average_rating) == (0, [], [], 0.0)
