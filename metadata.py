"""
Derived playlist metadata.

Membership entries are weak references: a song that is missing or not active
is skipped, never treated as an error and never removed from the playlist.
"""

from typing import Callable, Dict, Iterable, Optional

from database import MongoStore
from schemas import MembershipEntry, Playlist, PlaylistMetadata, Song

Resolver = Callable[[str], Optional[Song]]


def live_song(resolve: Resolver, song_id: str) -> Optional[Song]:
    song = resolve(song_id)
    if song is None or song.status != "active":
        return None
    return song


def derive_metadata(entries: Iterable[MembershipEntry], resolve: Resolver) -> PlaylistMetadata:
    total = 0
    genres = set()
    languages = set()
    averages = []
    for entry in entries:
        song = live_song(resolve, entry.song_id)
        if song is None:
            continue
        total += song.duration
        genres.update(song.genre)
        languages.add(song.language)
        # unrated songs do not pull the average toward zero
        if song.ratings.count > 0:
            averages.append(song.ratings.average)
    return PlaylistMetadata(
        total_duration=total,
        genres=sorted(genres),
        languages=sorted(languages),
        average_rating=sum(averages) / len(averages) if averages else 0.0,
    )


def song_resolver(store: MongoStore, song_ids: Iterable[str]) -> Resolver:
    """Fetch the songs in one query and resolve ids against that snapshot."""
    songs: Dict[str, Song] = {
        doc["id"]: Song.model_validate(doc) for doc in store.find_many("song", list(song_ids))
    }
    return songs.get


def with_metadata(store: MongoStore, playlist: Playlist) -> Playlist:
    resolve = song_resolver(store, [e.song_id for e in playlist.songs])
    return playlist.model_copy(update={"metadata": derive_metadata(playlist.songs, resolve)})
