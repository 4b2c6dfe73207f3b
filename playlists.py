"""
Playlist membership and playlist workflows.

Membership positions are always the contiguous sequence 1..N in list order.
The pure operations (add_song, remove_song, reorder_song, collaborators)
return new Playlist values; the workflows below check permissions, apply them
and recompute metadata inside one version-checked write.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import config
from database import MongoStore, load_document, mutate_document
from errors import DuplicateMember, InvalidOperation, InvalidPosition, NotFound
from metadata import derive_metadata, live_song, song_resolver, with_metadata
from permissions import has_permission, require_permission
from schemas import Collaborator, MembershipEntry, Playlist, Song, User
from social import toggle_follow_playlist

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "description", "privacy", "category", "tags", "cover")
NULLABLE_FIELDS = ("description", "cover")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def renumber(entries: List[MembershipEntry]) -> List[MembershipEntry]:
    return [e.model_copy(update={"position": i}) for i, e in enumerate(entries, start=1)]


def _index_of(playlist: Playlist, song_id: str) -> int:
    for i, entry in enumerate(playlist.songs):
        if entry.song_id == song_id:
            return i
    raise NotFound("Song not found in playlist")


def contains(playlist: Playlist, song_id: str) -> bool:
    return any(e.song_id == song_id for e in playlist.songs)


def add_song(playlist: Playlist, song_id: str, acting_user_id: Optional[str], now: datetime) -> Playlist:
    if contains(playlist, song_id):
        raise DuplicateMember("Song already in playlist")
    entry = MembershipEntry(
        song_id=song_id,
        added_by=acting_user_id,
        added_at=now,
        position=len(playlist.songs) + 1,
    )
    return playlist.model_copy(update={"songs": playlist.songs + [entry]})


def remove_song(playlist: Playlist, song_id: str) -> Playlist:
    index = _index_of(playlist, song_id)
    songs = playlist.songs[:index] + playlist.songs[index + 1:]
    return playlist.model_copy(update={"songs": renumber(songs)})


def reorder_song(playlist: Playlist, song_id: str, new_position: int) -> Playlist:
    index = _index_of(playlist, song_id)
    if isinstance(new_position, bool) or not isinstance(new_position, int) \
            or new_position < 1 or new_position > len(playlist.songs):
        raise InvalidPosition(f"Position must be between 1 and {len(playlist.songs)}")
    songs = list(playlist.songs)
    moved = songs.pop(index)
    songs.insert(new_position - 1, moved)
    return playlist.model_copy(update={"songs": renumber(songs)})


def set_collaborator(playlist: Playlist, user_id: str, permission: str, now: datetime) -> Playlist:
    if user_id == playlist.owner:
        raise InvalidOperation("The owner cannot be a collaborator")
    collaborators = []
    granted = False
    for c in playlist.collaborators:
        if c.user_id == user_id:
            c = c.model_copy(update={"permission": permission})
            granted = True
        collaborators.append(c)
    if not granted:
        collaborators.append(Collaborator(user_id=user_id, permission=permission, added_at=now))
    return playlist.model_copy(update={"collaborators": collaborators})


def remove_collaborator(playlist: Playlist, user_id: str) -> Playlist:
    collaborators = [c for c in playlist.collaborators if c.user_id != user_id]
    if len(collaborators) == len(playlist.collaborators):
        raise NotFound("Collaborator not found")
    return playlist.model_copy(update={"collaborators": collaborators})


# Workflows

def _visible(playlist: Playlist) -> Playlist:
    if playlist.status == "deleted":
        raise NotFound("Playlist not found")
    return playlist


def _writable(playlist: Playlist) -> Playlist:
    _visible(playlist)
    if playlist.status != "active":
        raise InvalidOperation(f"Playlist is {playlist.status}")
    return playlist


def get_playlist(store: MongoStore, playlist_id: str) -> Playlist:
    return _visible(load_document(store, "playlist", Playlist, playlist_id, "Playlist"))


def _mutate(store: MongoStore, playlist_id: str, user_id: Optional[str], level: str, change) -> Playlist:
    def apply(playlist: Playlist) -> Playlist:
        _writable(playlist)
        require_permission(playlist, user_id, level)
        return change(playlist)

    return mutate_document(store, "playlist", Playlist, playlist_id, apply, label="Playlist")


def create_playlist(store: MongoStore, owner_id: str, fields: Dict[str, Any]) -> Playlist:
    load_document(store, "user", User, owner_id, "User")
    playlist = Playlist(**fields, owner=owner_id)
    playlist_id = store.insert("playlist", playlist)
    store.increment("user", owner_id, "playlists_created", 1)
    return get_playlist(store, playlist_id)


def update_playlist(store: MongoStore, playlist_id: str, user_id: str, fields: Dict[str, Any]) -> Playlist:
    changes = {
        k: v for k, v in fields.items()
        if k in EDITABLE_FIELDS and (v is not None or k in NULLABLE_FIELDS)
    }

    def change(playlist: Playlist) -> Playlist:
        return Playlist.model_validate({**playlist.model_dump(), **changes})

    return _mutate(store, playlist_id, user_id, "edit", change)


def delete_playlist(store: MongoStore, playlist_id: str, user_id: str) -> Playlist:
    playlist = _mutate(
        store, playlist_id, user_id, "admin",
        lambda p: p.model_copy(update={"status": "deleted"}),
    )
    store.increment("user", playlist.owner, "playlists_created", -1)
    return playlist


def add_song_to_playlist(store: MongoStore, playlist_id: str, song_id: str, user_id: str) -> Playlist:
    song = load_document(store, "song", Song, song_id, "Song")
    if song.status != "active":
        raise InvalidOperation("Song is not available")
    return _mutate(
        store, playlist_id, user_id, "edit",
        lambda p: with_metadata(store, add_song(p, song_id, user_id, _now())),
    )


def remove_song_from_playlist(store: MongoStore, playlist_id: str, song_id: str, user_id: str) -> Playlist:
    return _mutate(
        store, playlist_id, user_id, "edit",
        lambda p: with_metadata(store, remove_song(p, song_id)),
    )


def move_song(store: MongoStore, playlist_id: str, song_id: str, position: int, user_id: str) -> Playlist:
    return _mutate(
        store, playlist_id, user_id, "edit",
        lambda p: with_metadata(store, reorder_song(p, song_id, position)),
    )


def grant_collaborator(store: MongoStore, playlist_id: str, target_id: str, permission: str, user_id: str) -> Playlist:
    load_document(store, "user", User, target_id, "User")
    return _mutate(
        store, playlist_id, user_id, "admin",
        lambda p: set_collaborator(p, target_id, permission, _now()),
    )


def revoke_collaborator(store: MongoStore, playlist_id: str, target_id: str, user_id: str) -> Playlist:
    return _mutate(
        store, playlist_id, user_id, "admin",
        lambda p: remove_collaborator(p, target_id),
    )


def follow_playlist(store: MongoStore, playlist_id: str, user_id: str) -> Tuple[Playlist, str]:
    result = {}

    # view access is enough, archived playlists included
    def apply(playlist: Playlist) -> Playlist:
        _visible(playlist)
        require_permission(playlist, user_id, "view")
        updated, result["action"] = toggle_follow_playlist(playlist, user_id, _now())
        return updated

    playlist = mutate_document(store, "playlist", Playlist, playlist_id, apply, label="Playlist")
    return playlist, result["action"]


def play_playlist(store: MongoStore, playlist_id: str, user_id: Optional[str]) -> int:
    playlist = get_playlist(store, playlist_id)
    require_permission(playlist, user_id, "view")
    doc = store.increment("playlist", playlist_id, "play_count", 1)
    if doc is None:
        raise NotFound("Playlist not found")
    return doc["play_count"]


def read_playlist(store: MongoStore, playlist_id: str, user_id: Optional[str]) -> Tuple[Playlist, List[Dict[str, Any]]]:
    """
    Load a playlist for display. Returns the playlist with fresh metadata and
    its membership joined with the live songs; dangling or inactive songs are
    left out of the joined list but kept in the document.
    """
    playlist = get_playlist(store, playlist_id)
    require_permission(playlist, user_id, "view")

    resolve = song_resolver(store, [e.song_id for e in playlist.songs])
    fresh = playlist.model_copy(update={"metadata": derive_metadata(playlist.songs, resolve)})
    if fresh.metadata != playlist.metadata:
        fresh = _heal_metadata(store, playlist_id, fresh)

    tracks = []
    for entry in playlist.songs:
        song = live_song(resolve, entry.song_id)
        if song is not None:
            tracks.append({"entry": entry, "song": song})
    return fresh, tracks


def _heal_metadata(store: MongoStore, playlist_id: str, fresh: Playlist) -> Playlist:
    logger.info("Refreshing stale metadata of playlist %s", playlist_id)
    if store.replace("playlist", playlist_id, fresh, fresh.version):
        return fresh.model_copy(update={"version": fresh.version + 1})
    # a concurrent membership write already stored metadata of its own
    logger.debug("Metadata refresh of playlist %s lost a version race", playlist_id)
    return fresh


def list_public(store: MongoStore, page: int = 1, limit: int = config.DEFAULT_PAGE_SIZE,
                category: Optional[str] = None) -> Tuple[List[Playlist], int]:
    limit = max(1, min(limit, config.MAX_PAGE_SIZE))
    page = max(page, 1)
    query: Dict[str, Any] = {"status": "active", "privacy": "public"}
    if category:
        query["category"] = category
    docs = store.find("playlist", query, sort=[("play_count", -1)], skip=(page - 1) * limit, limit=limit)
    return [Playlist.model_validate(d) for d in docs], store.count("playlist", query)


def list_for_user(store: MongoStore, user_id: str, viewer_id: Optional[str]) -> List[Playlist]:
    query = {
        "status": "active",
        "$or": [{"owner": user_id}, {"collaborators.user_id": user_id}],
    }
    docs = store.find("playlist", query, sort=[("updated_at", -1)])
    playlists = [Playlist.model_validate(d) for d in docs]
    return [p for p in playlists if has_permission(p, viewer_id, "view")]


def list_featured(store: MongoStore, limit: int = config.DEFAULT_PAGE_SIZE) -> List[Playlist]:
    limit = max(1, min(limit, config.MAX_PAGE_SIZE))
    docs = store.find(
        "playlist", {"status": "active", "privacy": "public"},
        sort=[("play_count", -1), ("updated_at", -1)], limit=limit,
    )
    return [Playlist.model_validate(d) for d in docs]
