"""Song and user records, plus the like and user-follow workflows."""

import logging
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import config
from database import MongoStore, load_document, mutate_document
from errors import InvalidOperation, NotFound
from schemas import Song, User
from social import set_follower, toggle_follow_user, toggle_like_song

logger = logging.getLogger(__name__)

SONG_EDITABLE_FIELDS = ("title", "artist", "album", "duration", "genre", "language", "audio", "cover", "status")
SONG_NULLABLE_FIELDS = ("album", "audio", "cover")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def create_song(store: MongoStore, fields: Dict[str, Any], uploaded_by: Optional[str]) -> Song:
    song = Song(**fields, uploaded_by=uploaded_by, status="active")
    song_id = store.insert("song", song)
    logger.info("Song %s created by %s", song_id, uploaded_by)
    return load_document(store, "song", Song, song_id, "Song")


def get_song(store: MongoStore, song_id: str, include_inactive: bool = False) -> Song:
    song = load_document(store, "song", Song, song_id, "Song")
    if song.status != "active" and not include_inactive:
        raise NotFound("Song not found")
    return song


def list_songs(
    store: MongoStore,
    page: int = 1,
    limit: int = config.DEFAULT_PAGE_SIZE,
    genre: Optional[List[str]] = None,
    language: Optional[str] = None,
    artist: Optional[str] = None,
) -> Tuple[List[Song], int]:
    limit = max(1, min(limit, config.MAX_PAGE_SIZE))
    page = max(page, 1)
    query: Dict[str, Any] = {"status": "active"}
    if genre:
        query["genre"] = {"$in": genre}
    if language:
        query["language"] = language
    if artist:
        query["artist"] = {"$regex": re.escape(artist), "$options": "i"}
    docs = store.find("song", query, sort=[("play_count", -1)], skip=(page - 1) * limit, limit=limit)
    return [Song.model_validate(d) for d in docs], store.count("song", query)


def update_song(store: MongoStore, song_id: str, fields: Dict[str, Any]) -> Song:
    changes = {
        k: v for k, v in fields.items()
        if k in SONG_EDITABLE_FIELDS and (v is not None or k in SONG_NULLABLE_FIELDS)
    }

    def change(song: Song) -> Song:
        return Song.model_validate({**song.model_dump(), **changes})

    song = mutate_document(store, "song", Song, song_id, change, label="Song")
    logger.info("Song %s updated: %s", song_id, ", ".join(sorted(changes)) or "no changes")
    return song


def toggle_featured(store: MongoStore, song_id: str) -> Song:
    return mutate_document(
        store, "song", Song, song_id,
        lambda s: s.model_copy(update={"featured": not s.featured}),
        label="Song",
    )


def list_featured_songs(store: MongoStore, limit: int = config.DEFAULT_PAGE_SIZE) -> List[Song]:
    limit = max(1, min(limit, config.MAX_PAGE_SIZE))
    docs = store.find("song", {"status": "active", "featured": True}, sort=[("play_count", -1)], limit=limit)
    return [Song.model_validate(d) for d in docs]


def deactivate_song(store: MongoStore, song_id: str) -> Song:
    """Soft delete; playlists keep the reference and skip it when aggregating."""
    return mutate_document(
        store, "song", Song, song_id,
        lambda s: s.model_copy(update={"status": "inactive"}),
        label="Song",
    )


def play_song(store: MongoStore, song_id: str) -> int:
    get_song(store, song_id)
    doc = store.increment("song", song_id, "play_count", 1)
    if doc is None:
        raise NotFound("Song not found")
    return doc["play_count"]


def create_user(store: MongoStore, username: str, role: str = "user") -> User:
    if store.count("user", {"username": username}):
        raise InvalidOperation("Username already taken")
    user_id = store.insert("user", User(username=username, role=role))
    return load_document(store, "user", User, user_id, "User")


def like_song(store: MongoStore, user_id: str, song_id: str) -> Tuple[str, int]:
    get_song(store, song_id)
    result = {}

    def toggle(user: User) -> User:
        updated, result["action"] = toggle_like_song(user, song_id, _now())
        return updated

    mutate_document(store, "user", User, user_id, toggle, label="User")
    delta = 1 if result["action"] == "liked" else -1
    doc = store.increment("song", song_id, "like_count", delta)
    return result["action"], doc["like_count"] if doc else 0


def follow_user(store: MongoStore, user_id: str, target_id: str) -> str:
    if user_id == target_id:
        raise InvalidOperation("Cannot follow yourself")
    load_document(store, "user", User, target_id, "User")
    result = {}

    def toggle(user: User) -> User:
        updated, result["action"] = toggle_follow_user(user, target_id, _now())
        return updated

    mutate_document(store, "user", User, user_id, toggle, label="User")
    following = result["action"] == "followed"
    mutate_document(
        store, "user", User, target_id,
        lambda target: set_follower(target, user_id, following, _now()),
        label="User",
    )
    return result["action"]


def user_stats(store: MongoStore, user_id: str) -> Dict[str, Any]:
    """Counters plus the genres and artists a user rates and likes most."""
    user = load_document(store, "user", User, user_id, "User")
    song_ids = {e.song_id for e in user.ratings} | {e.song_id for e in user.liked_songs}
    songs = {d["id"]: Song.model_validate(d) for d in store.find_many("song", song_ids)}

    genres: Counter = Counter()
    artists: Counter = Counter()
    for song_id in song_ids:
        song = songs.get(song_id)
        if song is None:
            continue
        genres.update(song.genre)
        artists[song.artist] += 1

    stars = [e.rating for e in user.ratings]
    return {
        "ratings_given": user.ratings_given,
        "average_rating_given": sum(stars) / len(stars) if stars else 0.0,
        "liked_songs": len(user.liked_songs),
        "followers": len(user.followers),
        "following": len(user.following),
        "playlists_created": user.playlists_created,
        "top_genres": [{"genre": g, "count": c} for g, c in genres.most_common(5)],
        "top_artists": [{"artist": a, "count": c} for a, c in artists.most_common(5)],
    }
