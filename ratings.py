"""
Song rating aggregates.

A song stores ``{average, count, distribution}``; users store one entry per
rated song. The functions at the top are pure and return new values. The
``rate_song`` / ``unrate_song`` workflows at the bottom apply them to both
documents through version-checked writes.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

import config
from database import MongoStore, load_document, mutate_document
from errors import CatalogError, InvalidOperation, InvalidState, NotFound
from schemas import STARS, RatingSummary, Song, User, UserRating, empty_distribution

logger = logging.getLogger(__name__)


def check_star(star: int) -> int:
    if isinstance(star, bool) or not isinstance(star, int) or star not in STARS:
        raise InvalidOperation("Rating must be an integer between 1 and 5")
    return star


def average_from_distribution(distribution: Dict[str, int]) -> float:
    count = sum(distribution.get(str(s), 0) for s in STARS)
    if count == 0:
        return 0.0
    return sum(s * distribution.get(str(s), 0) for s in STARS) / count


def add_rating(ratings: RatingSummary, star: int) -> RatingSummary:
    check_star(star)
    distribution = dict(ratings.distribution)
    distribution[str(star)] = distribution.get(str(star), 0) + 1
    count = ratings.count + 1
    average = (ratings.average * ratings.count + star) / count
    return RatingSummary(average=average, count=count, distribution=distribution)


def update_rating(ratings: RatingSummary, old_star: int, new_star: int) -> RatingSummary:
    check_star(old_star)
    check_star(new_star)
    distribution = dict(ratings.distribution)
    if distribution.get(str(old_star), 0) <= 0:
        raise InvalidState(f"No {old_star}-star rating to move")
    distribution[str(old_star)] -= 1
    distribution[str(new_star)] = distribution.get(str(new_star), 0) + 1
    return RatingSummary(
        average=average_from_distribution(distribution),
        count=ratings.count,
        distribution=distribution,
    )


def remove_rating(ratings: RatingSummary, star: int) -> RatingSummary:
    check_star(star)
    distribution = dict(ratings.distribution)
    if distribution.get(str(star), 0) <= 0 or ratings.count <= 0:
        raise InvalidState(f"No {star}-star rating to remove")
    distribution[str(star)] -= 1
    return RatingSummary(
        average=average_from_distribution(distribution),
        count=ratings.count - 1,
        distribution=distribution,
    )


def summary_from_stars(stars: List[int]) -> RatingSummary:
    distribution = empty_distribution()
    for star in stars:
        distribution[str(check_star(star))] += 1
    return RatingSummary(
        average=average_from_distribution(distribution),
        count=len(stars),
        distribution=distribution,
    )


def is_consistent(ratings: RatingSummary, tolerance: float = 1e-9) -> bool:
    """Audit: count matches the buckets and average matches the distribution."""
    if any(v < 0 for v in ratings.distribution.values()):
        return False
    if ratings.count != sum(ratings.distribution.get(str(s), 0) for s in STARS):
        return False
    return abs(ratings.average - average_from_distribution(ratings.distribution)) <= tolerance


# User side

def find_user_rating(user: User, song_id: str) -> Optional[UserRating]:
    for entry in user.ratings:
        if entry.song_id == song_id:
            return entry
    return None


def record_user_rating(user: User, song_id: str, star: int, now: datetime) -> Tuple[User, Optional[int]]:
    """Set the user's rating for a song. Returns the new user and the previous star, if any."""
    check_star(star)
    previous = find_user_rating(user, song_id)
    entries = [e for e in user.ratings if e.song_id != song_id]
    entries.append(UserRating(song_id=song_id, rating=star, rated_at=now))
    given = user.ratings_given if previous else user.ratings_given + 1
    updated = user.model_copy(update={"ratings": entries, "ratings_given": given})
    return updated, previous.rating if previous else None


def drop_user_rating(user: User, song_id: str) -> Tuple[User, int]:
    previous = find_user_rating(user, song_id)
    if previous is None:
        raise NotFound("Rating not found")
    entries = [e for e in user.ratings if e.song_id != song_id]
    updated = user.model_copy(update={
        "ratings": entries,
        "ratings_given": max(user.ratings_given - 1, 0),
    })
    return updated, previous.rating


def restore_user_rating(user: User, song_id: str, entry: Optional[UserRating]) -> User:
    entries = [e for e in user.ratings if e.song_id != song_id]
    if entry is not None:
        entries.append(entry)
    had = find_user_rating(user, song_id) is not None
    given = user.ratings_given - int(had) + int(entry is not None)
    return user.model_copy(update={"ratings": entries, "ratings_given": max(given, 0)})


# Workflows

def _adjust_song(store: MongoStore, song_id: str, change) -> Song:
    return mutate_document(
        store, "song", Song, song_id,
        lambda song: song.model_copy(update={"ratings": change(song.ratings)}),
        label="Song",
    )


def _compensate(store: MongoStore, user_id: str, song_id: str, entry: Optional[UserRating]):
    try:
        mutate_document(
            store, "user", User, user_id,
            lambda user: restore_user_rating(user, song_id, entry),
            label="User",
        )
    except (CatalogError, PyMongoError):
        logger.error("Could not restore rating of user %s for song %s; recompute the song aggregate", user_id, song_id)
        raise


def rate_song(store: MongoStore, user_id: str, song_id: str, star: int) -> Tuple[Song, Optional[int]]:
    """
    Add or change the acting user's rating. Returns the updated song and the
    star the user had given before (None for a first rating).

    The user document is written first; its version check serialises one
    user's rating changes and yields the previous value the song aggregate
    must move away from.
    """
    check_star(star)
    song = load_document(store, "song", Song, song_id, "Song")
    if song.status != "active":
        raise InvalidOperation("Song is not available for rating")

    before: Dict[str, Optional[UserRating]] = {}

    def record(user: User) -> User:
        before["entry"] = find_user_rating(user, song_id)
        updated, _ = record_user_rating(user, song_id, star, datetime.now(timezone.utc))
        return updated

    mutate_document(store, "user", User, user_id, record, label="User")
    entry = before.get("entry")
    previous = entry.rating if entry else None

    try:
        if previous is None:
            song = _adjust_song(store, song_id, lambda r: add_rating(r, star))
        elif previous != star:
            song = _adjust_song(store, song_id, lambda r: update_rating(r, previous, star))
        else:
            song = load_document(store, "song", Song, song_id, "Song")
    except (CatalogError, PyMongoError):
        logger.error("Song %s rating write failed, restoring rating of user %s", song_id, user_id)
        _compensate(store, user_id, song_id, entry)
        raise
    return song, previous


def unrate_song(store: MongoStore, user_id: str, song_id: str) -> Song:
    load_document(store, "song", Song, song_id, "Song")
    before: Dict[str, UserRating] = {}

    def drop(user: User) -> User:
        before["entry"] = find_user_rating(user, song_id)
        updated, _ = drop_user_rating(user, song_id)
        return updated

    mutate_document(store, "user", User, user_id, drop, label="User")
    entry = before["entry"]
    try:
        return _adjust_song(store, song_id, lambda r: remove_rating(r, entry.rating))
    except (CatalogError, PyMongoError):
        logger.error("Song %s rating removal failed, restoring rating of user %s", song_id, user_id)
        _compensate(store, user_id, song_id, entry)
        raise


def recompute_song_ratings(store: MongoStore, song_id: str) -> Tuple[Song, bool]:
    """Rebuild a song's aggregate from user rating entries. Returns (song, drifted)."""
    stars = []
    for doc in store.find("user", {"ratings.song_id": song_id}):
        entry = find_user_rating(User.model_validate(doc), song_id)
        if entry is not None:
            stars.append(entry.rating)
    rebuilt = summary_from_stars(stars)
    drift = {}

    def rebuild(song: Song) -> Song:
        drift["value"] = song.ratings.model_dump() != rebuilt.model_dump()
        return song.model_copy(update={"ratings": rebuilt})

    song = mutate_document(store, "song", Song, song_id, rebuild, label="Song")
    if drift["value"]:
        logger.warning("Rating aggregate of song %s had drifted and was rebuilt", song_id)
    return song, drift["value"]


def top_rated(store: MongoStore, limit: int = config.DEFAULT_PAGE_SIZE, min_ratings: int = 1) -> List[Song]:
    docs = store.find(
        "song",
        {"status": "active", "ratings.count": {"$gte": min_ratings}},
        sort=[("ratings.average", -1), ("ratings.count", -1)],
        limit=min(limit, config.MAX_PAGE_SIZE),
    )
    return [Song.model_validate(d) for d in docs]


def recent_ratings(store: MongoStore, limit: int = config.DEFAULT_PAGE_SIZE) -> List[Dict]:
    """Newest user ratings across the catalog, joined with their songs. Ratings of missing songs are skipped."""
    limit = max(1, min(limit, config.MAX_PAGE_SIZE))
    entries = []
    for doc in store.find("user", {"ratings_given": {"$gt": 0}}):
        user = User.model_validate(doc)
        entries.extend((user, entry) for entry in user.ratings)
    entries.sort(key=lambda pair: pair[1].rated_at, reverse=True)

    songs = {
        d["id"]: Song.model_validate(d)
        for d in store.find_many("song", {entry.song_id for _, entry in entries})
    }
    recent = []
    for user, entry in entries:
        song = songs.get(entry.song_id)
        if song is None:
            continue
        recent.append({
            "user": {"id": user.id, "username": user.username},
            "song": song,
            "rating": entry.rating,
            "rated_at": entry.rated_at,
        })
        if len(recent) == limit:
            break
    return recent
