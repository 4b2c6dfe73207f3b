"""
Toggle relations: playlist follows, user follows, song likes.

Each toggle removes the relation when present and creates it (timestamped)
otherwise, so applying it twice restores the original state. Callers that
retry after a failure must re-read the current state instead of re-sending.
"""

from datetime import datetime
from typing import List, Tuple

from errors import InvalidOperation
from schemas import Follower, LikedSong, Playlist, User, UserLink


def _toggle(entries: List, key: str, target: str, make) -> Tuple[List, bool]:
    kept = [e for e in entries if getattr(e, key) != target]
    if len(kept) != len(entries):
        return kept, False
    return kept + [make()], True


def toggle_follow_playlist(playlist: Playlist, user_id: str, now: datetime) -> Tuple[Playlist, str]:
    if user_id == playlist.owner:
        raise InvalidOperation("Cannot follow your own playlist")
    followers, added = _toggle(
        playlist.followers, "user_id", user_id,
        lambda: Follower(user_id=user_id, followed_at=now),
    )
    return playlist.model_copy(update={"followers": followers}), "followed" if added else "unfollowed"


def is_following_playlist(playlist: Playlist, user_id: str) -> bool:
    return any(f.user_id == user_id for f in playlist.followers)


def toggle_follow_user(user: User, target_id: str, now: datetime) -> Tuple[User, str]:
    if user.id == target_id:
        raise InvalidOperation("Cannot follow yourself")
    following, added = _toggle(
        user.following, "user_id", target_id,
        lambda: UserLink(user_id=target_id, followed_at=now),
    )
    return user.model_copy(update={"following": following}), "followed" if added else "unfollowed"


def set_follower(user: User, follower_id: str, present: bool, now: datetime) -> User:
    """Mirror side of a user follow; idempotent for either value of ``present``."""
    followers = [f for f in user.followers if f.user_id != follower_id]
    if present:
        existing = [f for f in user.followers if f.user_id == follower_id]
        followers.append(existing[0] if existing else UserLink(user_id=follower_id, followed_at=now))
    return user.model_copy(update={"followers": followers})


def toggle_like_song(user: User, song_id: str, now: datetime) -> Tuple[User, str]:
    liked, added = _toggle(
        user.liked_songs, "song_id", song_id,
        lambda: LikedSong(song_id=song_id, liked_at=now),
    )
    return user.model_copy(update={"liked_songs": liked}), "liked" if added else "unliked"
