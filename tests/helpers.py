from datetime import datetime, timezone

from schemas import MembershipEntry, Playlist, RatingSummary, Song

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def headers(user_id, role="user"):
    return {"X-User-Id": user_id, "X-User-Role": role}


def song_value(song_id, duration=100, genre=("pop",), language="english", status="active", average=0.0, count=0):
    return Song(
        id=song_id,
        title=song_id,
        artist="Artist",
        duration=duration,
        genre=list(genre),
        language=language,
        status=status,
        ratings=RatingSummary(average=average, count=count),
    )


def playlist_value(*song_ids, owner="owner", privacy="public", collaborators=()):
    return Playlist(
        id="p1",
        name="Mix",
        owner=owner,
        privacy=privacy,
        collaborators=list(collaborators),
        songs=[
            MembershipEntry(song_id=s, added_by=owner, added_at=NOW, position=i)
            for i, s in enumerate(song_ids, start=1)
        ],
    )


def positions(playlist):
    return [(e.song_id, e.position) for e in playlist.songs]
