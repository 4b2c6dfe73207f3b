import pytest

from errors import InvalidOperation
from schemas import User
from social import set_follower, toggle_follow_playlist, toggle_follow_user, toggle_like_song
from tests.helpers import NOW, playlist_value


def test_follow_toggle_is_an_involution():
    original = playlist_value(owner="o")
    followed, action = toggle_follow_playlist(original, "fan", NOW)
    assert action == "followed"
    assert [f.user_id for f in followed.followers] == ["fan"]
    restored, action = toggle_follow_playlist(followed, "fan", NOW)
    assert action == "unfollowed"
    assert restored.followers == original.followers


def test_owner_cannot_follow_own_playlist():
    with pytest.raises(InvalidOperation):
        toggle_follow_playlist(playlist_value(owner="o"), "o", NOW)


def test_like_toggle():
    user = User(id="u1", username="listener")
    user, action = toggle_like_song(user, "s1", NOW)
    assert action == "liked"
    user, action = toggle_like_song(user, "s1", NOW)
    assert action == "unliked"
    assert user.liked_songs == []


def test_user_follow_rejects_self():
    with pytest.raises(InvalidOperation):
        toggle_follow_user(User(id="u1", username="listener"), "u1", NOW)


def test_set_follower_is_idempotent():
    user = User(id="u2", username="artist")
    once = set_follower(user, "u1", True, NOW)
    twice = set_follower(once, "u1", True, NOW)
    assert [f.user_id for f in twice.followers] == ["u1"]
    assert set_follower(twice, "u1", False, NOW).followers == []
