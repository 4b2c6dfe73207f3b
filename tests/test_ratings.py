import random

import pytest

from errors import InvalidOperation, InvalidState, NotFound
from ratings import (
    add_rating,
    average_from_distribution,
    drop_user_rating,
    is_consistent,
    record_user_rating,
    remove_rating,
    summary_from_stars,
    update_rating,
)
from schemas import RatingSummary, User
from tests.helpers import NOW


def test_two_raters_then_one_changes_their_mind():
    r = RatingSummary()
    r = add_rating(r, 4)
    assert (r.average, r.count) == (4, 1)
    r = add_rating(r, 2)
    assert (r.average, r.count) == (3, 2)
    r = update_rating(r, 4, 5)
    assert r.average == pytest.approx(3.5)
    assert r.count == 2
    assert r.distribution == {"1": 0, "2": 1, "3": 0, "4": 0, "5": 1}


def test_functions_do_not_mutate_input():
    r = add_rating(RatingSummary(), 3)
    add_rating(r, 5)
    assert r.count == 1
    assert r.distribution["5"] == 0


def test_update_rating_from_empty_bucket_is_invalid_state():
    r = add_rating(RatingSummary(), 2)
    with pytest.raises(InvalidState):
        update_rating(r, 4, 5)


def test_remove_last_rating_resets_average():
    r = remove_rating(add_rating(RatingSummary(), 5), 5)
    assert (r.average, r.count) == (0, 0)
    assert is_consistent(r)


def test_remove_rating_recomputes_from_distribution():
    r = RatingSummary()
    for star in (1, 5, 5):
        r = add_rating(r, star)
    r = remove_rating(r, 1)
    assert r.average == 5
    assert r.count == 2


def test_remove_from_empty_bucket_is_invalid_state():
    with pytest.raises(InvalidState):
        remove_rating(RatingSummary(), 3)


@pytest.mark.parametrize("star", [0, 6, -1, 2.5, True, "3"])
def test_star_must_be_one_to_five(star):
    with pytest.raises(InvalidOperation):
        add_rating(RatingSummary(), star)


def test_aggregate_stays_consistent_over_random_sequence():
    rng = random.Random(7)
    live = {}
    r = RatingSummary()
    for _ in range(500):
        user = rng.randrange(20)
        star = rng.randint(1, 5)
        if user in live and rng.random() < 0.3:
            r = remove_rating(r, live.pop(user))
        elif user in live:
            r = update_rating(r, live[user], star)
            live[user] = star
        else:
            r = add_rating(r, star)
            live[user] = star
        assert is_consistent(r, tolerance=1e-9)
    rebuilt = summary_from_stars(list(live.values()))
    assert rebuilt.distribution == r.distribution
    assert rebuilt.average == pytest.approx(r.average)


def test_average_from_empty_distribution_is_zero():
    assert average_from_distribution({}) == 0.0


def test_is_consistent_flags_count_mismatch():
    assert not is_consistent(RatingSummary(average=0, count=1))


def test_user_rating_is_updated_not_duplicated():
    user = User(id="u1", username="listener")
    user, previous = record_user_rating(user, "s1", 4, NOW)
    assert previous is None
    user, previous = record_user_rating(user, "s1", 2, NOW)
    assert previous == 4
    assert [(e.song_id, e.rating) for e in user.ratings] == [("s1", 2)]
    assert user.ratings_given == 1


def test_drop_user_rating():
    user, _ = record_user_rating(User(id="u1", username="listener"), "s1", 3, NOW)
    user, previous = drop_user_rating(user, "s1")
    assert previous == 3
    assert user.ratings == []
    assert user.ratings_given == 0
    with pytest.raises(NotFound):
        drop_user_rating(user, "s1")
