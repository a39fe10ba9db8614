import pytest

from conftest import make_user_with_scores
from errors import InvalidInputError, NotFoundError
from records import (
    MAX_STORED_INT, LeaderboardEntry, assign_ranks, hypothetical_rank, leaderboard, non_negative_int,
    rank_for_score, record_game_completion
)


def seed_bests(store):
    make_user_with_scores(store, "alice", 500)
    make_user_with_scores(store, "bob", 200, 500)
    make_user_with_scores(store, "carol", 300)
    make_user_with_scores(store, "dave", 100)


@pytest.mark.parametrize("total, expected_rank", [(500, 1), (301, 3), (50, 5)])
def test_new_user_rank_against_existing_bests(store, total, expected_rank):
    seed_bests(store)
    newcomer = store.add_user("erin").id

    outcome = record_game_completion(store, newcomer, total, 5)

    assert outcome.rank == expected_rank
    assert outcome.is_new_record is True
    assert outcome.previous_best == 0


def test_first_game_scoring_zero_is_not_a_record(store):
    user = store.add_user("zero").id

    outcome = record_game_completion(store, user, 0, 5)

    assert outcome.is_new_record is False
    assert outcome.previous_best == 0
    # history is kept anyway
    assert store.best_score_for_user(user) == 0


def test_first_game_scoring_one_is_a_record(store):
    user = store.add_user("one").id

    assert record_game_completion(store, user, 1, 5).is_new_record is True


def test_record_compares_against_prior_games_only(store):
    user = make_user_with_scores(store, "alice", 300)

    tie = record_game_completion(store, user, 300, 5)
    better = record_game_completion(store, user, 301, 5)

    assert tie.is_new_record is False
    assert tie.previous_best == 300
    assert better.is_new_record is True
    assert better.previous_best == 300


def test_rank_ignores_own_previous_best(store):
    alice = make_user_with_scores(store, "alice", 500)
    make_user_with_scores(store, "bob", 300)

    outcome = record_game_completion(store, alice, 100, 5)

    assert outcome.rank == 2
    assert outcome.is_new_record is False
    assert outcome.previous_best == 500


def test_guest_is_neither_stored_nor_ranked(store):
    outcome = record_game_completion(store, None, 240, 5)

    assert outcome.to_dict() == {"score": 240}
    assert store.best_score_per_user() == []


def test_unknown_user_is_not_found(store):
    with pytest.raises(NotFoundError):
        record_game_completion(store, 99, 100, 5)
    assert store.best_score_per_user() == []


@pytest.mark.parametrize("total", [-1, 1.5, "abc", None, float("nan"), 501, 10 ** 20, 10 ** 400])
def test_bad_totals_are_rejected(store, total):
    user = store.add_user("alice").id

    with pytest.raises(InvalidInputError):
        record_game_completion(store, user, total, 5)
    assert store.best_score_for_user(user) is None


def test_leaderboard_uses_each_users_best(store):
    make_user_with_scores(store, "alice", 100, 500)
    make_user_with_scores(store, "bob", 500)
    make_user_with_scores(store, "carol", 300, 250)

    board = leaderboard(store)

    assert [(e.rank, e.name, e.score) for e in board] == [
        (1, "alice", 500),
        (1, "bob", 500),
        (3, "carol", 300),
    ]
    assert board[0].to_dict() == {"rank": 1, "name": "alice", "score": 500}


def test_leaderboard_limit(store):
    for i, score in enumerate([50, 40, 30, 20]):
        make_user_with_scores(store, f"user{i}", score)

    board = leaderboard(store, limit=2)

    assert [e.score for e in board] == [50, 40]


def test_leaderboard_rejects_bad_limit(store):
    with pytest.raises(InvalidInputError):
        leaderboard(store, limit=0)


def test_assign_ranks_shares_ties():
    assert assign_ranks([500, 500, 300]) == [1, 1, 3]
    assert assign_ranks([9, 8, 8, 8, 1]) == [1, 2, 2, 2, 5]
    assert assign_ranks([]) == []


def test_rank_for_score_is_strict():
    bests = [(1, 500), (2, 500), (3, 300), (4, 100)]

    assert rank_for_score(bests, 500) == 1
    assert rank_for_score(bests, 301) == 3
    assert rank_for_score(bests, 50) == 5
    assert rank_for_score(bests, 50, exclude_user_id=1) == 4


@pytest.mark.parametrize("score, expected", [(300, 2), (600, 1), (5, 4), (100, 3)])
def test_hypothetical_rank(score, expected):
    board = [{"score": 500}, {"score": 300}, {"score": 100}]

    assert hypothetical_rank(board, score) == expected


def test_hypothetical_rank_on_entries():
    board = [LeaderboardEntry(rank=1, name="a", score=10)]

    assert hypothetical_rank(board, "10") == 1
    assert hypothetical_rank([], 0) == 1


def test_hypothetical_rank_rejects_non_finite():
    with pytest.raises(InvalidInputError):
        hypothetical_rank([], float("inf"))


def test_huge_numbers_are_rejected_not_crashing():
    huge = 10 ** 400

    with pytest.raises(InvalidInputError):
        non_negative_int("user_id", huge)
    with pytest.raises(InvalidInputError):
        non_negative_int("user_id", str(huge))
    with pytest.raises(InvalidInputError):
        hypothetical_rank([], huge)


def test_ids_must_fit_the_integer_columns(store):
    assert non_negative_int("user_id", MAX_STORED_INT) == MAX_STORED_INT
    with pytest.raises(InvalidInputError):
        non_negative_int("user_id", MAX_STORED_INT + 1)
    with pytest.raises(InvalidInputError):
        record_game_completion(store, 2 ** 63, 100, 5)


def test_leaderboard_looks_up_names_in_one_query(store, monkeypatch):
    seed_bests(store)

    def one_by_one(user_id):
        raise AssertionError("display names should be fetched together")
    monkeypatch.setattr(store, "user_display_name", one_by_one)

    board = leaderboard(store)

    assert [e.name for e in board] == ["alice", "bob", "carol", "dave"]
