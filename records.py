"""
Personal records, ranks and the leaderboard.

Everything here works on the per-user best totals returned by
``Store.best_score_per_user()``. A rank is always 1 + the number of users
whose best is strictly higher, so tied users share the better rank.
"""
import math
from dataclasses import dataclass, asdict
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from errors import InvalidInputError
from logger import setup_logger
from scoring import MAX_SCORE

logger = setup_logger(__name__)

DEFAULT_LEADERBOARD_LIMIT = 10
MAX_STORED_INT = 2 ** 63 - 1


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    name: str
    score: int
    user_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {"rank": self.rank, "name": self.name, "score": self.score}


@dataclass(frozen=True)
class RecordOutcome:
    score: int
    rank: Optional[int] = None
    is_new_record: Optional[bool] = None
    previous_best: Optional[int] = None

    def to_dict(self) -> dict:
        # guests only get their score back
        return {k: v for k, v in asdict(self).items() if v is not None}


# -----------------------------
# Helpers
# -----------------------------
def non_negative_int(field: str, value) -> int:
    if value is None or isinstance(value, bool):
        raise InvalidInputError(field, "value is required")
    if isinstance(value, int):
        number = value
    else:
        try:
            as_float = float(value)
        except (TypeError, ValueError, OverflowError):
            raise InvalidInputError(field, f"{value!r} is not a number")
        if not math.isfinite(as_float) or not as_float.is_integer():
            raise InvalidInputError(field, f"{value!r} is not a non-negative integer")
        number = int(as_float)
    # ids and totals are stored in 64-bit INTEGER columns
    if number < 0 or number > MAX_STORED_INT:
        raise InvalidInputError(field, f"{value!r} is not a non-negative integer in range")
    return number


def rank_for_score(bests: Iterable[Tuple[int, int]], score: int,
                   exclude_user_id: Optional[int] = None) -> int:
    """1 + number of users (other than exclude_user_id) whose best beats score."""
    beaten_by = {uid for uid, best in bests if uid != exclude_user_id and best > score}
    return 1 + len(beaten_by)


def assign_ranks(scores: Sequence[int]) -> List[int]:
    """Ranks for scores already sorted best first: [500, 500, 300] -> [1, 1, 3]."""
    ranks = []
    for i, s in enumerate(scores):
        if i and s == scores[i - 1]:
            ranks.append(ranks[-1])
        else:
            ranks.append(i + 1)
    return ranks


# -----------------------------
# Operations
# -----------------------------
def record_game_completion(store, user_id: Optional[int], total_score, rounds_played) -> RecordOutcome:
    """
    Persist a finished game and work out whether it is a personal record.

    The previous best is read before the insert so the new result never
    counts against itself; a first game scoring 0 is therefore not a record.
    Guests (user_id is None) are neither stored nor ranked.
    """
    total = non_negative_int("total_score", total_score)
    rounds = non_negative_int("rounds_played", rounds_played)
    if total > rounds * MAX_SCORE:
        raise InvalidInputError("total_score", f"{total} is more than {rounds} rounds can score")

    if user_id is None:
        return RecordOutcome(score=total)

    user_id = non_negative_int("user_id", user_id)
    name = store.user_display_name(user_id)

    previous = store.best_score_for_user(user_id)
    previous_best = previous if previous is not None else 0
    is_new_record = total > previous_best

    result_id = store.insert_game_result(user_id, total, rounds)
    rank = rank_for_score(store.best_score_per_user(), total, exclude_user_id=user_id)

    logger.info(
        f"Recorded game {result_id} for {name} ({user_id}): {total} over {rounds} rounds, "
        f"rank {rank}" + (f", new record (was {previous_best})" if is_new_record else "")
    )
    return RecordOutcome(score=total, rank=rank, is_new_record=is_new_record, previous_best=previous_best)


def leaderboard(store, limit: int = DEFAULT_LEADERBOARD_LIMIT) -> List[LeaderboardEntry]:
    """Top ``limit`` users by best total, recomputed from stored history."""
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise InvalidInputError("limit", f"{limit!r} is not a positive integer")

    bests = store.best_score_per_user()
    ranks = assign_ranks([best for _, best in bests])
    top = bests[:limit]
    names = store.display_names(uid for uid, _ in top)
    return [
        LeaderboardEntry(rank=rank, name=names[uid], score=best, user_id=uid)
        for (uid, best), rank in zip(top, ranks)
    ]


def hypothetical_rank(board: Sequence, score) -> int:
    """
    Where a guest's score would land on an already-sorted leaderboard.

    Returns the first 1-indexed position whose score the guest matches or
    beats, or len(board) + 1 when it is below every entry.
    """
    if score is None or isinstance(score, bool):
        raise InvalidInputError("score", "value is required")
    try:
        score = float(score)
    except (TypeError, ValueError, OverflowError):
        raise InvalidInputError("score", f"{score!r} is not a number")
    if not math.isfinite(score):
        raise InvalidInputError("score", f"{score!r} is not finite")

    for position, entry in enumerate(board, start=1):
        entry_score = entry["score"] if isinstance(entry, Mapping) else entry.score
        if score >= entry_score:
            return position
    return len(board) + 1
