import math
from dataclasses import dataclass, asdict
from typing import Optional, Sequence, Tuple

from errors import InvalidInputError
from logger import setup_logger

logger = setup_logger(__name__)

CORRECT_RADIUS_PX = 40.0
MAX_SCORE = 100
WRONG_FLOOR_MAX_SCORE = 10
QUICK_PLAY_MAX_SCORE = 1000


@dataclass(frozen=True)
class ScoreResult:
    distance: float
    score: int
    correct: bool
    floor_match: bool

    def to_dict(self) -> dict:
        return asdict(self)


# -----------------------------
# Helpers
# -----------------------------
def round_half_up(value: float) -> int:
    # 0.5 goes up, unlike round() which rounds half to even
    return int(math.floor(value + 0.5))


def _finite(field: str, value) -> float:
    if value is None or isinstance(value, bool):
        raise InvalidInputError(field, "value is required")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise InvalidInputError(field, f"{value!r} is not a number")
    if not math.isfinite(number):
        raise InvalidInputError(field, f"{value!r} is not finite")
    return number


def parse_point(field: str, point: Optional[Sequence]) -> Tuple[float, float]:
    try:
        x, y = point
    except (TypeError, ValueError):
        raise InvalidInputError(field, "expected an (x, y) pair")
    return _finite(f"{field}.x", x), _finite(f"{field}.y", y)


def parse_size(map_size: Optional[Sequence]) -> Tuple[float, float]:
    w, h = parse_point("map_size", map_size)
    if w < 0 or h < 0:
        raise InvalidInputError("map_size", "width and height must not be negative")
    return w, h


def pixel_distance(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def normalized_error(d: float, map_size: Tuple[float, float]) -> float:
    """Distance as a fraction of the map diagonal, capped at 1."""
    w, h = map_size
    diag = math.hypot(w, h) or 1.0
    return min(1.0, d / diag)


# -----------------------------
# Scoring
# -----------------------------
def score_guess(answer_xy: Sequence, guess_xy: Sequence, map_size: Sequence,
                floor_match: Optional[bool] = None,
                correct_radius: float = CORRECT_RADIUS_PX) -> ScoreResult:
    """
    Score a guess on a 0-100 scale.

    The in-plane score falls off quadratically with the error normalized by
    the floor diagonal. When a floor selection was made and it is wrong, at
    most WRONG_FLOOR_MAX_SCORE points survive. ``floor_match=None`` means no
    floor was selected and is scored as a match.
    """
    answer = parse_point("answer", answer_xy)
    guess = parse_point("guess", guess_xy)
    size = parse_size(map_size)

    d = pixel_distance(guess, answer)
    err = normalized_error(d, size)
    base = round_half_up(MAX_SCORE * (1.0 - err) ** 2)

    matched = True if floor_match is None else bool(floor_match)
    score = base if matched else min(WRONG_FLOOR_MAX_SCORE, round_half_up(base / 10.0))

    result = ScoreResult(distance=d, score=score, correct=d <= correct_radius, floor_match=matched)
    logger.debug(f"Scored guess {guess} against {answer} on {size}: {result}")
    return result


def score_quick_play(answer_xy: Sequence, guess_xy: Sequence, map_size: Sequence,
                     correct_radius: float = CORRECT_RADIUS_PX) -> ScoreResult:
    """
    Linear 0-1000 scoring used by quick-play, which has no floor selection.

    Kept apart from score_guess: the two scales are not interchangeable and
    quick-play totals never reach the leaderboard.
    """
    answer = parse_point("answer", answer_xy)
    guess = parse_point("guess", guess_xy)
    size = parse_size(map_size)

    d = pixel_distance(guess, answer)
    score = max(0, round_half_up(QUICK_PLAY_MAX_SCORE * (1.0 - normalized_error(d, size))))
    return ScoreResult(distance=d, score=score, correct=d <= correct_radius, floor_match=True)
