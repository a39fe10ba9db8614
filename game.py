from dataclasses import dataclass, field
from typing import List, Optional

from errors import InvalidInputError

DEFAULT_TOTAL_ROUNDS = 5


@dataclass
class GameSession:
    """
    Running total for one player's game.

    Owned by a single player's session and carried between requests via
    to_dict()/from_dict(); nothing here is shared between players.
    """
    total_rounds: int = DEFAULT_TOTAL_ROUNDS
    round_index: int = 0  # rounds already scored
    total_score: int = 0
    scores: List[int] = field(default_factory=list)
    location_id: Optional[int] = None  # location currently being guessed

    def __post_init__(self):
        if isinstance(self.total_rounds, bool) or not isinstance(self.total_rounds, int) or self.total_rounds <= 0:
            raise InvalidInputError("total_rounds", "must be a positive integer")

    @property
    def current_round(self) -> int:
        return min(self.round_index + 1, self.total_rounds)

    @property
    def rounds_remaining(self) -> int:
        return max(self.total_rounds - self.round_index, 0)

    @property
    def is_finished(self) -> bool:
        return self.round_index >= self.total_rounds

    def add_score(self, score: int) -> int:
        if self.is_finished:
            raise InvalidInputError("round", "game already finished")
        if isinstance(score, bool) or not isinstance(score, int) or score < 0:
            raise InvalidInputError("score", f"{score!r} is not a non-negative integer")
        self.scores.append(score)
        self.total_score += score
        self.round_index += 1
        self.location_id = None
        return self.total_score

    def to_dict(self) -> dict:
        return {
            "total_rounds": self.total_rounds,
            "round_index": self.round_index,
            "total_score": self.total_score,
            "scores": list(self.scores),
            "location_id": self.location_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GameSession":
        try:
            return cls(
                total_rounds=int(data["total_rounds"]),
                round_index=int(data["round_index"]),
                total_score=int(data["total_score"]),
                scores=[int(s) for s in data.get("scores", [])],
                location_id=data.get("location_id"),
            )
        except (KeyError, TypeError, ValueError):
            raise InvalidInputError("game", "corrupt game state")

    def summary(self) -> dict:
        return {
            **self.to_dict(),
            "current_round": self.current_round,
            "rounds_remaining": self.rounds_remaining,
            "finished": self.is_finished,
        }
