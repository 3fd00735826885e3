"""Point computation for a single quiz answer.

Pure functions only: callers persist the breakdown and apply the time
penalty to the session clock. Multipliers use ``Decimal`` so that e.g.
``12 x 1.20`` floors to 14 rather than drifting through binary floats.
"""

from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_FLOOR
from typing import Iterable, Optional

DIFFICULTIES = ('easy', 'medium', 'hard', 'expert')

BASE_POINTS = {'easy': 5, 'medium': 8, 'hard': 12, 'expert': 18}
WRONG_PENALTY = {'easy': 3, 'medium': 4, 'hard': 5, 'expert': 6}
WRONG_TIME_PENALTY_SEC = 2

# (minimum hours, multiplier), highest first
LISTENING_STEPS = (
    (100, Decimal('1.25')),
    (50, Decimal('1.20')),
    (25, Decimal('1.15')),
    (10, Decimal('1.10')),
    (1, Decimal('1.05')),
    (0, Decimal('1.00')),
)

# (minimum streak, bonus points), highest first
STREAK_STEPS = (
    (20, 20),
    (15, 15),
    (10, 10),
    (5, 5),
    (3, 2),
)


@dataclass(frozen=True)
class ScoreBreakdown:
    base: int = 0
    listening_bonus: int = 0
    streak_bonus: int = 0
    multiplier_bonus: int = 0
    penalty: int = 0
    net: int = 0
    time_penalty_sec: int = 0
    shield_used: bool = False

    @property
    def earned(self) -> int:
        return self.net if self.net > 0 else 0

    def to_dict(self):
        return asdict(self)


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def base_points(difficulty: str) -> int:
    try:
        return BASE_POINTS[difficulty]
    except KeyError:
        raise ValueError(f'unknown difficulty: {difficulty!r}') from None


def listening_multiplier(hours: Optional[float]) -> Decimal:
    hours = float(hours or 0)
    for minimum, multiplier in LISTENING_STEPS:
        if hours >= minimum:
            return multiplier
    return Decimal('1.00')


def streak_bonus(streak: int) -> int:
    for minimum, bonus in STREAK_STEPS:
        if streak >= minimum:
            return bonus
    return 0


def score(difficulty: str, is_correct: bool, streak: int, listening_hours: float,
          active_multiplier=1, shield: bool = False) -> ScoreBreakdown:
    """Score one answer.

    ``streak`` counts consecutive correct answers including this one.
    ``shield`` means a block-penalty charge is available; it is only
    reported as used when the answer is wrong.
    """
    base = base_points(difficulty)
    if not is_correct:
        if shield:
            return ScoreBreakdown(shield_used=True)
        penalty = WRONG_PENALTY[difficulty]
        return ScoreBreakdown(penalty=penalty, net=-penalty, time_penalty_sec=WRONG_TIME_PENALTY_SEC)

    with_listening = _floor(Decimal(base) * listening_multiplier(listening_hours))
    bonus = streak_bonus(streak)
    before_multiplier = with_listening + bonus
    net = _floor(Decimal(before_multiplier) * _as_decimal(active_multiplier or 1))
    return ScoreBreakdown(
        base=base,
        listening_bonus=with_listening - base,
        streak_bonus=bonus,
        multiplier_bonus=net - before_multiplier,
        net=net,
    )


def skipped() -> ScoreBreakdown:
    return ScoreBreakdown()


def final_score(earned: int, penalty: int) -> int:
    return max(0, earned - penalty)


def replay_final_score(answers: Iterable, listening_hours: float) -> int:
    """Re-score an answer log and return the final session score.

    ``answers`` are objects exposing ``difficulty``, ``is_correct``,
    ``skipped``, ``streak_at_answer``, ``multiplier`` and ``shield_used``
    (i.e. stored ``QuizAnswer`` rows).
    """
    earned = 0
    penalty = 0
    for answer in answers:
        if answer.skipped:
            continue
        result = score(
            answer.difficulty,
            answer.is_correct,
            answer.streak_at_answer,
            listening_hours,
            active_multiplier=answer.multiplier,
            shield=answer.shield_used,
        )
        earned += result.earned
        penalty += result.penalty
    return final_score(earned, penalty)
