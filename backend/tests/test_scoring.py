from types import SimpleNamespace
from decimal import Decimal

import pytest

from quickfire.services.quiz import scoring
from quickfire.services.quiz.effects import (
    parse_effect, FreezeTime, AddTime, Multiplier, RemoveOptions, SkipQuestion, BlockPenalty,
    MULTIPLIER_ALL_REMAINING,
)


def test_easy_correct_no_streak_no_listening():
    result = scoring.score('easy', True, streak=0, listening_hours=0)
    assert result.net == 5
    assert result.base == 5
    assert result.time_penalty_sec == 0


def test_hard_correct_with_listening_and_streak():
    result = scoring.score('hard', True, streak=5, listening_hours=60)
    assert result.base == 12
    assert result.listening_bonus == 2
    assert result.streak_bonus == 5
    assert result.net == 19


def test_wrong_answer_costs_points_and_time():
    result = scoring.score('expert', False, streak=0, listening_hours=200)
    assert result.net == -6
    assert result.penalty == 6
    assert result.time_penalty_sec == 2
    assert result.shield_used is False


def test_shield_absorbs_wrong_answer():
    result = scoring.score('expert', False, streak=0, listening_hours=0, shield=True)
    assert result.net == 0
    assert result.penalty == 0
    assert result.time_penalty_sec == 0
    assert result.shield_used is True


def test_shield_unused_on_correct_answer():
    result = scoring.score('medium', True, streak=1, listening_hours=0, shield=True)
    assert result.shield_used is False
    assert result.net == 8


def test_multiplier_applies_after_listening_and_streak():
    # (floor(8 * 1.05) + 2) * 2 = (8 + 2) * 2
    result = scoring.score('medium', True, streak=3, listening_hours=1, active_multiplier=2.0)
    assert result.net == 20
    assert result.multiplier_bonus == 10

    # floor((5 + 0) * 1.5) = 7
    result = scoring.score('easy', True, streak=1, listening_hours=0, active_multiplier=1.5)
    assert result.net == 7
    assert result.multiplier_bonus == 2


@pytest.mark.parametrize('hours,expected', [
    (0, '1.00'), (0.9, '1.00'), (1, '1.05'), (9.99, '1.05'), (10, '1.10'),
    (25, '1.15'), (50, '1.20'), (99, '1.20'), (100, '1.25'), (5000, '1.25'),
])
def test_listening_multiplier_steps(hours, expected):
    assert scoring.listening_multiplier(hours) == Decimal(expected)


def test_step_functions_are_monotonic():
    hours = [0, 0.5, 1, 5, 10, 24, 25, 49, 50, 99, 100, 1000]
    multipliers = [scoring.listening_multiplier(h) for h in hours]
    assert multipliers == sorted(multipliers)

    bonuses = [scoring.streak_bonus(s) for s in range(0, 40)]
    assert bonuses == sorted(bonuses)
    assert scoring.streak_bonus(2) == 0
    assert scoring.streak_bonus(3) == 2
    assert scoring.streak_bonus(20) == 20
    assert scoring.streak_bonus(35) == 20


def test_unknown_difficulty_rejected():
    with pytest.raises(ValueError):
        scoring.score('impossible', True, 0, 0)


def test_final_score_never_negative():
    assert scoring.final_score(10, 25) == 0
    assert scoring.final_score(30, 12) == 18


def test_replay_reproduces_final_score():
    def answer(difficulty, correct, streak, multiplier=1.0, shield=False, skipped=False):
        return SimpleNamespace(difficulty=difficulty, is_correct=correct, streak_at_answer=streak,
                               multiplier=multiplier, shield_used=shield, skipped=skipped)

    log = [
        answer('easy', True, 1),
        answer('medium', True, 2),
        answer('hard', True, 3, multiplier=2.0),
        answer('expert', False, 0, shield=True),
        answer('easy', False, 0, skipped=True),
        answer('hard', False, 0),
        answer('medium', True, 1),
    ]
    hours = 30
    earned = penalty = 0
    for a in log:
        if a.skipped:
            continue
        r = scoring.score(a.difficulty, a.is_correct, a.streak_at_answer, hours,
                          active_multiplier=a.multiplier, shield=a.shield_used)
        earned += r.earned
        penalty += r.penalty
    assert scoring.replay_final_score(log, hours) == scoring.final_score(earned, penalty)
    assert scoring.replay_final_score(log, hours) == 5 + 9 + 30 + 9 - 5


def test_parse_effect_builds_closed_variants():
    assert parse_effect('freeze_time', {'duration': 10}) == FreezeTime(duration=10)
    assert parse_effect('add_time', {'seconds': 15}) == AddTime(seconds=15)
    boost = parse_effect('multiplier', {'value': 1.5, 'scope': 'all_remaining'})
    assert isinstance(boost, Multiplier)
    assert boost.scope == MULTIPLIER_ALL_REMAINING
    assert parse_effect('block_penalty', {}) == BlockPenalty(count=1)
    assert parse_effect('remove_options', {'count': 2}) == RemoveOptions(count=2)
    assert isinstance(parse_effect('skip_question', {}), SkipQuestion)


def test_parse_effect_rejects_unknown_kinds():
    with pytest.raises(ValueError):
        parse_effect('teleport', {})
    with pytest.raises(ValueError):
        parse_effect('multiplier', {'value': 2, 'scope': 'forever'})
