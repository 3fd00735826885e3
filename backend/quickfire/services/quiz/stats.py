"""Cumulative per-user quiz statistics and achievement badges."""

from datetime import datetime, timedelta, timezone
from typing import List

from quickfire import db
from quickfire.models import UserQuizStats, UserBadge, QuizSession

# (badge code, predicate(stats, session))
ACHIEVEMENTS = (
    ('first_quiz', lambda stats, s: stats.quizzes_played >= 1),
    ('streak_10', lambda stats, s: (s.longest_streak or 0) >= 10),
    ('streak_20', lambda stats, s: (s.longest_streak or 0) >= 20),
    ('score_250', lambda stats, s: (s.final_score or 0) >= 250),
    ('perfect_session', lambda stats, s: (s.wrong_count or 0) == 0 and (s.correct_count or 0) >= 10),
    ('daily_streak_7', lambda stats, s: stats.daily_streak >= 7),
)


def utc_day(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime('%Y-%m-%d')


def ensure_stats(user_id: int, for_update: bool = False) -> UserQuizStats:
    """Load the stats row, creating a zeroed one if the user has none yet."""
    query = UserQuizStats.query.filter_by(user_id=user_id)
    if for_update:
        query = query.with_for_update()
    stats = query.first()
    if stats is None:
        stats = UserQuizStats(
            user_id=user_id,
            lifetime_points=0,
            spent_points=0,
            available_points=0,
            quizzes_played=0,
            total_answered=0,
            total_correct=0,
            total_wrong=0,
            best_score=0,
            longest_streak=0,
            daily_streak=0,
        )
        db.session.add(stats)
        db.session.flush()
    return stats


def record_completion(session: QuizSession, now: float) -> UserQuizStats:
    """Fold a finished session into the owner's stats. Caller commits."""
    stats = ensure_stats(session.user_id, for_update=True)
    final = session.final_score or 0
    stats.lifetime_points += final
    stats.available_points += final
    stats.quizzes_played += 1
    stats.total_answered += session.correct_count + session.wrong_count
    stats.total_correct += session.correct_count
    stats.total_wrong += session.wrong_count
    stats.best_score = max(stats.best_score, final)
    stats.longest_streak = max(stats.longest_streak, session.longest_streak)

    today = utc_day(now)
    if stats.last_played_day != today:
        yesterday = (datetime.fromtimestamp(now, tz=timezone.utc) - timedelta(days=1)).strftime('%Y-%m-%d')
        stats.daily_streak = stats.daily_streak + 1 if stats.last_played_day == yesterday else 1
        stats.last_played_day = today
    return stats


def award_badge(user_id: int, code: str, now: float, period_key: str = '') -> bool:
    exists = UserBadge.query.filter_by(user_id=user_id, code=code, period_key=period_key).first()
    if exists:
        return False
    db.session.add(UserBadge(user_id=user_id, code=code, period_key=period_key, created_at=now))
    return True


def award_achievements(stats: UserQuizStats, session: QuizSession, now: float) -> List[str]:
    earned = []
    for code, predicate in ACHIEVEMENTS:
        if predicate(stats, session) and award_badge(session.user_id, code, now):
            earned.append(code)
    return earned
