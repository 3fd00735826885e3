"""Soft anti-cheat flagging.

Flags never reject an answer or surface to the player. A flagged session
keeps its score; the leaderboard simply skips it until a reviewer clears
or confirms the flag.
"""

import json
from typing import Optional

from flask import current_app

from quickfire import db
from quickfire.models import (
    QuizSession, QuizAnswer, SessionFlag,
    REVIEW_NONE, REVIEW_PENDING, REVIEW_CLEARED, REVIEW_CONFIRMED, TERMINAL_STATUSES,
)
from quickfire.services.leaderboard.aggregator import mark_session_scopes_dirty
from . import clock
from .errors import SessionNotFound, QuizError

FLAG_IMPLAUSIBLE_SPEED = 'implausible_speed'
FLAG_TIMING_ANOMALIES = 'timing_anomalies'


def window_stats(session: QuizSession, size: int):
    """(average time taken in ms, accuracy, count) over the last ``size`` scored answers."""
    recent = (
        QuizAnswer.query
        .filter_by(session_id=session.id, skipped=False)
        .order_by(QuizAnswer.id.desc())
        .limit(size)
        .all()
    )
    if not recent:
        return 0.0, 0.0, 0
    avg_ms = sum(a.time_taken_ms for a in recent) / len(recent)
    accuracy = sum(1 for a in recent if a.is_correct) / len(recent)
    return avg_ms, accuracy, len(recent)


def _flag(session: QuizSession, reason: str, details: dict, now: float) -> None:
    session.review_status = REVIEW_PENDING
    db.session.add(SessionFlag(
        session_id=session.id,
        reason=reason,
        details=json.dumps(details),
        created_at=now,
    ))
    current_app.logger.warning(f"[anticheat-flag] session={session.id} user={session.user_id} reason={reason} details={details}")


def observe_answer(session: QuizSession, answer: QuizAnswer, now: Optional[float] = None) -> bool:
    """Inspect the latest answer; returns True if this call flagged the session."""
    if answer.skipped or session.review_status != REVIEW_NONE:
        return False
    now = clock.now() if now is None else now
    cfg = current_app.config

    max_anomalies = int(cfg.get('ANTI_CHEAT_MAX_TIMING_ANOMALIES', 3))
    if max_anomalies > 0 and session.timing_anomalies >= max_anomalies:
        _flag(session, FLAG_TIMING_ANOMALIES, {'timing_anomalies': session.timing_anomalies}, now)
        return True

    size = int(cfg.get('ANTI_CHEAT_WINDOW', 5))
    avg_ms, accuracy, count = window_stats(session, size)
    if count < size:
        return False
    floor_ms = float(cfg.get('ANTI_CHEAT_MIN_AVG_ANSWER_MS', 800))
    threshold = float(cfg.get('ANTI_CHEAT_ACCURACY_THRESHOLD', 0.9))
    if avg_ms < floor_ms and accuracy > threshold:
        _flag(session, FLAG_IMPLAUSIBLE_SPEED, {
            'avg_ms': round(avg_ms, 1),
            'accuracy': round(accuracy, 3),
            'window': size,
        }, now)
        return True
    return False


def review_session(session_id: int, outcome: str) -> QuizSession:
    """Resolve a pending flag: ``clear`` restores ranking, ``confirm`` keeps it excluded."""
    if outcome not in ('clear', 'confirm'):
        raise QuizError('Outcome must be clear or confirm', outcome=outcome)
    session = db.session.get(QuizSession, int(session_id))
    if session is None:
        raise SessionNotFound()
    if session.review_status != REVIEW_PENDING:
        raise QuizError('Session is not pending review', review_status=session.review_status)
    now = clock.now()
    session.review_status = REVIEW_CLEARED if outcome == 'clear' else REVIEW_CONFIRMED
    for flag in SessionFlag.query.filter_by(session_id=session.id, resolved_at=None).all():
        flag.resolved_at = now
        flag.resolution = outcome
    if outcome == 'clear' and session.status in TERMINAL_STATUSES:
        mark_session_scopes_dirty(session)
    db.session.commit()
    current_app.logger.info(f"[anticheat-review] session={session.id} outcome={outcome}")
    return session
