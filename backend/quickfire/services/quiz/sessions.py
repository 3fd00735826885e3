"""Quickfire session lifecycle.

countdown -> active <-> paused -> completed | abandoned

The server clock is authoritative. ``countdown``/``active``/``paused`` are
derived lazily from stored timestamps by ``sync_clock`` on every touch (and
by the background timer when it runs), so a session never depends on a
client tick to move forward. Terminal transitions go through ``_finalize``,
whose conditional UPDATE on ``status`` lets exactly one caller (explicit
completion, time-up, staleness sweep, rollover) win.
"""

import json
import random
from typing import Optional

from flask import current_app

from quickfire import db
from quickfire.models import (
    QuizSession, QuizAnswer, ActiveSessionPointer,
    STATUS_COUNTDOWN, STATUS_ACTIVE, STATUS_PAUSED, STATUS_COMPLETED, STATUS_ABANDONED,
    OPEN_STATUSES, REVIEW_NONE,
)
from sqlalchemy.exc import IntegrityError

from . import clock, scoring, providers, anticheat, stats as user_stats
from .effects import (
    Effect, FreezeTime, AddTime, Multiplier, BlockPenalty, RemoveOptions, SkipQuestion,
    MULTIPLIER_NEXT_QUESTION, describe,
)
from .errors import (
    SessionNotFound, SessionNotAnswerable, QuestionMismatch, AnswerTooFast,
    QuestionPoolEmpty, ActiveSessionConflict, InvalidPowerupTarget, InvalidCompletionReason,
)
from .locks import user_lock
from quickfire.services.leaderboard.aggregator import on_session_completed

# Reasons a player may give; time_up, stale and period_rollover are system-only
CLIENT_COMPLETION_REASONS = ('finished', 'quit')


def _cfg(key, default):
    return current_app.config.get(key, default)


# ---- clock ----

def paused_seconds(session: QuizSession, now: float) -> float:
    frozen = session.frozen_seconds or 0.0
    if session.status == STATUS_PAUSED and session.pause_started_at is not None:
        end = min(now, session.pause_until if session.pause_until is not None else now)
        frozen += max(0.0, end - session.pause_started_at)
    return frozen


def remaining_seconds(session: QuizSession, now: float) -> float:
    if session.status not in OPEN_STATUSES:
        return 0.0
    if now < session.clock_started_at:
        return float(session.total_duration)
    elapsed = now - session.clock_started_at - paused_seconds(session, now)
    return max(0.0, session.total_duration - elapsed)


def expires_at(session: QuizSession) -> Optional[float]:
    """Moment the clock runs out, or None while a freeze holds it."""
    if session.status == STATUS_PAUSED:
        return None
    return session.clock_started_at + (session.frozen_seconds or 0.0) + session.total_duration


def next_deadline(session: QuizSession) -> Optional[float]:
    if session.status == STATUS_COUNTDOWN:
        return session.clock_started_at
    if session.status == STATUS_PAUSED:
        return session.pause_until
    if session.status == STATUS_ACTIVE:
        return expires_at(session)
    return None


def sync_clock(session: QuizSession, now: float) -> bool:
    """Advance countdown/pause states that have elapsed. Returns True on change."""
    if session.status not in OPEN_STATUSES:
        return False
    changed = False
    if session.status == STATUS_COUNTDOWN and now >= session.clock_started_at:
        session.status = STATUS_ACTIVE
        changed = True
    if session.status == STATUS_PAUSED and session.pause_until is not None and now >= session.pause_until:
        session.frozen_seconds = (session.frozen_seconds or 0.0) + (session.pause_until - session.pause_started_at)
        session.pause_started_at = None
        session.pause_until = None
        session.status = STATUS_ACTIVE
        changed = True
    return changed


# ---- loading ----

def _load_owned(user, session_id) -> QuizSession:
    session = db.session.get(QuizSession, int(session_id), populate_existing=True)
    if session is None or session.user_id != user.id:
        raise SessionNotFound()
    return session


def _client_epoch(value) -> Optional[float]:
    if value is None:
        return None
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return None
    # Browsers send milliseconds
    return ts / 1000.0 if ts > 1e11 else ts


def _removed(session: QuizSession):
    return json.loads(session.removed_options) if session.removed_options else []


def _advance_question(session: QuizSession, now: float, preferred=None) -> Optional[dict]:
    queue = session.queue()
    nxt = None
    if preferred is not None and str(preferred) in queue:
        nxt = str(preferred)
        queue.remove(nxt)
    elif queue:
        nxt = queue.pop(0)
    session.question_queue = json.dumps(queue)
    session.current_question_id = nxt
    session.question_served_at = max(now, session.clock_started_at)
    session.removed_options = None
    return session.question(nxt) if nxt else None


# ---- terminal transition ----

def _finalize(session: QuizSession, terminal_status: str, reason: str, now: float) -> Optional[dict]:
    """Close the session, fold it into user stats and hand it to the leaderboards.

    Returns the completion payload, or None when another path already
    closed the session.
    """
    frozen = paused_seconds(session, now)
    final = scoring.final_score(session.earned_points, session.penalty_points)
    db.session.flush()
    updated = QuizSession.query.filter(
        QuizSession.id == session.id,
        QuizSession.status.in_(OPEN_STATUSES),
    ).update({
        'status': terminal_status,
        'completion_reason': reason,
        'final_score': final,
        'completed_at': now,
        'frozen_seconds': frozen,
        'pause_started_at': None,
        'pause_until': None,
    }, synchronize_session=False)
    if updated != 1:
        db.session.rollback()
        return None
    db.session.refresh(session)

    stats = user_stats.record_completion(session, now)
    badges = user_stats.award_achievements(stats, session, now)
    ActiveSessionPointer.query.filter_by(user_id=session.user_id, session_id=session.id).delete(synchronize_session=False)
    db.session.commit()

    current_app.logger.info(
        f"[session-{terminal_status}] user={session.user_id} session={session.id} reason={reason} final={final}"
    )
    deltas = on_session_completed(session)
    payload = completion_payload(session)
    payload['leaderboard'] = deltas
    payload['badges'] = badges
    return payload


def completion_payload(session: QuizSession) -> dict:
    return {
        'session_id': session.id,
        'status': session.status,
        'reason': session.completion_reason,
        'final_score': session.final_score,
        'breakdown': {
            'base': session.base_points,
            'listening': session.listening_points,
            'streak': session.streak_points,
            'multiplier': session.multiplier_points,
            'earned': session.earned_points,
            'penalty': session.penalty_points,
        },
        'correct': session.correct_count,
        'wrong': session.wrong_count,
        'skipped': session.skipped_count,
        'longest_streak': session.longest_streak,
        'leaderboard': [],
        'badges': [],
    }


def finalize_if_due(session: QuizSession, now: float) -> Optional[dict]:
    """Complete an open session whose clock ran out or whose questions are exhausted."""
    if not session.is_open:
        return None
    if session.current_question_id is None:
        return _finalize(session, STATUS_COMPLETED, 'questions_exhausted', now)
    if remaining_seconds(session, now) <= 0:
        return _finalize(session, STATUS_COMPLETED, 'time_up', now)
    return None


# ---- operations ----

def state_payload(session: QuizSession, now: float) -> dict:
    payload = session.to_dict()
    payload.update({
        'remaining': round(remaining_seconds(session, now), 3),
        'clock_starts_at': session.clock_started_at,
        'paused_until': session.pause_until,
        'question': providers.public_question(session.question(session.current_question_id), _removed(session)) if session.is_open else None,
        'queue': session.queue() if session.is_open else [],
        'server_time': now,
    })
    return payload


def start_session(user, artist_id: str) -> dict:
    """Claim-or-resume-or-abandon the user's active slot, then start a fresh attempt."""
    now = clock.now()
    with user_lock(user.id):
        pointer = db.session.get(ActiveSessionPointer, user.id)
        if pointer is not None:
            existing = db.session.get(QuizSession, pointer.session_id, populate_existing=True)
            if existing is not None and existing.is_open:
                sync_clock(existing, now)
                resume_window = _cfg('SESSION_RESUME_WINDOW_SEC', 60)
                if remaining_seconds(existing, now) <= 0:
                    _finalize(existing, STATUS_COMPLETED, 'time_up', now)
                elif now - existing.last_activity_at <= resume_window:
                    existing.last_activity_at = now
                    db.session.commit()
                    current_app.logger.info(f"[session-resume] user={user.id} session={existing.id}")
                    payload = state_payload(existing, now)
                    payload['resumed'] = True
                    return payload
                else:
                    _finalize(existing, STATUS_ABANDONED, 'stale', now)
            else:
                db.session.delete(pointer)
                db.session.commit()

        count = int(_cfg('QUIZ_QUESTIONS_PER_SESSION', 30))
        questions = providers.fetch_questions(artist_id, count)
        if not questions:
            raise QuestionPoolEmpty(artist_id=artist_id)
        hours = providers.fetch_listening_hours(user.id, artist_id)
        countdown = int(_cfg('QUIZ_COUNTDOWN_SEC', 3))

        session = QuizSession(
            user_id=user.id,
            artist_id=str(artist_id),
            status=STATUS_COUNTDOWN if countdown > 0 else STATUS_ACTIVE,
            base_duration_sec=int(_cfg('QUIZ_DURATION_SEC', 60)),
            countdown_sec=countdown,
            bonus_seconds=0,
            penalty_seconds=0,
            created_at=now,
            clock_started_at=now + countdown,
            frozen_seconds=0.0,
            last_activity_at=now,
            question_served_at=now + countdown,
            base_points=0,
            listening_points=0,
            streak_points=0,
            multiplier_points=0,
            penalty_points=0,
            current_streak=0,
            longest_streak=0,
            correct_count=0,
            wrong_count=0,
            skipped_count=0,
            listening_hours=hours,
            question_pool=json.dumps(questions),
            question_queue=json.dumps([q['id'] for q in questions[1:]]),
            current_question_id=questions[0]['id'],
            shield_charges=0,
            review_status=REVIEW_NONE,
            timing_anomalies=0,
        )
        db.session.add(session)
        db.session.flush()
        db.session.add(ActiveSessionPointer(user_id=user.id, session_id=session.id, claimed_at=now))
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ActiveSessionConflict()

        current_app.logger.info(
            f"[session-start] user={user.id} session={session.id} artist={artist_id} questions={len(questions)} hours={hours}"
        )
        payload = state_payload(session, now)
        payload['resumed'] = False
        payload['listening_multiplier'] = str(scoring.listening_multiplier(hours))
        return payload


def submit_answer(user, session_id, question_id, selected_choice, client_timestamp=None,
                  client_remaining=None, next_question_id=None) -> dict:
    now = clock.now()
    grace = float(_cfg('QUIZ_LATENCY_GRACE_SEC', 1.5))
    with user_lock(user.id):
        session = _load_owned(user, session_id)
        sync_clock(session, now)
        if not session.is_open:
            raise SessionNotAnswerable(status=session.status)
        if session.status == STATUS_COUNTDOWN:
            raise SessionNotAnswerable('The countdown has not finished', status=session.status,
                                       starts_in=round(session.clock_started_at - now, 3))

        server_remaining = remaining_seconds(session, now)
        overdue = 0.0
        if server_remaining <= 0:
            overdue = now - (expires_at(session) or now)
            if overdue > grace:
                finalize_if_due(session, now)
                raise SessionNotAnswerable('Time is up', status=STATUS_COMPLETED)

        if session.current_question_id is None or str(question_id) != session.current_question_id:
            raise QuestionMismatch(expected=session.current_question_id)

        min_interval = int(_cfg('QUIZ_MIN_ANSWER_INTERVAL_MS', 250)) / 1000.0
        if session.last_answer_at is not None and now - session.last_answer_at < min_interval:
            raise AnswerTooFast(retry_after_ms=int((min_interval - (now - session.last_answer_at)) * 1000) + 1)

        question = session.question(question_id)
        is_correct = str(selected_choice) == question['answer']

        anomaly = overdue > 0
        if client_remaining is not None:
            try:
                if abs(float(client_remaining) - server_remaining) > grace:
                    anomaly = True
            except (TypeError, ValueError):
                anomaly = True
        client_ts = _client_epoch(client_timestamp)
        if client_ts is not None and abs(now - client_ts) > grace:
            anomaly = True

        streak = session.current_streak + 1 if is_correct else 0
        multiplier = session.active_multiplier or 1.0
        shield = (not is_correct) and session.shield_charges > 0
        result = scoring.score(
            question['difficulty'], is_correct, streak, session.listening_hours,
            active_multiplier=multiplier, shield=shield,
        )

        if is_correct:
            session.base_points += result.base
            session.listening_points += result.listening_bonus
            session.streak_points += result.streak_bonus
            session.multiplier_points += result.multiplier_bonus
            session.correct_count += 1
        else:
            session.penalty_points += result.penalty
            session.wrong_count += 1
            if result.shield_used:
                session.shield_charges -= 1
        session.current_streak = streak
        session.longest_streak = max(session.longest_streak, streak)
        if result.time_penalty_sec:
            session.penalty_seconds += result.time_penalty_sec
        if session.active_multiplier and session.multiplier_scope == MULTIPLIER_NEXT_QUESTION:
            session.active_multiplier = None
            session.multiplier_scope = None

        answer = QuizAnswer(
            session_id=session.id,
            question_id=question['id'],
            selected_choice=str(selected_choice),
            is_correct=is_correct,
            skipped=False,
            difficulty=question['difficulty'],
            base_points=result.base,
            listening_bonus=result.listening_bonus,
            streak_bonus=result.streak_bonus,
            multiplier_bonus=result.multiplier_bonus,
            penalty=result.penalty,
            net_points=result.net,
            time_penalty_sec=result.time_penalty_sec,
            time_taken_ms=int(max(0.0, now - (session.question_served_at or session.clock_started_at)) * 1000),
            streak_at_answer=streak,
            multiplier=float(multiplier),
            shield_used=result.shield_used,
            client_remaining=float(client_remaining) if isinstance(client_remaining, (int, float)) else None,
            server_remaining=server_remaining,
            timing_anomaly=anomaly,
            created_at=now,
        )
        db.session.add(answer)
        if anomaly:
            session.timing_anomalies += 1
            current_app.logger.info(
                f"[answer-timing] session={session.id} question={question['id']} server_remaining={server_remaining:.3f} client_remaining={client_remaining} overdue={overdue:.3f}"
            )
        session.last_answer_at = now
        session.last_activity_at = now
        next_question = _advance_question(session, now, preferred=next_question_id)
        db.session.flush()
        anticheat.observe_answer(session, answer, now)

        response = {
            'correct': is_correct,
            'canonical_answer': question['answer'],
            'breakdown': result.to_dict(),
            'time_penalty': result.time_penalty_sec,
            'shield_used': result.shield_used,
            'streak': streak,
            'next_question': providers.public_question(next_question),
        }
        completion = finalize_if_due(session, now)
        if completion is None:
            db.session.commit()
        response['completion'] = completion
        response['status'] = session.status
        response['remaining'] = round(remaining_seconds(session, now), 3)
        return response


def complete_session(user, session_id, reason: Optional[str] = None) -> dict:
    if reason is not None and reason not in CLIENT_COMPLETION_REASONS:
        raise InvalidCompletionReason(allowed=list(CLIENT_COMPLETION_REASONS))
    now = clock.now()
    with user_lock(user.id):
        session = _load_owned(user, session_id)
        sync_clock(session, now)
        if not session.is_open:
            payload = completion_payload(session)
            payload['already_closed'] = True
            return payload
        if remaining_seconds(session, now) <= 0:
            reason = 'time_up'
        result = _finalize(session, STATUS_COMPLETED, reason or 'finished', now)
        if result is None:
            payload = completion_payload(session)
            payload['already_closed'] = True
            return payload
        return result


def get_session_state(user, session_id) -> dict:
    now = clock.now()
    with user_lock(user.id):
        session = _load_owned(user, session_id)
        sync_clock(session, now)
        if finalize_if_due(session, now) is None:
            db.session.commit()
        return state_payload(session, now)


def force_complete(session_id: int, reason: str, now: Optional[float] = None,
                   terminal_status: str = STATUS_COMPLETED) -> Optional[dict]:
    """Close a session from a system path (sweep, rollover). No-op if already closed."""
    now = clock.now() if now is None else now
    session = db.session.get(QuizSession, session_id)
    if session is None:
        return None
    with user_lock(session.user_id):
        session = db.session.get(QuizSession, session_id, populate_existing=True)
        if not session.is_open:
            return None
        sync_clock(session, now)
        return _finalize(session, terminal_status, reason, now)


def sweep_stale_sessions(now: Optional[float] = None) -> list:
    """Complete expired sessions and abandon ones idle past SESSION_STALE_SEC."""
    now = clock.now() if now is None else now
    stale_before = now - int(_cfg('SESSION_STALE_SEC', 300))
    candidates = [(s.id, s.user_id) for s in QuizSession.query.filter(QuizSession.status.in_(OPEN_STATUSES)).all()]
    closed = []
    for session_id, user_id in candidates:
        with user_lock(user_id):
            session = db.session.get(QuizSession, session_id, populate_existing=True)
            if session is None or not session.is_open:
                continue
            sync_clock(session, now)
            if remaining_seconds(session, now) <= 0:
                result = _finalize(session, STATUS_COMPLETED, 'time_up', now)
            elif session.last_activity_at < stale_before:
                result = _finalize(session, STATUS_ABANDONED, 'stale', now)
            else:
                db.session.commit()
                continue
            if result is not None:
                closed.append(session_id)
    if closed:
        current_app.logger.info(f"[sweep] closed={closed}")
    return closed


# ---- powerup effects ----

def ensure_usable_for_powerup(session: QuizSession, now: float) -> None:
    sync_clock(session, now)
    if not session.is_open or session.status == STATUS_COUNTDOWN:
        raise SessionNotAnswerable(status=session.status)
    if remaining_seconds(session, now) <= 0:
        raise SessionNotAnswerable('Time is up', status=session.status)


def apply_effect(session: QuizSession, effect: Effect, now: float) -> dict:
    """Apply a powerup effect to an open session and return its descriptor.

    Raises ``InvalidPowerupTarget`` when the effect cannot apply; the caller
    rolls back so the spent unit is refunded.
    """
    session.last_activity_at = now
    if isinstance(effect, FreezeTime):
        if session.status == STATUS_PAUSED:
            session.pause_until = max(session.pause_until or now, now) + effect.duration
        else:
            session.status = STATUS_PAUSED
            session.pause_started_at = now
            session.pause_until = now + effect.duration
        return describe(effect, paused_until=session.pause_until, remaining=round(remaining_seconds(session, now), 3))

    if isinstance(effect, AddTime):
        cap = int(_cfg('QUIZ_MAX_BONUS_SECONDS', 30))
        added = max(0, min(effect.seconds, cap - session.bonus_seconds))
        session.bonus_seconds += added
        return describe(effect, seconds_added=added, remaining=round(remaining_seconds(session, now), 3))

    if isinstance(effect, Multiplier):
        session.active_multiplier = effect.value
        session.multiplier_scope = effect.scope
        return describe(effect)

    if isinstance(effect, BlockPenalty):
        session.shield_charges += effect.count
        return describe(effect, shield_charges=session.shield_charges)

    if isinstance(effect, RemoveOptions):
        question = session.question(session.current_question_id)
        if question is None:
            raise InvalidPowerupTarget('No question to apply this to', refunded=True)
        if question['type'] == 'true_false':
            raise InvalidPowerupTarget('Cannot remove options from a true/false question', refunded=True)
        already = _removed(session)
        wrong = [c for c in question['choices'] if c != question['answer'] and c not in already]
        # Keep at least one wrong option on the board
        take = min(effect.count, len(wrong) - 1)
        if take <= 0:
            raise InvalidPowerupTarget('No options left to remove', refunded=True)
        removed = random.sample(wrong, take)
        session.removed_options = json.dumps(already + removed)
        return describe(effect, removed=removed, question=providers.public_question(question, already + removed))

    if isinstance(effect, SkipQuestion):
        question = session.question(session.current_question_id)
        if question is None:
            raise InvalidPowerupTarget('No question to skip', refunded=True)
        db.session.add(QuizAnswer(
            session_id=session.id,
            question_id=question['id'],
            selected_choice=None,
            is_correct=False,
            skipped=True,
            difficulty=question['difficulty'],
            time_taken_ms=int(max(0.0, now - (session.question_served_at or session.clock_started_at)) * 1000),
            streak_at_answer=session.current_streak,
            multiplier=float(session.active_multiplier or 1.0),
            shield_used=False,
            server_remaining=remaining_seconds(session, now),
            timing_anomaly=False,
            created_at=now,
        ))
        session.skipped_count += 1
        next_question = _advance_question(session, now)
        return describe(effect, skipped_question_id=question['id'], next_question=providers.public_question(next_question))

    raise TypeError(f'unhandled powerup effect: {effect!r}')
