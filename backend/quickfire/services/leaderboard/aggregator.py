"""Materialized leaderboard snapshots.

A snapshot is one (scope, scope_key, period, window) ranking. Rebuilding it
reads terminal, rankable sessions that *started* inside the window, folds
them per user, sorts by the tie-break chain and writes entries in place.
Reads never scan sessions unless the snapshot is missing or dirty.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from quickfire import db, socketio
from quickfire.models import (
    QuizSession, User, LeaderboardSnapshot, LeaderboardEntry,
    TERMINAL_STATUSES, RANKABLE_REVIEW_STATUSES,
)
from quickfire.services.quiz import clock
from quickfire.services.quiz.errors import InvalidLeaderboardQuery
from .periods import SCOPES, PERIODS, window_for, scope_key, split_scope_key

DEFAULT_TIER_BANDS = (
    ('diamond', 0.05),
    ('platinum', 0.15),
    ('gold', 0.35),
    ('silver', 0.60),
    ('bronze', 1.0),
)
TOP_TIER = 'legend'


def aggregate(sessions: Iterable[QuizSession]) -> List[dict]:
    rows: Dict[int, dict] = {}
    for s in sessions:
        row = rows.get(s.user_id)
        if row is None:
            row = rows[s.user_id] = {
                'user_id': s.user_id,
                'total_score': 0,
                'quizzes_played': 0,
                'best_single_quiz': 0,
                'total_correct': 0,
                'total_answered': 0,
                'first_quiz_at': s.created_at,
            }
        final = s.final_score or 0
        row['total_score'] += final
        row['quizzes_played'] += 1
        row['best_single_quiz'] = max(row['best_single_quiz'], final)
        row['total_correct'] += s.correct_count
        row['total_answered'] += s.correct_count + s.wrong_count
        row['first_quiz_at'] = min(row['first_quiz_at'], s.created_at)
    for row in rows.values():
        answered = row['total_answered']
        row['accuracy'] = round(row['total_correct'] / answered, 4) if answered else 0.0
    return list(rows.values())


def tie_key(row: dict) -> tuple:
    """Ranking order: score, best quiz, correct, accuracy desc; quizzes, seniority asc."""
    return (
        -row['total_score'],
        -row['best_single_quiz'],
        -row['total_correct'],
        -row['accuracy'],
        row['quizzes_played'],
        row['first_quiz_at'],
    )


def rank_rows(rows: List[dict]) -> List[Tuple[int, dict]]:
    """Competition ranking: fully tied rows share a rank, and ties consume slots (1, 1, 3)."""
    ordered = sorted(rows, key=lambda r: (tie_key(r), r['user_id']))
    ranked = []
    rank = 0
    previous = None
    for position, row in enumerate(ordered, start=1):
        key = tie_key(row)
        if key != previous:
            rank = position
            previous = key
        ranked.append((rank, row))
    return ranked


def assign_tier(rank: int, population: int, top_rank: Optional[int] = None, bands=None) -> str:
    cfg = current_app.config
    top_rank = cfg.get('LEADERBOARD_TOP_TIER_RANK', 10) if top_rank is None else top_rank
    bands = bands or cfg.get('LEADERBOARD_TIER_BANDS') or DEFAULT_TIER_BANDS
    if rank <= top_rank:
        return TOP_TIER
    percentile = rank / float(max(population, 1))
    for tier, max_percentile in bands:
        if percentile <= max_percentile:
            return tier
    return bands[-1][0]


def _session_query(scope: str, key: str, start: float, end: Optional[float]):
    query = QuizSession.query.filter(
        QuizSession.status.in_(TERMINAL_STATUSES),
        QuizSession.review_status.in_(RANKABLE_REVIEW_STATUSES),
        # A session with no answered question has nothing to rank
        QuizSession.correct_count + QuizSession.wrong_count > 0,
        QuizSession.created_at >= start,
    )
    if end is not None:
        query = query.filter(QuizSession.created_at < end)
    country, artist_id = split_scope_key(scope, key)
    if artist_id:
        query = query.filter(QuizSession.artist_id == artist_id)
    if country:
        query = query.join(User, User.id == QuizSession.user_id).filter(User.country == country)
    return query


def get_or_create_snapshot(scope: str, key: str, period: str, ts: float) -> LeaderboardSnapshot:
    start, end = window_for(period, ts)
    snapshot = LeaderboardSnapshot.query.filter_by(scope=scope, scope_key=key, period=period, window_start=start).first()
    if snapshot is not None:
        return snapshot
    snapshot = LeaderboardSnapshot(
        scope=scope, scope_key=key, period=period,
        window_start=start, window_end=end,
        status='live', dirty=True, entry_count=0,
    )
    db.session.add(snapshot)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        snapshot = LeaderboardSnapshot.query.filter_by(scope=scope, scope_key=key, period=period, window_start=start).one()
    return snapshot


def rebuild_snapshot(snapshot: LeaderboardSnapshot, now: Optional[float] = None) -> Dict[int, Tuple[Optional[int], int]]:
    """Recompute a snapshot's entries in place. Caller commits.

    Returns {user_id: (rank before this build or None, rank now)}.
    """
    now = clock.now() if now is None else now
    rows = aggregate(_session_query(snapshot.scope, snapshot.scope_key, snapshot.window_start, snapshot.window_end).all())
    ranked = rank_rows(rows)
    population = len(ranked)
    existing = {e.user_id: e for e in snapshot.entries.all()}
    changes = {}
    for rank, row in ranked:
        entry = existing.pop(row['user_id'], None)
        old_rank = entry.rank if entry is not None else None
        if entry is None:
            entry = LeaderboardEntry(snapshot_id=snapshot.id, user_id=row['user_id'])
            db.session.add(entry)
        elif entry.rank != rank:
            entry.previous_rank = entry.rank
        entry.rank = rank
        entry.total_score = row['total_score']
        entry.quizzes_played = row['quizzes_played']
        entry.best_single_quiz = row['best_single_quiz']
        entry.total_correct = row['total_correct']
        entry.total_answered = row['total_answered']
        entry.accuracy = row['accuracy']
        entry.first_quiz_at = row['first_quiz_at']
        entry.tier = assign_tier(rank, population)
        changes[row['user_id']] = (old_rank, rank)
    for stale in existing.values():
        db.session.delete(stale)
    snapshot.entry_count = population
    snapshot.dirty = False
    snapshot.built_at = now
    current_app.logger.info(
        f"[leaderboard-rebuild] scope={snapshot.scope} key={snapshot.scope_key} period={snapshot.period} window={snapshot.window_start} entries={population}"
    )
    return changes


def _emit_update(snapshot: LeaderboardSnapshot) -> None:
    socketio.emit('leaderboard_update', {
        'scope': snapshot.scope,
        'scope_key': snapshot.scope_key,
        'period': snapshot.period,
    }, to=f"leaderboard:{snapshot.scope}:{snapshot.period}", namespace='/ws')


def session_targets(session: QuizSession) -> List[Tuple[str, str]]:
    """Every (scope, scope_key) population a session belongs to."""
    country = session.user.country if session.user else None
    targets = []
    for scope in SCOPES:
        key = scope_key(scope, country=country, artist_id=session.artist_id)
        if key is not None:
            targets.append((scope, key))
    return targets


def on_session_completed(session: QuizSession) -> List[dict]:
    """Hand-off from the session manager.

    Marks every affected live snapshot dirty. With LEADERBOARD_REBUILD_ON_COMPLETE
    the snapshots are rebuilt inline and the owner's position deltas returned;
    otherwise the rebuild runs as a background task that pushes the deltas to
    the session room, and this returns an empty list.
    """
    snapshot_ids = []
    for scope, key in session_targets(session):
        for period in PERIODS:
            try:
                snapshot = get_or_create_snapshot(scope, key, period, session.created_at)
                if snapshot.status != 'live':
                    current_app.logger.warning(
                        f"[leaderboard-late] session={session.id} scope={scope} period={period} window already archived"
                    )
                    continue
                snapshot.dirty = True
                db.session.commit()
                snapshot_ids.append(snapshot.id)
            except Exception:
                db.session.rollback()
                current_app.logger.exception(f"[leaderboard-error] scope={scope} key={key} period={period}")

    if current_app.config.get('LEADERBOARD_REBUILD_ON_COMPLETE', False):
        return rebuild_for_user(snapshot_ids, session.user_id)
    schedule_rebuild(current_app._get_current_object(), snapshot_ids, session.user_id, session.id)
    return []


def rebuild_for_user(snapshot_ids: List[int], user_id: int, now: Optional[float] = None) -> List[dict]:
    """Rebuild the dirty snapshots among ``snapshot_ids``; returns the user's position in each."""
    now = clock.now() if now is None else now
    deltas = []
    for snapshot_id in snapshot_ids:
        try:
            snapshot = db.session.get(LeaderboardSnapshot, snapshot_id, populate_existing=True)
            if snapshot is None or snapshot.status != 'live':
                continue
            changes = {}
            if snapshot.dirty:
                changes = rebuild_snapshot(snapshot, now)
                db.session.commit()
                _emit_update(snapshot)
            entry = snapshot.entries.filter_by(user_id=user_id).first()
            if entry is None:
                continue
            # Already rebuilt by someone else: the last move is the one to report
            old_rank = changes[user_id][0] if user_id in changes else entry.previous_rank
            deltas.append({
                'scope': snapshot.scope,
                'scope_key': snapshot.scope_key,
                'period': snapshot.period,
                'previous_rank': old_rank,
                'rank': entry.rank,
                'delta': (old_rank - entry.rank) if old_rank is not None else None,
                'tier': entry.tier,
            })
        except Exception:
            db.session.rollback()
            current_app.logger.exception(f"[leaderboard-error] snapshot={snapshot_id}")
    return deltas


def schedule_rebuild(app, snapshot_ids: List[int], user_id: int, session_id: int) -> None:
    """Rebuild a completed session's snapshots off the request path.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set; the
      snapshots stay dirty and are rebuilt on read or by the batch
    - Pushes ``leaderboard_position`` with the owner's deltas to ``session:<id>``
    """
    if not snapshot_ids:
        return
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    def _worker():
        deltas = rebuild_for_user(snapshot_ids, user_id)
        app.logger.info(f"[leaderboard-push] session={session_id} snapshots={len(snapshot_ids)} deltas={len(deltas)}")
        socketio.emit('leaderboard_position', {
            'session_id': session_id,
            'leaderboard': deltas,
        }, to=f"session:{session_id}", namespace='/ws')

    if app.config.get('TESTING'):
        _worker()
    else:
        def _in_context():
            with app.app_context():
                _worker()
        socketio.start_background_task(_in_context)


def mark_session_scopes_dirty(session: QuizSession) -> None:
    for scope, key in session_targets(session):
        for period in PERIODS:
            start, _ = window_for(period, session.created_at)
            LeaderboardSnapshot.query.filter_by(
                scope=scope, scope_key=key, period=period, window_start=start, status='live',
            ).update({'dirty': True}, synchronize_session=False)


def rebuild_dirty_snapshots(now: Optional[float] = None, include_clean: bool = False) -> int:
    """Scheduled batch: rebuild live snapshots, isolating failures per snapshot."""
    now = clock.now() if now is None else now
    query = LeaderboardSnapshot.query.filter_by(status='live')
    if not include_clean:
        query = query.filter_by(dirty=True)
    rebuilt = 0
    for snapshot_id in [s.id for s in query.all()]:
        try:
            snapshot = db.session.get(LeaderboardSnapshot, snapshot_id)
            rebuild_snapshot(snapshot, now)
            db.session.commit()
            _emit_update(snapshot)
            rebuilt += 1
        except Exception:
            db.session.rollback()
            current_app.logger.exception(f"[leaderboard-error] snapshot={snapshot_id}")
    return rebuilt


def query_leaderboard(scope: str, period: str, country: Optional[str] = None, artist_id: Optional[str] = None,
                      page: int = 1, per_page: int = 50, user_id: Optional[int] = None) -> dict:
    if scope not in SCOPES or period not in PERIODS:
        raise InvalidLeaderboardQuery(scope=scope, period=period)
    key = scope_key(scope, country=country, artist_id=artist_id)
    if key is None:
        raise InvalidLeaderboardQuery('This scope needs a country and/or artist', scope=scope)
    page = max(1, int(page or 1))
    per_page = min(100, max(1, int(per_page or 50)))

    snapshot = get_or_create_snapshot(scope, key, period, clock.now())
    if snapshot.dirty:
        rebuild_snapshot(snapshot)
        db.session.commit()

    entries = (
        snapshot.entries
        .order_by(LeaderboardEntry.rank, LeaderboardEntry.user_id)
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    me = snapshot.entries.filter_by(user_id=user_id).first() if user_id is not None else None
    return {
        'snapshot': snapshot.to_dict(),
        'entries': [e.to_dict() for e in entries],
        'page': page,
        'per_page': per_page,
        'total': snapshot.entry_count,
        'me': me.to_dict() if me else None,
    }
