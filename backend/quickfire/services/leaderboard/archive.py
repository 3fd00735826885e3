"""Period rollover: archive closed leaderboard windows and open fresh ones.

Safe to run repeatedly for the same boundary. History rows are unique per
window and a snapshot is only marked archived in the same transaction that
writes them. Every scope gets history, but tier rewards come from the global
ranking only, so a user earns at most one grant per (period window, tier).
"""

import json
from typing import Optional

from flask import current_app

from quickfire import db
from quickfire.models import (
    QuizSession, LeaderboardSnapshot, LeaderboardEntry, LeaderboardHistory, RewardGrant, OPEN_STATUSES,
)
from quickfire.services.quiz import clock, sessions
from quickfire.services.quiz.stats import ensure_stats, award_badge
from quickfire.services.quiz.errors import InvalidLeaderboardQuery
from .aggregator import rebuild_snapshot, get_or_create_snapshot
from .periods import SCOPES, PERIODS, SCOPE_GLOBAL, period_key, scope_key

CHAMPION_TIER = 'champion'
REWARD_SCOPE = SCOPE_GLOBAL


def _grant(user_id: int, key: str, tier: str, rank: int, period: str, now: float) -> bool:
    if RewardGrant.query.filter_by(user_id=user_id, period_key=key, tier=tier).first():
        return False
    points = int(current_app.config.get('TIER_REWARD_POINTS', {}).get(tier, 0))
    db.session.add(RewardGrant(user_id=user_id, period_key=key, tier=tier, rank=rank, points=points, created_at=now))
    if points:
        stats = ensure_stats(user_id, for_update=True)
        stats.available_points += points
    award_badge(user_id, f'{period}_{tier}', now, period_key=key)
    return True


def archive_snapshot(snapshot_id: int, now: float) -> str:
    """Archive one closed window. Returns 'archived', 'deferred' or 'skipped'."""
    snapshot = db.session.get(LeaderboardSnapshot, snapshot_id, populate_existing=True)
    if snapshot is None or snapshot.status != 'live' or snapshot.window_end is None or snapshot.window_end > now:
        return 'skipped'
    boundary = snapshot.window_end

    # Sessions that began before the boundary count toward this window
    open_ids = [s.id for s in QuizSession.query.filter(
        QuizSession.status.in_(OPEN_STATUSES),
        QuizSession.created_at >= snapshot.window_start,
        QuizSession.created_at < boundary,
    ).all()]
    if open_ids:
        grace = int(current_app.config.get('ROLLOVER_GRACE_SEC', 120))
        if now < boundary + grace:
            current_app.logger.info(f"[rollover-defer] snapshot={snapshot_id} open_sessions={len(open_ids)}")
            return 'deferred'
        for session_id in open_ids:
            sessions.force_complete(session_id, 'period_rollover', now)
        snapshot = db.session.get(LeaderboardSnapshot, snapshot_id, populate_existing=True)

    rebuild_snapshot(snapshot, now)
    db.session.flush()
    entries = snapshot.entries.order_by(LeaderboardEntry.rank, LeaderboardEntry.user_id).all()
    key = period_key(snapshot.period, snapshot.window_start)

    history = LeaderboardHistory.query.filter_by(
        scope=snapshot.scope, scope_key=snapshot.scope_key, period=snapshot.period, window_start=snapshot.window_start,
    ).first()
    if history is None:
        top_n = int(current_app.config.get('ARCHIVE_TOP_N', 100))
        db.session.add(LeaderboardHistory(
            scope=snapshot.scope,
            scope_key=snapshot.scope_key,
            period=snapshot.period,
            window_start=snapshot.window_start,
            window_end=snapshot.window_end,
            winner_user_id=entries[0].user_id if entries else None,
            entry_count=len(entries),
            top_entries=json.dumps([e.to_dict() for e in entries[:top_n]]),
            archived_at=now,
        ))

    granted = 0
    rewarded = entries if snapshot.scope == REWARD_SCOPE else []
    for entry in rewarded:
        granted += _grant(entry.user_id, key, entry.tier, entry.rank, snapshot.period, now)
        if entry.rank == 1:
            granted += _grant(entry.user_id, key, CHAMPION_TIER, 1, snapshot.period, now)

    LeaderboardEntry.query.filter_by(snapshot_id=snapshot.id).delete(synchronize_session=False)
    snapshot.status = 'archived'
    db.session.commit()

    get_or_create_snapshot(snapshot.scope, snapshot.scope_key, snapshot.period, now)
    db.session.commit()
    current_app.logger.info(
        f"[rollover-archive] scope={snapshot.scope} key={snapshot.scope_key} period={snapshot.period} window={snapshot.window_start} entries={len(entries)} grants={granted}"
    )
    return 'archived'


def rollover(now: Optional[float] = None) -> dict:
    """Archive every live snapshot whose window has closed."""
    now = clock.now() if now is None else now
    report = {'archived': 0, 'deferred': 0, 'skipped': 0, 'failed': 0}
    closed = LeaderboardSnapshot.query.filter(
        LeaderboardSnapshot.status == 'live',
        LeaderboardSnapshot.window_end.isnot(None),
        LeaderboardSnapshot.window_end <= now,
    ).order_by(LeaderboardSnapshot.window_end, LeaderboardSnapshot.id).all()
    for snapshot_id in [s.id for s in closed]:
        try:
            report[archive_snapshot(snapshot_id, now)] += 1
        except Exception:
            db.session.rollback()
            report['failed'] += 1
            current_app.logger.exception(f"[rollover-error] snapshot={snapshot_id}")
    current_app.logger.info(f"[rollover] {report}")
    return report


def list_history(scope: str, period: str, country: Optional[str] = None, artist_id: Optional[str] = None,
                 limit: int = 10) -> list:
    if scope not in SCOPES or period not in PERIODS:
        raise InvalidLeaderboardQuery(scope=scope, period=period)
    key = scope_key(scope, country=country, artist_id=artist_id)
    if key is None:
        raise InvalidLeaderboardQuery('This scope needs a country and/or artist', scope=scope)
    rows = (
        LeaderboardHistory.query
        .filter_by(scope=scope, scope_key=key, period=period)
        .order_by(LeaderboardHistory.window_start.desc())
        .limit(max(1, min(int(limit or 10), 52)))
        .all()
    )
    return [row.to_dict() for row in rows]
