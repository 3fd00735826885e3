import time
from typing import Set, Tuple

from quickfire import db, socketio
from quickfire.models import QuizSession
from . import clock
from .locks import user_lock
from .sessions import sync_clock, finalize_if_due, next_deadline, state_payload, sweep_stale_sessions
from quickfire.services.leaderboard.aggregator import rebuild_dirty_snapshots
from quickfire.services.leaderboard.archive import rollover


_scheduled_timer_keys: Set[Tuple[int, int]] = set()


def emit_session_update(session: QuizSession, now: float) -> None:
    socketio.emit('session_update', state_payload(session, now), to=f"session:{session.id}", namespace='/ws')


def schedule_session_timer(app, session_id: int) -> None:
    """Schedule a wake-up at the session's next clock edge.

    - No-ops in TESTING mode unless ENABLE_SCHEDULER_IN_TESTS is set
    - Ensures a single timer per (session_id, deadline)
    - On wake: countdown -> active, paused -> active, or time-up completion,
      then pushes ``session_update`` and re-arms while the session is open

    Lazy ``sync_clock`` on every request keeps the session correct without
    this timer; the timer only makes transitions visible to idle clients.
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return

    with app.app_context():
        session = db.session.get(QuizSession, session_id)
        if session is None or not session.is_open:
            return
        deadline = next_deadline(session)
        if deadline is None:
            return
        key = (session.id, int(deadline * 1000))
        if key in _scheduled_timer_keys:
            app.logger.info(f"[timer-skip] session={session.id} deadline={deadline} already scheduled")
            return
        _scheduled_timer_keys.add(key)
        delay = max(0.0, deadline - clock.now())
        app.logger.info(f"[timer-set] session={session.id} status={session.status} delay={delay:.2f}s deadline={deadline}")

    def _worker(sid: int, timer_key: Tuple[int, int], delay_sec: float):
        hb = int(app.config.get('TIMER_HEARTBEAT_SEC', 0) or 0)
        if hb > 0:
            slept = 0.0
            while slept < delay_sec:
                step = min(hb, delay_sec - slept)
                time.sleep(step)
                slept += step
                app.logger.info(f"[timer-heartbeat] session={sid} remaining={max(0.0, delay_sec - slept):.1f}s")
        else:
            time.sleep(delay_sec)
        with app.app_context():
            _scheduled_timer_keys.discard(timer_key)
            s = db.session.get(QuizSession, sid)
            if s is None or not s.is_open:
                return
            with user_lock(s.user_id):
                s = db.session.get(QuizSession, sid, populate_existing=True)
                if not s.is_open:
                    return
                now = clock.now()
                changed = sync_clock(s, now)
                completion = finalize_if_due(s, now)
                if completion is None:
                    db.session.commit()
                app.logger.info(f"[timer-fire] session={sid} status={s.status} changed={changed}")
                emit_session_update(s, now)
            if s.is_open:
                schedule_session_timer(app, sid)

    if app.config.get('TESTING'):
        _worker(session_id, key, delay)
    else:
        socketio.start_background_task(_worker, session_id, key, delay)


def run_maintenance(app) -> dict:
    """One pass of the periodic jobs: stale sweep, dirty rebuilds, period rollover."""
    with app.app_context():
        closed = sweep_stale_sessions()
        rebuilt = rebuild_dirty_snapshots()
        report = rollover()
    return {'closed': closed, 'rebuilt': rebuilt, 'rollover': report}


def start_maintenance_loop(app) -> None:
    interval = int(app.config.get('MAINTENANCE_INTERVAL_SEC', 0) or 0)
    if interval <= 0:
        return

    def _loop():
        while True:
            time.sleep(interval)
            try:
                run_maintenance(app)
            except Exception:
                app.logger.exception('[maintenance-error]')

    app.logger.info(f"[maintenance] loop every {interval}s")
    socketio.start_background_task(_loop)
