from flask_socketio import join_room, leave_room, emit
from flask_login import current_user

from quickfire import socketio, db
from quickfire.models import QuizSession
from quickfire.services.quiz import clock
from quickfire.services.quiz.sessions import state_payload, sync_clock
from quickfire.services.leaderboard.periods import SCOPES, PERIODS


def handle_connect():
    emit('connected', {'message': 'Connected to /ws'})


def handle_join_session(data):
    session_id = (data or {}).get('session_id')
    if not session_id:
        emit('error', {'message': 'session_id is required'})
        return
    if not current_user.is_authenticated:
        emit('error', {'message': 'unauthorized'})
        return
    try:
        session = db.session.get(QuizSession, int(session_id))
    except (TypeError, ValueError):
        session = None
    if session is None or session.user_id != current_user.id:
        emit('error', {'message': 'Quiz session not found'})
        return
    room = f"session:{session.id}"
    join_room(room)
    # Late joiners get the current clock right away
    now = clock.now()
    sync_clock(session, now)
    emit('joined', {'room': room, 'state': state_payload(session, now)})


def handle_leave_session(data):
    session_id = (data or {}).get('session_id')
    if not session_id:
        emit('error', {'message': 'session_id is required'})
        return
    room = f"session:{session_id}"
    leave_room(room)
    emit('left', {'room': room})


def handle_join_leaderboard(data):
    scope = (data or {}).get('scope')
    period = (data or {}).get('period')
    if scope not in SCOPES or period not in PERIODS:
        emit('error', {'message': 'A valid scope and period are required'})
        return
    room = f"leaderboard:{scope}:{period}"
    join_room(room)
    emit('joined', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = (
        ('connect', handle_connect),
        ('join_session', handle_join_session),
        ('leave_session', handle_leave_session),
        ('join_leaderboard', handle_join_leaderboard),
        ('ping', handle_ping),
    )
    for event, handler in handlers:
        socketio.on_event(event, handler, namespace='/ws')

    if testing:
        # Test-only mirror on default namespace
        for event, handler in handlers:
            socketio.on_event(event, handler, namespace='/')
