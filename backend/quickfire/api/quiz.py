from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from quickfire import socketio
from quickfire.services.quiz import sessions as svc_sessions
from quickfire.services.quiz import powerups as svc_powerups
from quickfire.services.quiz.scheduler import schedule_session_timer
from quickfire.services.quiz.stats import ensure_stats
from quickfire import db


quiz = Blueprint('quiz', __name__)


def _notify(session_id: int, payload: dict) -> None:
    socketio.emit('session_update', payload, to=f"session:{session_id}", namespace='/ws')


@quiz.route('/sessions', methods=['POST'])
@login_required
def start_session():
    data = request.get_json(silent=True) or {}
    artist_id = data.get('artist_id')
    if not artist_id:
        return jsonify({'error': 'artist_id is required'}), 400
    payload = svc_sessions.start_session(current_user, str(artist_id))
    schedule_session_timer(current_app._get_current_object(), payload['id'])
    return jsonify(payload), 200 if payload.get('resumed') else 201


@quiz.route('/sessions/<int:session_id>', methods=['GET'])
@login_required
def session_state(session_id):
    return jsonify(svc_sessions.get_session_state(current_user, session_id))


@quiz.route('/sessions/<int:session_id>/answers', methods=['POST'])
@login_required
def submit_answer(session_id):
    data = request.get_json(silent=True) or {}
    if data.get('question_id') is None or data.get('selected_choice') is None:
        return jsonify({'error': 'question_id and selected_choice are required'}), 400
    result = svc_sessions.submit_answer(
        current_user,
        session_id,
        data['question_id'],
        data['selected_choice'],
        client_timestamp=data.get('client_timestamp'),
        client_remaining=data.get('client_remaining'),
        next_question_id=data.get('next_question_id'),
    )
    _notify(session_id, {'session_id': session_id, 'status': result['status'], 'remaining': result['remaining']})
    return jsonify(result)


@quiz.route('/sessions/<int:session_id>/powerups', methods=['POST'])
@login_required
def activate_powerup(session_id):
    data = request.get_json(silent=True) or {}
    if not data.get('powerup'):
        return jsonify({'error': 'powerup is required'}), 400
    result = svc_powerups.activate(
        current_user,
        session_id,
        data['powerup'],
        client_remaining=data.get('client_remaining'),
        question_id=data.get('question_id'),
    )
    # A freeze or extra time moves the next clock edge
    schedule_session_timer(current_app._get_current_object(), session_id)
    _notify(session_id, {'session_id': session_id, 'status': result['status'], 'remaining': result['remaining']})
    return jsonify(result)


@quiz.route('/sessions/<int:session_id>/complete', methods=['POST'])
@login_required
def complete_session(session_id):
    data = request.get_json(silent=True) or {}
    result = svc_sessions.complete_session(current_user, session_id, reason=data.get('reason'))
    _notify(session_id, {'session_id': session_id, 'status': result['status'], 'remaining': 0})
    return jsonify(result)


@quiz.route('/stats', methods=['GET'])
@login_required
def my_stats():
    stats = ensure_stats(current_user.id)
    db.session.commit()
    return jsonify(stats.to_dict())
