from functools import wraps
import hmac

from flask import Blueprint, jsonify, request, current_app

from quickfire.services.leaderboard.archive import rollover
from quickfire.services.quiz.anticheat import review_session


admin = Blueprint('admin', __name__)


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        expected = current_app.config.get('ADMIN_TOKEN')
        supplied = request.headers.get('X-Admin-Token', '')
        if not expected or not hmac.compare_digest(str(expected), supplied):
            return jsonify({'error': 'forbidden'}), 403
        return view(*args, **kwargs)
    return wrapper


@admin.route('/rollover', methods=['POST'])
@admin_required
def trigger_rollover():
    report = rollover()
    return jsonify(report)


@admin.route('/sessions/<int:session_id>/review', methods=['POST'])
@admin_required
def review(session_id):
    data = request.get_json(silent=True) or {}
    session = review_session(session_id, data.get('outcome'))
    return jsonify({'session_id': session.id, 'review_status': session.review_status})
