from flask import Blueprint, jsonify, request
from flask_login import current_user

from quickfire.services.leaderboard.aggregator import query_leaderboard
from quickfire.services.leaderboard.archive import list_history
from quickfire.services.leaderboard.periods import SCOPE_GLOBAL, PERIOD_WEEKLY


leaderboard = Blueprint('leaderboard', __name__)


def _int_arg(name, default):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


@leaderboard.route('', methods=['GET'])
def get_leaderboard():
    user_id = current_user.id if current_user.is_authenticated else None
    result = query_leaderboard(
        request.args.get('scope', SCOPE_GLOBAL),
        request.args.get('period', PERIOD_WEEKLY),
        country=request.args.get('country'),
        artist_id=request.args.get('artist'),
        page=_int_arg('page', 1),
        per_page=_int_arg('per_page', 50),
        user_id=user_id,
    )
    return jsonify(result)


@leaderboard.route('/history', methods=['GET'])
def get_history():
    rows = list_history(
        request.args.get('scope', SCOPE_GLOBAL),
        request.args.get('period', PERIOD_WEEKLY),
        country=request.args.get('country'),
        artist_id=request.args.get('artist'),
        limit=_int_arg('limit', 10),
    )
    return jsonify(rows)
