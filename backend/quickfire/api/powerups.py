from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from quickfire.services.quiz import powerups as svc_powerups


powerups = Blueprint('powerups', __name__)


@powerups.route('/catalog', methods=['GET'])
def get_catalog():
    return jsonify([p.to_dict() for p in svc_powerups.catalog()])


@powerups.route('/inventory', methods=['GET'])
@login_required
def get_inventory():
    return jsonify(svc_powerups.inventory(current_user.id))


@powerups.route('/purchase', methods=['POST'])
@login_required
def purchase():
    data = request.get_json(silent=True) or {}
    if not data.get('powerup'):
        return jsonify({'error': 'powerup is required'}), 400
    result = svc_powerups.purchase(current_user, data['powerup'], data.get('quantity', 1))
    return jsonify(result), 201
