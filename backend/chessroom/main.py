from flask import Blueprint, jsonify
from chessroom import get_rooms

main = Blueprint('main', __name__)


@main.route('/api/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok', 'rooms': len(get_rooms().registry)})
