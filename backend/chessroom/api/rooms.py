from flask import Blueprint, jsonify
from chessroom import get_rooms
from chessroom.errors import InvalidRoomCode

rooms = Blueprint('rooms', __name__)


@rooms.route('/<string:room_code>', methods=['GET'])
def get_room_state(room_code):
    """
    Returns the public lobby view of a room: players, seats and the match clock.
    """
    try:
        return jsonify(get_rooms().public_view(room_code))
    except InvalidRoomCode:
        return jsonify({'error': 'Room not found'}), 404
