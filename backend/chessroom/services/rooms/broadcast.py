from typing import Any, Dict, Optional

from flask_socketio import SocketIO

NAMESPACE = '/ws'

# Outgoing events
ROOM_CREATED = 'room_created'
JOINED_ROOM = 'joined_room'
LOBBY_UPDATED = 'lobby_updated'
SESSION_STARTED = 'session_started'
SESSION_RESUMED = 'session_resumed'
MOVE_APPLIED = 'move_applied'
SESSION_ENDED = 'session_ended'
SEAT_DISCONNECTED = 'seat_disconnected'
SEAT_RECONNECTED = 'seat_reconnected'
DRAW_OFFERED = 'draw_offered'
DRAW_REJECTED = 'draw_rejected'
KICKED = 'kicked'
ROOM_CLOSED = 'room_closed'
CHAT_MESSAGE = 'chat_message'
ERROR = 'error'


def room_channel(code: str) -> str:
    return f"room:{code}"


class Broadcaster:
    """Fan-out to a whole room or unicast to one connection."""

    def __init__(self, socketio: SocketIO, namespace: str = NAMESPACE):
        self.socketio = socketio
        self.namespace = namespace

    def broadcast(self, code: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.socketio.emit(event, payload or {}, to=room_channel(code), namespace=self.namespace)

    def unicast(self, sid: Optional[str], event: str, payload: Any = None) -> None:
        if sid is None:
            return
        self.socketio.emit(event, payload if payload is not None else {}, to=sid, namespace=self.namespace)

    def enter(self, sid: str, code: str) -> None:
        self.socketio.server.enter_room(sid, room_channel(code), namespace=self.namespace)

    def leave(self, sid: Optional[str], code: str) -> None:
        if sid is None:
            return
        self.socketio.server.leave_room(sid, room_channel(code), namespace=self.namespace)

    def close(self, code: str) -> None:
        self.socketio.server.close_room(room_channel(code), namespace=self.namespace)
