from flask_socketio import emit
from flask import current_app, request
from chessroom import socketio, get_rooms
from chessroom.errors import RoomError
from chessroom.services.rooms.broadcast import ERROR, NAMESPACE
from typing import Any, Dict
import functools


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _as_dict(data, key: str) -> Dict[str, Any]:
    """Accept either a payload dict or the bare value of its main field."""
    if isinstance(data, dict):
        return data
    if data is None:
        return {}
    return {key: data}


def guarded(key: str = 'room_code'):
    """Per-event fault boundary.

    Expected room errors go back to the caller as an `error` event (or are
    dropped when silent); anything else is logged and never escapes the
    handler, so one bad event cannot take down the room or the server.
    """
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(data=None):
            payload = _as_dict(data, key)
            try:
                return fn(payload)
            except RoomError as exc:
                if exc.silent:
                    current_app.logger.debug(f"[dropped] event={fn.__name__} reason={exc.message}")
                    return None
                emit(ERROR, {'message': exc.message})
            except Exception:
                current_app.logger.exception(
                    f"[handler-fault] event={fn.__name__} sid={_get_sid()} room={payload.get('room_code')}"
                )
                emit(ERROR, {'message': 'Something went wrong handling that request'})
            return None
        return wrapper
    return decorator


def handle_connect(auth=None):
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect(reason=None):
    try:
        get_rooms().disconnect(_get_sid())
    except Exception:
        current_app.logger.exception(f"[handler-fault] event=disconnect sid={_get_sid()}")


@guarded('name')
def handle_create_room(data):
    get_rooms().create_room(_get_sid(), data.get('name'))


@guarded()
def handle_join_room(data):
    get_rooms().join_room(
        _get_sid(),
        data.get('room_code'),
        name=data.get('name'),
        admin_token=data.get('admin_token'),
        player_token=data.get('player_token'),
    )


@guarded()
def handle_assign_seat(data):
    get_rooms().assign_seat(_get_sid(), data.get('room_code'), data.get('player_id'), data.get('seat'))


@guarded()
def handle_vacate_seat(data):
    get_rooms().vacate_seat(_get_sid(), data.get('room_code'), data.get('seat'))


@guarded()
def handle_start_session(data):
    get_rooms().start_session(_get_sid(), data.get('room_code'), data.get('duration_minutes'))


@guarded()
def handle_submit_move(data):
    get_rooms().submit_move(
        _get_sid(),
        data.get('room_code'),
        data.get('board_state'),
        move_log=data.get('move_log'),
        move=data.get('move'),
    )


@guarded()
def handle_claim_terminal(data):
    get_rooms().claim_terminal(
        _get_sid(),
        data.get('room_code'),
        data.get('reason'),
        data.get('winner'),
        board_state=data.get('board_state'),
        last_move=data.get('last_move'),
    )


@guarded()
def handle_resign(data):
    get_rooms().resign(_get_sid(), data.get('room_code'))


@guarded()
def handle_offer_draw(data):
    get_rooms().offer_draw(_get_sid(), data.get('room_code'))


@guarded()
def handle_accept_draw(data):
    get_rooms().accept_draw(_get_sid(), data.get('room_code'))


@guarded()
def handle_reject_draw(data):
    get_rooms().reject_draw(_get_sid(), data.get('room_code'))


@guarded()
def handle_kick(data):
    get_rooms().kick(_get_sid(), data.get('room_code'), data.get('player_id'))


@guarded()
def handle_set_highlight(data):
    get_rooms().set_highlight(_get_sid(), data.get('room_code'), data.get('player_id'), data.get('color'))


@guarded()
def handle_send_chat(data):
    get_rooms().send_chat(_get_sid(), data.get('room_code'), data.get('message'))


def handle_ping(data):
    emit('pong', data or {})


EVENT_HANDLERS = {
    'create_room': handle_create_room,
    'join_room': handle_join_room,
    'assign_seat': handle_assign_seat,
    'vacate_seat': handle_vacate_seat,
    'start_session': handle_start_session,
    'submit_move': handle_submit_move,
    'claim_terminal': handle_claim_terminal,
    'resign': handle_resign,
    'offer_draw': handle_offer_draw,
    'accept_draw': handle_accept_draw,
    'reject_draw': handle_reject_draw,
    'kick': handle_kick,
    'set_highlight': handle_set_highlight,
    'send_chat': handle_send_chat,
    'ping': handle_ping,
}


def register_socketio_handlers(namespace: str = NAMESPACE) -> None:
    """Register Socket.IO event handlers on the room namespace."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    for event, handler in EVENT_HANDLERS.items():
        socketio.on_event(event, handler, namespace=namespace)
