import re
import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Mapping, Optional, Set

from flask_bcrypt import Bcrypt
from flask_socketio import SocketIO

from chessroom.errors import InvalidRequest, InvalidRoomCode, OutOfTurn, Unauthorized
from . import broadcast as events
from .broadcast import Broadcaster
from .checkpoint import Checkpoint, CheckpointWriter, NullCheckpoint
from .legality import LegalityVerifier, TrustingVerifier
from .registry import RoomRegistry
from .seats import SeatService
from .session import ABANDONMENT, FORFEIT, INCONSISTENT, TIMEOUT, SessionService
from .state import BLACK, DRAW, SEATS, WHITE, Identity, Room, other_seat
from .timers import ADMIN_ABSENCE, SEAT_ABANDONMENT, GraceTimerManager
from .tokens import IdentityTokenStore

HIGHLIGHT_RE = re.compile(r'^#[0-9a-fA-F]{6}$')


class RoomManager:
    """Entry point for every room event.

    Each public method is one client event (or timer/sweep tick). It takes
    the room's lock, lets the seat/session services mutate the room,
    broadcasts the result and then hands a registry snapshot to the
    checkpoint writer.
    """

    def __init__(self, socketio: SocketIO, hasher: Bcrypt, logger, config: Mapping[str, Any],
                 clock=time.time, spawn=None, sleep=None, checkpoint: Optional[Checkpoint] = None,
                 verifier: Optional[LegalityVerifier] = None):
        self.logger = logger
        self.clock = clock
        self._spawn = spawn or socketio.start_background_task
        self._sleep = sleep or socketio.sleep
        self.broadcaster = Broadcaster(socketio)
        self.tokens = IdentityTokenStore(hasher)
        self.registry = RoomRegistry(self.tokens)
        self.timers = GraceTimerManager(
            self.registry.lock_for, self._spawn, sleep=self._sleep, clock=clock, logger=logger,
            grace_period=float(config.get('GRACE_PERIOD_SEC', 60)),
        )
        self.registry.on_delete(self.timers.cancel_room)
        self.sessions = SessionService(clock, verifier or TrustingVerifier(), self.broadcaster, logger)
        self.sessions.on_end = self._on_session_end
        self.seats = SeatService(self.tokens, self.sessions, self.broadcaster, clock,
                                 config.get('ALLOWED_DURATIONS', (3, 5, 7)))
        self.writer = CheckpointWriter(checkpoint or NullCheckpoint(), self._spawn, logger,
                                       run_async=bool(config.get('CHECKPOINT_ASYNC', True)))
        self.default_duration = int(config.get('DEFAULT_DURATION_MIN', 5))
        self.max_name_length = int(config.get('MAX_NAME_LENGTH', 32))
        self.max_chat_length = int(config.get('MAX_CHAT_LENGTH', 500))
        self.sweep_interval = float(config.get('CLOCK_SWEEP_INTERVAL_SEC', 1.0))
        self._sweeping = False
        self._sid_rooms: Dict[str, Set[str]] = {}
        self._sid_lock = threading.Lock()

    # ---- plumbing ----

    @contextmanager
    def _room(self, code, persist: bool = True):
        """Hold the room lock for one event; persist afterwards unless told not to."""
        code = str(code) if code is not None else None
        if self.registry.get(code) is None:
            raise InvalidRoomCode()
        with self.registry.lock_for(code):
            room = self.registry.lookup(code)
            self._heal(room)
            yield room
            if persist:
                self._commit(room)

    def _commit(self, room: Room) -> None:
        if self.registry.get(room.code) is room:
            self._heal(room)
            self.registry.record(room)
        self.writer.submit(self.registry.snapshot())

    def _heal(self, room: Room) -> bool:
        problems = room.problems()
        if not problems:
            return False
        self.logger.error(f"[inconsistent-state] room={room.code} problems={problems}")
        seated = [seat for seat in SEATS if room.seats[seat] in room.identities]
        for seat in SEATS:
            if room.seats[seat] not in room.identities:
                room.seats[seat] = None
        winner = seated[0] if len(seated) == 1 else DRAW
        self.sessions.end(room, winner, INCONSISTENT)
        self._lobby(room)
        return True

    def _lobby(self, room: Room) -> None:
        self.broadcaster.broadcast(room.code, events.LOBBY_UPDATED, room.to_public_dict(self.clock()))

    def _bind_sid(self, sid: str, code: str) -> None:
        with self._sid_lock:
            self._sid_rooms.setdefault(sid, set()).add(code)

    def _unbind_sid(self, sid: Optional[str], code: str) -> None:
        if sid is None:
            return
        with self._sid_lock:
            codes = self._sid_rooms.get(sid)
            if codes is not None:
                codes.discard(code)
                if not codes:
                    del self._sid_rooms[sid]

    def _clean_name(self, name) -> str:
        name = str(name or '').strip()[:self.max_name_length]
        return name or 'Player'

    def _member(self, room: Room, sid: str) -> Identity:
        ident = room.identity_by_sid(sid)
        if ident is None:
            raise Unauthorized('Join the room first')
        return ident

    def _require_admin(self, room: Room, sid: str) -> None:
        if not self.tokens.is_admin(room, sid):
            raise Unauthorized()

    def _close(self, room: Room, reason: str) -> None:
        code = room.code
        self.logger.info(f"[room-close] room={code} reason={reason}")
        self.broadcaster.broadcast(code, events.ROOM_CLOSED, {'room_code': code, 'reason': reason})
        self.broadcaster.close(code)
        self.registry.delete(code)

    # ---- grace timers ----

    def _arm_admin_absence(self, room: Room) -> None:
        code = room.code
        self.timers.arm(code, ADMIN_ABSENCE, None, lambda: self._admin_absence_expired(code))

    def _arm_abandonment(self, room: Room, ident: Identity):
        code, player_id = room.code, ident.player_id
        return self.timers.arm(code, SEAT_ABANDONMENT, player_id,
                               lambda: self._abandonment_expired(code, player_id))

    def _admin_absence_expired(self, code: str) -> None:
        try:
            with self._room(code) as room:
                if room.admin_connected or room.session_active:
                    return
                self._close(room, 'admin_left')
        except InvalidRoomCode:
            return

    def _abandonment_expired(self, code: str, player_id: str) -> None:
        try:
            with self._room(code) as room:
                ident = room.identity(player_id)
                if ident is None or ident.connected:
                    return
                seat = room.seat_of(player_id)
                if seat and room.session_active:
                    self.sessions.end(room, other_seat(seat), ABANDONMENT)
                room.remove(player_id)
                self.logger.info(f"[abandon] room={code} player={player_id} seat={seat}")
                if player_id == room.admin_player_id:
                    room.admin_player_id = None
                if not room.identities and not room.session_active:
                    self._close(room, 'empty')
                else:
                    self._lobby(room)
        except InvalidRoomCode:
            return

    def _on_session_end(self, room: Room) -> None:
        # The admin-absence timer is only held off while a match is running
        if not room.admin_connected and self.timers.pending(room.code, ADMIN_ABSENCE) is None:
            self._arm_admin_absence(room)

    # ---- events ----

    def public_view(self, code) -> Dict[str, Any]:
        with self._room(code, persist=False) as room:
            return room.to_public_dict(self.clock())

    def create_room(self, sid: str, name) -> Room:
        room, admin_token, creator = self.registry.create(self._clean_name(name), sid, self.default_duration)
        with self._room(room.code) as room:
            self._bind_sid(sid, room.code)
            self.broadcaster.enter(sid, room.code)
            self.broadcaster.unicast(sid, events.ROOM_CREATED, {
                'room_code': room.code,
                'is_admin': True,
                'admin_token': admin_token,
                'player_token': creator.token,
                'player_id': creator.player_id,
            })
            self._lobby(room)
        self.logger.info(f"[room-create] room={room.code} by={creator.name}")
        return room

    def join_room(self, sid: str, code, name=None, admin_token: Optional[str] = None,
                  player_token: Optional[str] = None) -> Identity:
        with self._room(code) as room:
            prior = room.identity_by_sid(sid)
            ident, reconnected = self.tokens.resolve(room, player_token, sid, self._clean_name(name))
            if prior is not None and prior is not ident:
                # This connection switched to another identity
                self._release(room, prior)
            self._bind_sid(sid, room.code)
            self.broadcaster.enter(sid, room.code)
            seat = room.seat_of(ident.player_id)
            if reconnected:
                self.logger.info(f"[reconnect] room={room.code} player={ident.player_id}")
                if self.timers.cancel(room.code, SEAT_ABANDONMENT, ident.player_id) and room.session_active and seat:
                    self.broadcaster.broadcast(room.code, events.SEAT_RECONNECTED,
                                               {'seat': seat, 'player_id': ident.player_id})

            is_admin = self.tokens.is_admin(room, sid)
            if not is_admin and self.tokens.verify_admin(room, admin_token):
                previous = room.identity(room.admin_player_id)
                room.admin_sid = sid
                room.admin_player_id = ident.player_id
                is_admin = True
                self.timers.cancel(room.code, ADMIN_ABSENCE)
                self.logger.info(f"[admin-return] room={room.code} player={ident.player_id}")
                # A stale admin identity left behind by a lost player token
                if (previous is not None and previous is not ident and not previous.connected
                        and not (room.session_active and room.seat_of(previous.player_id))):
                    room.remove(previous.player_id)

            self.broadcaster.unicast(sid, events.JOINED_ROOM, {
                'room_code': room.code,
                'is_admin': is_admin,
                'admin_token': admin_token if is_admin else None,
                'player_token': ident.token,
                'player_id': ident.player_id,
                'reconnected': reconnected,
            })
            self._lobby(room)
            if room.session_active:
                session = room.session
                payload = {
                    'white_id': room.seats[WHITE],
                    'black_id': room.seats[BLACK],
                    'seat': seat,
                    'board_state': session.board_state,
                    'move_log': session.move_log,
                    'last_move': session.last_move,
                    'duration_minutes': session.duration_minutes,
                }
                payload.update(session.clock_payload(self.clock()))
                self.broadcaster.unicast(sid, events.SESSION_RESUMED, payload)
            return ident

    def assign_seat(self, sid: str, code, player_id: Optional[str], seat: Optional[str]) -> None:
        with self._room(code) as room:
            if self.seats.assign(room, sid, player_id, seat):
                self._lobby(room)

    def vacate_seat(self, sid: str, code, seat: Optional[str]) -> None:
        with self._room(code) as room:
            if self.seats.vacate(room, sid, seat):
                self._lobby(room)

    def start_session(self, sid: str, code, duration_minutes=None) -> None:
        with self._room(code) as room:
            self.seats.start(room, sid, duration_minutes)
            self.logger.info(f"[session-start] room={room.code} duration={room.duration_minutes}m")
            self._lobby(room)

    def submit_move(self, sid: str, code, board_state, move_log=None, move=None) -> Optional[str]:
        with self._room(code) as room:
            ident = room.identity_by_sid(sid)
            if ident is None:
                raise OutOfTurn()
            result = self.sessions.submit_move(room, ident, board_state, move_log, move)
            if result == TIMEOUT:
                self._lobby(room)
            return result

    def claim_terminal(self, sid: str, code, reason, winner, board_state=None, last_move=None) -> bool:
        with self._room(code) as room:
            ended = self.sessions.claim_terminal(room, self._member(room, sid), reason, winner,
                                                 board_state=board_state, last_move=last_move)
            if ended:
                self._lobby(room)
            return ended

    def resign(self, sid: str, code) -> bool:
        with self._room(code) as room:
            ended = self.sessions.resign(room, self._member(room, sid))
            if ended:
                self._lobby(room)
            return ended

    def offer_draw(self, sid: str, code) -> None:
        with self._room(code, persist=False) as room:
            self.sessions.offer_draw(room, self._member(room, sid))

    def accept_draw(self, sid: str, code) -> bool:
        with self._room(code) as room:
            ended = self.sessions.accept_draw(room, self._member(room, sid))
            if ended:
                self._lobby(room)
            return ended

    def reject_draw(self, sid: str, code) -> None:
        with self._room(code, persist=False) as room:
            self.sessions.reject_draw(room, self._member(room, sid))

    def kick(self, sid: str, code, player_id: Optional[str]) -> None:
        with self._room(code) as room:
            self._require_admin(room, sid)
            target = room.identity(player_id)
            if target is None:
                raise InvalidRequest('Unknown player')
            if target.player_id == room.admin_player_id:
                raise InvalidRequest('The admin cannot be kicked')
            seat = room.seat_of(target.player_id)
            if seat and room.session_active:
                self.sessions.end(room, other_seat(seat), FORFEIT)
            self.timers.cancel(room.code, SEAT_ABANDONMENT, target.player_id)
            room.remove(target.player_id)
            self.logger.info(f"[kick] room={room.code} player={target.player_id}")
            self.broadcaster.unicast(target.sid, events.KICKED, {'room_code': room.code})
            self.broadcaster.leave(target.sid, room.code)
            self._unbind_sid(target.sid, room.code)
            self._lobby(room)

    def set_highlight(self, sid: str, code, player_id: Optional[str], color: Optional[str]) -> None:
        with self._room(code) as room:
            self._require_admin(room, sid)
            target = room.identity(player_id)
            if target is None:
                raise InvalidRequest('Unknown player')
            if color and not HIGHLIGHT_RE.match(str(color)):
                raise InvalidRequest('Highlight must be a #rrggbb colour')
            target.highlight = color or None
            self._lobby(room)

    def send_chat(self, sid: str, code, message) -> None:
        with self._room(code, persist=False) as room:
            ident = self._member(room, sid)
            text = str(message or '').strip()[:self.max_chat_length]
            if not text:
                return
            self.broadcaster.broadcast(room.code, events.CHAT_MESSAGE, {
                'player_id': ident.player_id,
                'name': ident.name,
                'message': text,
                'is_admin': self.tokens.is_admin(room, sid),
            })

    def disconnect(self, sid: str) -> None:
        with self._sid_lock:
            codes = self._sid_rooms.pop(sid, set())
        for code in codes:
            try:
                self._drop(sid, code)
            except InvalidRoomCode:
                continue
            except Exception:
                self.logger.exception(f"[handler-fault] event=disconnect room={code} sid={sid}")

    def _drop(self, sid: str, code: str) -> None:
        with self._room(code) as room:
            was_admin = room.admin_sid == sid
            if was_admin:
                room.admin_sid = None
                if not room.session_active:
                    self._arm_admin_absence(room)
            ident = room.identity_by_sid(sid)
            if ident is None:
                if was_admin:
                    self._lobby(room)
                return
            ident.sid = None
            self._release(room, ident)
            if not room.identities and not room.session_active:
                self._close(room, 'empty')
            else:
                self._lobby(room)

    def _protected(self, room: Room, ident: Identity) -> bool:
        """The admin and the seats of a running match survive a lost connection."""
        if ident.player_id == room.admin_player_id:
            return True
        return room.session_active and room.seat_of(ident.player_id) is not None

    def _release(self, room: Room, ident: Identity) -> None:
        """Handle an identity that just lost its connection."""
        seat = room.seat_of(ident.player_id)
        if seat and room.session_active:
            timer = self._arm_abandonment(room, ident)
            self.logger.info(f"[seat-drop] room={room.code} seat={seat} deadline={timer.deadline}")
            self.broadcaster.broadcast(room.code, events.SEAT_DISCONNECTED, {
                'seat': seat,
                'player_id': ident.player_id,
                'deadline': timer.deadline,
                'grace_seconds': self.timers.grace_period,
            })
        elif not self._protected(room, ident):
            # Unprotected lobby members leave straight away
            room.remove(ident.player_id)

    # ---- clocks ----

    def sweep_clocks(self) -> int:
        """End every match whose side to move has run out of time."""
        ended = 0
        for code in self.registry.codes():
            try:
                with self._room(code, persist=False) as room:
                    if self.sessions.sweep(room):
                        ended += 1
                        self._lobby(room)
                        self._commit(room)
            except InvalidRoomCode:
                continue
            except Exception:
                self.logger.exception(f"[handler-fault] event=sweep room={code}")
        return ended

    def start_sweeper(self) -> None:
        if self._sweeping:
            return
        self._sweeping = True
        self._spawn(self._sweep_loop)

    def _sweep_loop(self) -> None:
        while self._sweeping:
            self._sleep(self.sweep_interval)
            self.sweep_clocks()

    # ---- lifecycle ----

    def restore(self) -> int:
        """Load rooms from the checkpoint; connections and timers start fresh."""
        snapshot = self.writer.load()
        restored = 0
        for code, data in snapshot.items():
            try:
                room = Room.from_dict(data)
            except (KeyError, TypeError, ValueError):
                self.logger.exception(f"[checkpoint-fail] skipping unreadable room={code}")
                continue
            # No connection survives a restart, so only protected identities stay
            for ident in list(room.identities.values()):
                if not self._protected(room, ident):
                    room.remove(ident.player_id)
            self.registry.adopt(room)
            with self.registry.lock_for(room.code):
                if room.session_active:
                    for seat in SEATS:
                        occupant = room.occupant(seat)
                        if occupant is not None:
                            self._arm_abandonment(room, occupant)
                else:
                    self._arm_admin_absence(room)
            restored += 1
        self.logger.info(f"[checkpoint-load] rooms={restored}")
        return restored

    def shutdown(self) -> None:
        self._sweeping = False
        self.writer.flush(self.registry.snapshot())
