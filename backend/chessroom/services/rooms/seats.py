from typing import Callable, Iterable, Optional

from chessroom.errors import InvalidRequest, Unauthorized
from . import broadcast as events
from .broadcast import Broadcaster
from .session import FORFEIT, SessionService
from .state import BLACK, SEATS, WHITE, GameSession, Room, other_seat
from .tokens import IdentityTokenStore


class SeatService:
    """Admin-only seat changes and match start."""

    def __init__(self, tokens: IdentityTokenStore, sessions: SessionService, broadcaster: Broadcaster,
                 clock: Callable[[], float], allowed_durations: Iterable[int]):
        self.tokens = tokens
        self.sessions = sessions
        self.broadcaster = broadcaster
        self.clock = clock
        self.allowed_durations = tuple(allowed_durations)

    def _require_admin(self, room: Room, sid: Optional[str]) -> None:
        if not self.tokens.is_admin(room, sid):
            raise Unauthorized()

    def _require_seat(self, seat: Optional[str]) -> str:
        if seat not in SEATS:
            raise InvalidRequest(f'Unknown seat: {seat}')
        return seat

    def assign(self, room: Room, sid: str, player_id: Optional[str], seat: Optional[str]) -> bool:
        self._require_admin(room, sid)
        seat = self._require_seat(seat)
        if room.session_active:
            raise InvalidRequest('Seats cannot change during a match')
        ident = room.identity(player_id)
        if ident is None:
            raise InvalidRequest('Unknown player')
        if room.seats[seat] == ident.player_id:
            return False
        # One seat per identity
        if room.seats[other_seat(seat)] == ident.player_id:
            room.seats[other_seat(seat)] = None
        room.seats[seat] = ident.player_id
        return True

    def vacate(self, room: Room, sid: str, seat: Optional[str]) -> bool:
        """Empty a seat. Emptying a seat mid-match forfeits it."""
        self._require_admin(room, sid)
        seat = self._require_seat(seat)
        if room.seats[seat] is None:
            return False
        if room.session_active:
            self.sessions.end(room, other_seat(seat), FORFEIT)
        room.seats[seat] = None
        return True

    def start(self, room: Room, sid: str, duration_minutes=None) -> GameSession:
        self._require_admin(room, sid)
        if room.session_active:
            raise InvalidRequest('A match is already in progress')
        if duration_minutes is None:
            duration_minutes = room.duration_minutes
        try:
            duration_minutes = int(duration_minutes)
        except (TypeError, ValueError):
            raise InvalidRequest('Invalid match duration')
        if duration_minutes not in self.allowed_durations:
            raise InvalidRequest(f'Match duration must be one of {list(self.allowed_durations)} minutes')
        if not all(room.seats[seat] for seat in SEATS):
            raise InvalidRequest('Both seats must be filled to start.')
        now = self.clock()
        room.duration_minutes = duration_minutes
        room.session = GameSession.start(duration_minutes, now)
        payload = {
            'white_id': room.seats[WHITE],
            'black_id': room.seats[BLACK],
            'board_state': room.session.board_state,
            'duration_minutes': duration_minutes,
        }
        payload.update(room.session.clock_payload(now))
        self.broadcaster.broadcast(room.code, events.SESSION_STARTED, payload)
        return room.session
