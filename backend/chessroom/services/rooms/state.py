"""In-memory room state.

A room is a lobby of identities, two seats and at most one running match.
Everything here is plain data plus small helpers; the rules about who may
change what live in the services that hold the room lock.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

WHITE = 'white'
BLACK = 'black'
SEATS = (WHITE, BLACK)
DRAW = 'draw'

ACTIVE = 'active'
ENDED = 'ended'

INITIAL_BOARD = 'start'


def other_seat(seat: str) -> str:
    return BLACK if seat == WHITE else WHITE


@dataclass
class Identity:
    player_id: str
    token: str
    name: str
    sid: Optional[str] = None
    highlight: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.sid is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'player_id': self.player_id,
            'token': self.token,
            'name': self.name,
            'highlight': self.highlight,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Identity':
        return cls(
            player_id=data['player_id'],
            token=data['token'],
            name=data['name'],
            highlight=data.get('highlight'),
        )


@dataclass
class GameSession:
    duration_minutes: int
    white_time: float
    black_time: float
    last_tick: float
    turn: str = WHITE
    status: str = ACTIVE
    board_state: str = INITIAL_BOARD
    move_log: str = ''
    last_move: Any = None
    winner: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def start(cls, duration_minutes: int, now: float) -> 'GameSession':
        seconds = float(duration_minutes * 60)
        return cls(duration_minutes=duration_minutes, white_time=seconds, black_time=seconds, last_tick=now)

    @property
    def active(self) -> bool:
        return self.status == ACTIVE

    def remaining(self, seat: str) -> float:
        return self.white_time if seat == WHITE else self.black_time

    def clocks_at(self, now: float) -> Tuple[float, float]:
        """Both clocks as they stand at `now`, without committing the deduction."""
        white, black = self.white_time, self.black_time
        if self.active:
            elapsed = max(0.0, now - self.last_tick)
            if self.turn == WHITE:
                white -= elapsed
            else:
                black -= elapsed
        return max(0.0, white), max(0.0, black)

    def charge_mover(self, now: float) -> float:
        """Deduct think time from the side to move and return what it has left."""
        elapsed = max(0.0, now - self.last_tick)
        if self.turn == WHITE:
            self.white_time = max(0.0, self.white_time - elapsed)
        else:
            self.black_time = max(0.0, self.black_time - elapsed)
        self.last_tick = now
        return self.remaining(self.turn)

    def clock_payload(self, now: float) -> Dict[str, Any]:
        white, black = self.clocks_at(now)
        return {'white_time': white, 'black_time': black, 'turn': self.turn}

    def to_public_dict(self, now: float) -> Dict[str, Any]:
        payload = self.clock_payload(now)
        payload.update({
            'status': self.status,
            'duration_minutes': self.duration_minutes,
            'board_state': self.board_state,
            'move_log': self.move_log,
            'winner': self.winner,
            'reason': self.reason,
        })
        return payload

    def to_dict(self) -> Dict[str, Any]:
        return {
            'duration_minutes': self.duration_minutes,
            'white_time': self.white_time,
            'black_time': self.black_time,
            'last_tick': self.last_tick,
            'turn': self.turn,
            'status': self.status,
            'board_state': self.board_state,
            'move_log': self.move_log,
            'last_move': self.last_move,
            'winner': self.winner,
            'reason': self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GameSession':
        return cls(**data)


@dataclass
class Room:
    code: str
    admin_token_hash: str
    admin_player_id: Optional[str] = None
    admin_sid: Optional[str] = None
    identities: Dict[str, Identity] = field(default_factory=dict)
    seats: Dict[str, Optional[str]] = field(default_factory=lambda: {WHITE: None, BLACK: None})
    session: Optional[GameSession] = None
    duration_minutes: int = 5

    @property
    def session_active(self) -> bool:
        return self.session is not None and self.session.active

    @property
    def admin_connected(self) -> bool:
        return self.admin_sid is not None

    def identity(self, player_id: Optional[str]) -> Optional[Identity]:
        if player_id is None:
            return None
        return self.identities.get(player_id)

    def identity_by_token(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        for ident in self.identities.values():
            if ident.token == token:
                return ident
        return None

    def identity_by_sid(self, sid: Optional[str]) -> Optional[Identity]:
        if not sid:
            return None
        for ident in self.identities.values():
            if ident.sid == sid:
                return ident
        return None

    def seat_of(self, player_id: Optional[str]) -> Optional[str]:
        for seat in SEATS:
            if player_id is not None and self.seats[seat] == player_id:
                return seat
        return None

    def occupant(self, seat: str) -> Optional[Identity]:
        return self.identity(self.seats.get(seat))

    def vacate_player(self, player_id: str) -> Optional[str]:
        seat = self.seat_of(player_id)
        if seat:
            self.seats[seat] = None
        return seat

    def remove(self, player_id: str) -> Optional[Identity]:
        self.vacate_player(player_id)
        return self.identities.pop(player_id, None)

    def problems(self) -> List[str]:
        """Invariant violations; an active match needs two seated members."""
        found = []
        if self.session_active:
            for seat in SEATS:
                occupant = self.seats[seat]
                if occupant is None:
                    found.append(f'{seat} seat empty during active session')
                elif occupant not in self.identities:
                    found.append(f'{seat} occupant {occupant} is not in the room')
        return found

    def to_public_dict(self, now: float) -> Dict[str, Any]:
        players = []
        for ident in self.identities.values():
            players.append({
                'id': ident.player_id,
                'name': ident.name,
                'highlight': ident.highlight,
                'connected': ident.connected,
                'is_admin': ident.player_id == self.admin_player_id,
                'seat': self.seat_of(ident.player_id),
            })
        return {
            'room_code': self.code,
            'admin_id': self.admin_player_id,
            'admin_connected': self.admin_connected,
            'players': players,
            'seats': dict(self.seats),
            'duration_minutes': self.duration_minutes,
            'session': self.session.to_public_dict(now) if self.session else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'admin_token_hash': self.admin_token_hash,
            'admin_player_id': self.admin_player_id,
            'identities': [ident.to_dict() for ident in self.identities.values()],
            'seats': dict(self.seats),
            'session': self.session.to_dict() if self.session else None,
            'duration_minutes': self.duration_minutes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Room':
        identities = [Identity.from_dict(item) for item in data.get('identities', [])]
        session = data.get('session')
        return cls(
            code=data['code'],
            admin_token_hash=data['admin_token_hash'],
            admin_player_id=data.get('admin_player_id'),
            identities={ident.player_id: ident for ident in identities},
            seats={seat: data.get('seats', {}).get(seat) for seat in SEATS},
            session=GameSession.from_dict(session) if session else None,
            duration_minutes=int(data.get('duration_minutes', 5)),
        )
