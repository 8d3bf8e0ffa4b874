"""Match state machine: clocks, turn order and how a match ends.

Callers hold the room lock. Board state and move history are opaque
strings reported by the mover's client; they are stored and relayed
verbatim after the legality verifier has had its say.
"""
from typing import Any, Callable, Optional

from chessroom.errors import InvalidRequest, OutOfTurn, Unauthorized
from . import broadcast as events
from .broadcast import Broadcaster
from .legality import LegalityVerifier
from .state import DRAW, ENDED, SEATS, WHITE, Identity, Room, other_seat

TIMEOUT = 'timeout'
RESIGNATION = 'resignation'
AGREEMENT = 'agreement'
ABANDONMENT = 'abandonment'
FORFEIT = 'forfeit'
INCONSISTENT = 'inconsistent'

# Results a client may report after detecting them on its own board
CLAIM_WIN_REASONS = {'checkmate'}
CLAIM_DRAW_REASONS = {'stalemate', 'insufficient_material', 'threefold_repetition', 'fifty_move_rule', 'draw'}

APPLIED = 'applied'


def describe_result(reason: str, winner: str) -> str:
    if winner == DRAW:
        if reason == AGREEMENT:
            return 'Game ended in a draw (mutual agreement)'
        return f"Game ended in a draw ({reason.replace('_', ' ')})"
    side = winner.capitalize()
    loser = other_seat(winner).capitalize()
    if reason == TIMEOUT:
        return f"Time's up! {side} wins!"
    if reason == RESIGNATION:
        return f"{loser} resigned. {side} wins!"
    if reason == ABANDONMENT:
        return f"{loser} disconnected. {side} wins!"
    if reason == FORFEIT:
        return f"{loser} left the board. {side} wins!"
    if reason == 'checkmate':
        return f"Checkmate! {side} wins!"
    return f"{side} wins ({reason})"


class SessionService:
    def __init__(self, clock: Callable[[], float], verifier: LegalityVerifier, broadcaster: Broadcaster, logger):
        self.clock = clock
        self.verifier = verifier
        self.broadcaster = broadcaster
        self.logger = logger
        self.on_end: Optional[Callable[[Room], None]] = None

    def _seat_of(self, room: Room, ident: Optional[Identity]) -> Optional[str]:
        return room.seat_of(ident.player_id) if ident else None

    def end(self, room: Room, winner: str, reason: str, board_state: Optional[str] = None,
            last_move: Any = None) -> bool:
        """End the running match. Ending an already finished match does nothing."""
        if not room.session_active:
            return False
        session = room.session
        now = self.clock()
        # The side to move pays for its think time up to the end
        session.charge_mover(now)
        session.status = ENDED
        session.winner = winner
        session.reason = reason
        if board_state is not None:
            session.board_state = board_state
        if last_move is not None:
            session.last_move = last_move
        payload = {
            'reason': reason,
            'winner': winner,
            'message': describe_result(reason, winner),
            'board_state': session.board_state,
            'last_move': session.last_move,
        }
        payload.update(session.clock_payload(now))
        self.logger.info(f"[session-end] room={room.code} winner={winner} reason={reason}")
        self.broadcaster.broadcast(room.code, events.SESSION_ENDED, payload)
        if self.on_end is not None:
            self.on_end(room)
        return True

    def submit_move(self, room: Room, ident: Identity, board_state: str, move_log: str, move: Any) -> Optional[str]:
        """Apply a reported move for the side to move.

        Returns APPLIED, TIMEOUT when the mover's clock ran out before the
        move arrived, or None when no match is running.
        """
        if not room.session_active:
            return None
        session = room.session
        seat = self._seat_of(room, ident)
        if seat is None or seat != session.turn:
            raise OutOfTurn()
        if not isinstance(board_state, str) or not board_state:
            raise InvalidRequest('board_state is required')
        if move_log is None:
            move_log = session.move_log
        if not self.verifier.verify_move(session, seat, board_state, move_log, move):
            raise InvalidRequest('Move rejected')
        now = self.clock()
        left = session.charge_mover(now)
        if left <= 0:
            self.end(room, other_seat(seat), TIMEOUT)
            return TIMEOUT
        session.board_state = board_state
        session.move_log = move_log
        session.last_move = move
        session.turn = other_seat(seat)
        payload = {
            'move': move,
            'board_state': board_state,
            'move_log': move_log,
            'by': seat,
        }
        payload.update(session.clock_payload(now))
        self.broadcaster.broadcast(room.code, events.MOVE_APPLIED, payload)
        return APPLIED

    def claim_terminal(self, room: Room, ident: Identity, reason: str, winner: str,
                       board_state: Optional[str] = None, last_move: Any = None) -> bool:
        if not room.session_active:
            return False
        seat = self._seat_of(room, ident)
        if seat is None:
            raise Unauthorized('Only seated players can report a result')
        if reason in CLAIM_WIN_REASONS:
            if winner not in SEATS:
                raise InvalidRequest(f'{reason} needs a winning seat')
        elif reason in CLAIM_DRAW_REASONS:
            if winner != DRAW:
                raise InvalidRequest(f'{reason} is a draw')
        else:
            raise InvalidRequest(f'Unknown result: {reason}')
        if not self.verifier.verify_terminal(room.session, seat, reason, winner, board_state):
            raise InvalidRequest('Result rejected')
        return self.end(room, winner, reason, board_state=board_state, last_move=last_move)

    def resign(self, room: Room, ident: Identity) -> bool:
        if not room.session_active:
            return False
        seat = self._seat_of(room, ident)
        if seat is None:
            raise Unauthorized('Only seated players can resign')
        return self.end(room, other_seat(seat), RESIGNATION)

    def offer_draw(self, room: Room, ident: Identity) -> bool:
        # Offers are not remembered; the opponent just gets a prompt
        if not room.session_active:
            return False
        seat = self._seat_of(room, ident)
        if seat is None:
            raise Unauthorized('Only seated players can offer a draw')
        opponent = room.occupant(other_seat(seat))
        self.broadcaster.unicast(opponent.sid if opponent else None, events.DRAW_OFFERED,
                                 {'room_code': room.code, 'from': seat})
        return True

    def accept_draw(self, room: Room, ident: Identity) -> bool:
        # Accepting without an outstanding offer still ends the match as a draw
        if not room.session_active:
            return False
        if self._seat_of(room, ident) is None:
            raise Unauthorized('Only seated players can accept a draw')
        return self.end(room, DRAW, AGREEMENT)

    def reject_draw(self, room: Room, ident: Identity) -> bool:
        if not room.session_active:
            return False
        seat = self._seat_of(room, ident)
        if seat is None:
            raise Unauthorized('Only seated players can reject a draw')
        opponent = room.occupant(other_seat(seat))
        self.broadcaster.unicast(opponent.sid if opponent else None, events.DRAW_REJECTED,
                                 {'room_code': room.code, 'from': seat})
        return True

    def sweep(self, room: Room) -> bool:
        """Flag the side to move on time even if it never moves again."""
        if not room.session_active:
            return False
        session = room.session
        now = self.clock()
        white, black = session.clocks_at(now)
        left = white if session.turn == WHITE else black
        if left > 0:
            return False
        mover = session.turn
        session.charge_mover(now)
        return self.end(room, other_seat(mover), TIMEOUT)
