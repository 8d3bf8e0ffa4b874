"""Legality verification seam.

Move legality and game-over detection happen in the mover's client. The
server stores and relays what clients report. A deployment that wants to
check reports can point LEGALITY_VERIFIER at its own subclass.
"""
import importlib


class LegalityVerifier:
    def verify_move(self, session, seat, board_state, move_log, move) -> bool:
        raise NotImplementedError

    def verify_terminal(self, session, seat, reason, winner, board_state) -> bool:
        raise NotImplementedError


class TrustingVerifier(LegalityVerifier):
    """Accepts every client report as-is."""

    def verify_move(self, session, seat, board_state, move_log, move) -> bool:
        return True

    def verify_terminal(self, session, seat, reason, winner, board_state) -> bool:
        return True


def load_verifier(path: str) -> LegalityVerifier:
    """Instantiate a verifier from a 'module:Class' path."""
    module_name, _, class_name = path.partition(':')
    module = importlib.import_module(module_name)
    return getattr(module, class_name)()
