import random
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from chessroom.errors import InvalidRoomCode
from .state import Identity, Room
from .tokens import IdentityTokenStore


def generate_room_code(taken) -> str:
    """Generate an unused six digit room code."""
    while True:
        code = str(random.randint(100000, 999999))
        if code not in taken:
            return code


class RoomRegistry:
    """Process-wide set of live rooms keyed by their shareable code.

    Each room has its own re-entrant lock; every read-modify-write of a room
    happens while holding it. The registry's own lock only guards the maps
    and is never held while room work runs, so rooms never wait on each other.
    """

    def __init__(self, tokens: IdentityTokenStore):
        self.tokens = tokens
        self._rooms: Dict[str, Room] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._snapshots: Dict[str, Dict[str, Any]] = {}
        self._map_lock = threading.Lock()
        self._delete_hooks: List[Callable[[str], None]] = []

    def __len__(self) -> int:
        return len(self._rooms)

    def on_delete(self, hook: Callable[[str], None]) -> None:
        self._delete_hooks.append(hook)

    def lock_for(self, code: str) -> threading.RLock:
        with self._map_lock:
            lock = self._locks.get(code)
            if lock is None:
                lock = self._locks[code] = threading.RLock()
            return lock

    def codes(self) -> List[str]:
        with self._map_lock:
            return list(self._rooms)

    def create(self, name: str, sid: str, duration_minutes: int) -> Tuple[Room, str, Identity]:
        """Open a room for `name`; returns the room, the plain admin token and the creator."""
        admin_token, admin_hash = self.tokens.mint_admin()
        with self._map_lock:
            code = generate_room_code(self._rooms)
            room = Room(code=code, admin_token_hash=admin_hash, admin_sid=sid, duration_minutes=duration_minutes)
            self._rooms[code] = room
        with self.lock_for(code):
            creator = self.tokens.new_identity(room, sid, name)
            room.admin_player_id = creator.player_id
        return room, admin_token, creator

    def get(self, code: Optional[str]) -> Optional[Room]:
        if not code:
            return None
        with self._map_lock:
            return self._rooms.get(str(code))

    def lookup(self, code: Optional[str]) -> Room:
        room = self.get(code)
        if room is None:
            raise InvalidRoomCode()
        return room

    def delete(self, code: str) -> bool:
        """Remove a room. Deleting an unknown code is a no-op."""
        with self._map_lock:
            room = self._rooms.pop(code, None)
            self._snapshots.pop(code, None)
            self._locks.pop(code, None)
        if room is None:
            return False
        for hook in self._delete_hooks:
            hook(code)
        return True

    def record(self, room: Room) -> None:
        """Refresh the cached snapshot of a room; call with the room lock held."""
        data = room.to_dict()
        with self._map_lock:
            if room.code in self._rooms:
                self._snapshots[room.code] = data

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._map_lock:
            return dict(self._snapshots)

    def adopt(self, room: Room) -> None:
        """Register a room rebuilt from a snapshot."""
        with self._map_lock:
            self._rooms[room.code] = room
            self._snapshots[room.code] = room.to_dict()
