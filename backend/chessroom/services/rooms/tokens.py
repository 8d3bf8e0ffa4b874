import secrets
import uuid
from typing import Optional, Tuple

from flask_bcrypt import Bcrypt

from .state import Identity, Room


class IdentityTokenStore:
    """Mints participant and admin credentials and resolves joins to identities.

    Credentials are independent of the Socket.IO connection: a participant
    token survives refreshes, and the admin token re-establishes admin
    control from any new connection. Admin tokens are kept only as bcrypt
    hashes.
    """

    def __init__(self, hasher: Bcrypt):
        self._hasher = hasher

    def mint_token(self) -> str:
        return secrets.token_urlsafe(24)

    def mint_admin(self) -> Tuple[str, str]:
        token = self.mint_token()
        hashed = self._hasher.generate_password_hash(token).decode('utf-8')
        return token, hashed

    def verify_admin(self, room: Room, token: Optional[str]) -> bool:
        if not token:
            return False
        try:
            return self._hasher.check_password_hash(room.admin_token_hash, token)
        except ValueError:
            # Malformed hash from an old snapshot
            return False

    def is_admin(self, room: Room, sid: Optional[str]) -> bool:
        return sid is not None and room.admin_sid == sid

    def new_identity(self, room: Room, sid: str, name: str) -> Identity:
        player_id = uuid.uuid4().hex[:12]
        while player_id in room.identities:
            player_id = uuid.uuid4().hex[:12]
        token = self.mint_token()
        while room.identity_by_token(token):
            token = self.mint_token()
        ident = Identity(player_id=player_id, token=token, name=name, sid=sid)
        room.identities[player_id] = ident
        return ident

    def resolve(self, room: Room, provided_token: Optional[str], sid: str, name: str) -> Tuple[Identity, bool]:
        """Return the identity for this join and whether it was a reconnection.

        A known token rebinds that identity to the new connection; a
        connection that is already bound in the room keeps its identity.
        Anything else mints a fresh identity.
        """
        ident = room.identity_by_token(provided_token) or room.identity_by_sid(sid)
        if ident is None:
            return self.new_identity(room, sid, name), False
        previous = room.identity_by_sid(sid)
        if previous is not None and previous is not ident:
            previous.sid = None
        ident.sid = sid
        return ident, True
