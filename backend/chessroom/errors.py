"""Errors raised by room services and reported at the Socket.IO boundary."""


class RoomError(Exception):
    """Base class for expected, client-caused failures."""

    message = 'Request failed'
    # Silent errors are dropped without telling the client
    silent = False

    def __init__(self, message=None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class InvalidRoomCode(RoomError):
    message = 'Invalid room code'


class Unauthorized(RoomError):
    message = 'Only the room admin can do that'


class OutOfTurn(RoomError):
    message = 'Not your turn'
    silent = True


class InvalidRequest(RoomError):
    message = 'Invalid request'
