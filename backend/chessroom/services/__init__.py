"""Room services: identities, seats, match clocks and grace timers.

Everything here is transport-agnostic apart from the broadcaster, so the
Socket.IO handlers and HTTP routes stay thin.
"""
