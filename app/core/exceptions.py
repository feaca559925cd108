"""
Game error types

Services raise these; the event boundary in the orchestrator turns them into
``error`` messages for the originating client.
"""


class GameError(Exception):
    """Base class for errors reported back to a client"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(GameError):
    """Malformed or out-of-range input (names, codes, settings, chat)"""


class AuthorizationError(GameError):
    """A non-host attempted a host-only action"""


class NotFoundError(GameError):
    """A room or player lookup failed"""


class ConflictError(GameError):
    """The request clashes with the current state (room full, game running)"""
