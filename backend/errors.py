"""Errors raised by game session operations.

Every operation raises before touching state, so a caught GameError always
means "nothing changed". The gateway turns these into ``error`` events for
the caller only.
"""


class GameError(Exception):
    """Base class for rejected game operations."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GameError):
    """Malformed input, e.g. an empty name or a bad roll number."""


class DuplicateIdentityError(ValidationError):
    """The roll number is already bound to a live connection."""


class SequencingError(GameError):
    """The operation is not allowed in the current game state."""


class AuthorizationError(GameError):
    """A privileged action was attempted without an admin grant."""
