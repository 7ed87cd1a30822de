"""
Domain errors for the Dutch game core.

Errors are raised inside the rules/processor code and converted into
structured results at the service boundary (see services/game_service.py),
so no exception crosses the room-state boundary and no partial mutation is
ever committed.

Messages must explain *why* an action failed (whose turn it is, which pile
is empty) without revealing hidden cards.
"""

from typing import Optional

# Error codes (stable, sent to clients)
UNAUTHORIZED = "unauthorized"
INVALID_STATE = "invalid_state"
RESOURCE_EXHAUSTED = "resource_exhausted"
NOT_FOUND = "not_found"
VALIDATION_ERROR = "validation_error"
INTERNAL_ERROR = "internal_error"

INTERNAL_ERROR_MESSAGE = "Internal server error"


class GameError(Exception):
    """Base exception for game-related errors."""

    code: str = INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(f"[{self.code}] {message}")


class Unauthorized(GameError):
    """Caller is not a room member, or not the current player."""

    code = UNAUTHORIZED


class InvalidState(GameError):
    """Action incompatible with the current phase/status."""

    code = INVALID_STATE


class ResourceExhausted(GameError):
    """Drawing from an empty pile."""

    code = RESOURCE_EXHAUSTED


class NotFound(GameError):
    """Referenced room or game state does not exist."""

    code = NOT_FOUND


class ValidationError(GameError):
    """Malformed input (bad hand index, missing field, unknown action)."""

    code = VALIDATION_ERROR


class ConcurrencyError(Exception):
    """Raised when a conditional write finds a newer version in the store."""
    pass
