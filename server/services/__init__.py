"""Services package for Dutch game orchestration."""

from .game_service import GameService, ActionResult, StateResult
from .turn_timer import TurnTimer
from .identity import IdentityService, bearer_token

__all__ = [
    "GameService",
    "ActionResult",
    "StateResult",
    "TurnTimer",
    "IdentityService",
    "bearer_token",
]
