"""Models package for the Dutch game server."""

from .actions import ActionType, GameAction, ActionRequest

__all__ = [
    "ActionType",
    "GameAction",
    "ActionRequest",
]
