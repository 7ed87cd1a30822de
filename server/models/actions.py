"""
Action definitions for the Dutch game.

Two kinds of objects live here:

- GameAction: an immutable, public record of something that happened in a
  room (draw, swap, discard, Dutch call, timeout, ...). These feed the action
  log and the state's last_action field. They never carry hidden cards.
- ActionRequest: the validated shape of a client's action submission.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, model_validator
from pydantic.alias_generators import to_camel

from constants import HAND_SIZE


class ActionType(str, Enum):
    """All possible action log entry types in a Dutch game."""

    # Lifecycle
    GAME_STARTED = "game_started"
    MEMORIZING_ENDED = "memorizing_ended"
    GAME_FINISHED = "game_finished"

    # Turn actions
    DRAW = "draw"
    SWAP = "swap"
    DISCARD = "discard"
    DUTCH = "dutch"
    TIMEOUT = "timeout"


@dataclass
class GameAction:
    """
    A public record of an action taken in a room.

    Attributes:
        action_type: The type of action (from ActionType enum).
        player_id: ID of player who acted (None for system actions).
        data: Action-specific public payload.
        timestamp: When the action occurred (UTC).
        sequence_num: Position in the room's log (assigned on append).
    """

    action_type: ActionType
    player_id: Optional[str] = None
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    sequence_num: int = 0

    def to_dict(self) -> dict:
        """Serialize action to dictionary for JSON storage."""
        return {
            "type": self.action_type.value,
            "player_id": self.player_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "sequence_num": self.sequence_num,
        }

    def to_json(self) -> str:
        """Serialize action to JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict) -> "GameAction":
        """Deserialize action from dictionary."""
        timestamp = d["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)

        return cls(
            action_type=ActionType(d["type"]),
            player_id=d.get("player_id"),
            data=d.get("data", {}),
            timestamp=timestamp,
            sequence_num=d.get("sequence_num", 0),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "GameAction":
        """Deserialize action from JSON string."""
        return cls.from_dict(json.loads(json_str))


# =============================================================================
# Client Requests
# =============================================================================


class ActionRequest(BaseModel):
    """
    A turn action submitted by a client.

    Accepts both snake_case and camelCase keys (room_id / roomId). Fields a
    client might echo back about its drawn card (held_card, held_card_source)
    are ignored: the held card is tracked server-side.
    """

    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    room_id: str = Field(min_length=1)
    action: Literal["draw", "swap", "discard", "dutch"]
    source: Optional[Literal["deck", "discard"]] = None
    hand_index: Optional[StrictInt] = None

    @model_validator(mode="after")
    def check_action_fields(self) -> "ActionRequest":
        if self.action == "draw" and self.source is None:
            raise ValueError("source is required for draw action")
        if self.action == "swap":
            if self.hand_index is None:
                raise ValueError("hand_index is required for swap action")
            if not 0 <= self.hand_index < HAND_SIZE:
                raise ValueError(f"hand_index must be between 0 and {HAND_SIZE - 1}")
        return self
