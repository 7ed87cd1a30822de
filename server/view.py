"""
Per-viewer projection of a game record.

This is the only path by which game state leaves the server. The projection
for viewer V contains:

    - the full contents of V's own hand, and only a card count for every
      other player's hand
    - the deck size, never its contents
    - the whole discard pile (it is face-up, so public by observation)
    - V's revealed indices during the memorizing phase only
    - V's own held card; other players only learn that a card is held and
      from which pile it came
    - scores and winners once the game is finished (other hands stay hidden)
"""

from dataclasses import dataclass, field
from typing import Optional

from game import GamePhase
from room import GameRecord


@dataclass
class GameView:
    """A redacted snapshot of a room for one viewer."""

    viewer_id: str
    room_id: str
    room_code: str
    status: str
    version: int
    players: list[dict] = field(default_factory=list)
    player_order: list[str] = field(default_factory=list)
    current_turn: Optional[str] = None
    turn_started_at: Optional[str] = None
    dutch_caller: Optional[str] = None
    phase: Optional[str] = None
    deck_count: int = 0
    discard_pile: list[dict] = field(default_factory=list)
    player_hands: dict[str, dict] = field(default_factory=dict)
    revealed_cards: dict[str, list[int]] = field(default_factory=dict)
    held_card: Optional[dict] = None
    has_held_card: bool = False
    held_card_source: Optional[str] = None
    last_action: Optional[dict] = None
    scores: Optional[dict[str, int]] = None
    winners: Optional[list[str]] = None

    def to_dict(self) -> dict:
        discard_top = self.discard_pile[-1] if self.discard_pile else None
        data = {
            "viewer_id": self.viewer_id,
            "room_id": self.room_id,
            "room_code": self.room_code,
            "status": self.status,
            "version": self.version,
            "players": self.players,
            "player_order": self.player_order,
            "current_turn": self.current_turn,
            "turn_started_at": self.turn_started_at,
            "dutch_caller": self.dutch_caller,
            "phase": self.phase,
            "deck_count": self.deck_count,
            "discard_pile": self.discard_pile,
            "discard_top": discard_top,
            "player_hands": self.player_hands,
            "revealed_cards": self.revealed_cards,
            "held_card": self.held_card,
            "has_held_card": self.has_held_card,
            "held_card_source": self.held_card_source,
            "last_action": self.last_action,
        }
        if self.scores is not None:
            data["scores"] = self.scores
            data["winners"] = self.winners
        return data


def project_for(viewer_id: str, record: GameRecord) -> GameView:
    """
    Build the view of record that viewer_id is entitled to see.

    Args:
        viewer_id: Verified identity of the viewer.
        record: The room's full record (never modified).

    Returns:
        GameView with every other player's cards withheld.
    """
    room, state = record.room, record.state

    view = GameView(
        viewer_id=viewer_id,
        room_id=room.id,
        room_code=room.code,
        status=room.status.value,
        version=record.version,
        players=room.player_list(),
        player_order=room.player_ids,
        current_turn=room.current_turn,
        turn_started_at=room.turn_started_at.isoformat() if room.turn_started_at else None,
        dutch_caller=room.dutch_caller,
    )
    if state is None:
        return view

    view.phase = state.phase.value
    view.deck_count = len(state.deck)
    view.discard_pile = [card.to_dict() for card in state.discard_pile]
    view.last_action = state.last_action

    for pid, hand in state.player_hands.items():
        view.player_hands[pid] = {
            "cards": [card.to_dict() for card in hand] if pid == viewer_id else None,
            "card_count": len(hand),
        }

    if state.phase == GamePhase.MEMORIZING and viewer_id in state.revealed_cards:
        view.revealed_cards = {viewer_id: list(state.revealed_cards[viewer_id])}

    if state.held is not None:
        view.has_held_card = True
        view.held_card_source = state.held.source
        if state.held.player_id == viewer_id:
            view.held_card = {
                "card": state.held.card.to_dict(),
                "source": state.held.source,
            }

    if state.phase == GamePhase.FINISHED:
        view.scores = dict(state.scores)
        view.winners = list(state.winners)

    return view
