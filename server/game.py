"""
Card model and game state for Dutch.

This module implements the card/deck model and the authoritative per-room
game state record for the Dutch card game.

Dutch Rules Summary:
    - Each player holds 4 face-down cards in a row, indexed 0..3
    - Players briefly see cards 0 and 3 at the start (memorizing phase)
    - On your turn: draw from the deck or discard pile, then swap the drawn
      card into your hand or discard it
    - Instead of drawing, a player may call "Dutch": everyone else gets one
      more turn, then the game ends
    - Lowest hand total wins

Card Layout:
    [0] [1] [2] [3]
     ^           ^
     memorized at the start of the game

Pile orientation:
    The "top" of the deck and of the discard pile is the END of the list.
"""

import copy
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from constants import (
    DEFAULT_CARD_VALUES,
    RED_KING_VALUE,
    RED_SUITS,
    HAND_SIZE,
    MIN_PLAYERS,
    MAX_PLAYERS,
    MEMORIZE_INDICES,
)
from errors import InvalidState, ResourceExhausted, ValidationError


class Suit(Enum):
    """Card suits for a standard deck."""

    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"
    SPADES = "spades"

    @property
    def is_red(self) -> bool:
        return self.value in RED_SUITS


class Rank(Enum):
    """
    Card ranks with their display values.

    Dutch scoring:
        - Ace: 1 point
        - 2-10: Face value
        - Jack/Queen: 10 points
        - King: 0 points (black) or -1 point (red)
    """

    ACE = "A"
    TWO = "2"
    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"


# Map Rank enum to base point values (derived from constants.py)
RANK_VALUES: dict[Rank, int] = {rank: DEFAULT_CARD_VALUES[rank.value] for rank in Rank}


@dataclass(frozen=True)
class Card:
    """
    An immutable playing card.

    A standard deck has exactly one card per suit/rank pair, so
    "{rank}-{suit}" is a stable identity token.

    Attributes:
        suit: The card's suit.
        rank: The card's rank.
    """

    suit: Suit
    rank: Rank

    @property
    def id(self) -> str:
        """Stable identity token, e.g. "10-hearts"."""
        return f"{self.rank.value}-{self.suit.value}"

    def value(self) -> int:
        """Get point value (red kings are worth -1)."""
        return card_value(self)

    def to_dict(self) -> dict:
        """Convert card to dictionary for JSON serialization."""
        return {
            "suit": self.suit.value,
            "rank": self.rank.value,
            "id": self.id,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Card":
        """Rebuild a card from to_dict() output."""
        return cls(suit=Suit(d["suit"]), rank=Rank(d["rank"]))

    def __str__(self) -> str:
        return self.id


def card_value(card: Card) -> int:
    """
    Get point value for a card.

    This is the single source of truth for Card object value calculations.
    """
    if card.rank == Rank.KING and card.suit.is_red:
        return RED_KING_VALUE
    return RANK_VALUES[card.rank]


def score_hand(hand: list[Card]) -> int:
    """Sum of card values in a hand (lower is better)."""
    return sum(card_value(card) for card in hand)


def full_deck() -> list[Card]:
    """Build the 52 cards of a standard deck in suit/rank order (unshuffled)."""
    return [Card(suit, rank) for suit in Suit for rank in Rank]


def shuffle_cards(cards: list[Card], rng: Optional[random.Random] = None) -> list[Card]:
    """
    Return a shuffled copy of cards using a Fisher-Yates pass.

    Each swap index is drawn uniformly from [0, i], so every ordering is
    reachable with equal probability given a correct random source.

    Args:
        cards: Cards to shuffle (not modified).
        rng: Random source. Defaults to the OS entropy source.

    Returns:
        A new shuffled list.
    """
    rng = rng or random.SystemRandom()
    shuffled = list(cards)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randrange(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def create_deck(rng: Optional[random.Random] = None) -> list[Card]:
    """Return a freshly shuffled 52-card deck."""
    return shuffle_cards(full_deck(), rng)


class GamePhase(Enum):
    """
    Phases of a Dutch game.

    Flow: MEMORIZING -> PLAYING -> (DUTCH_ROUND) -> FINISHED
    The phase never moves backwards.
    """

    MEMORIZING = "memorizing"    # Players look at cards 0 and 3
    PLAYING = "playing"          # Normal turns
    DUTCH_ROUND = "dutch_round"  # Someone called Dutch, last lap
    FINISHED = "finished"        # Hands scored


PHASE_ORDER: dict[GamePhase, int] = {phase: i for i, phase in enumerate(GamePhase)}


@dataclass
class HeldCard:
    """
    A card drawn by the current player but not yet swapped or discarded.

    Attributes:
        player_id: Player holding the card.
        card: The drawn card.
        source: Pile it came from ("deck" or "discard").
    """

    player_id: str
    card: Card
    source: str

    def to_dict(self) -> dict:
        return {
            "player_id": self.player_id,
            "card": self.card.to_dict(),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "HeldCard":
        return cls(
            player_id=d["player_id"],
            card=Card.from_dict(d["card"]),
            source=d["source"],
        )


@dataclass
class GameState:
    """
    Authoritative game state for one room.

    Holds every card of the deck at all times: in the deck, the discard pile,
    a player's hand, or the single held-card slot.

    Attributes:
        deck: Draw pile (top is the last element).
        discard_pile: Face-up pile (top is the last element).
        player_hands: Player ID -> 4-card hand.
        revealed_cards: Player ID -> hand indices that player may currently see.
        phase: Current game phase.
        last_action: Most recent public action entry (dict form).
        held: Pending drawn card of the current player, if any.
        scores: Player ID -> final hand total (set when finished).
        winners: Player IDs of the winner(s) (set when finished).
    """

    deck: list[Card] = field(default_factory=list)
    discard_pile: list[Card] = field(default_factory=list)
    player_hands: dict[str, list[Card]] = field(default_factory=dict)
    revealed_cards: dict[str, list[int]] = field(default_factory=dict)
    phase: GamePhase = GamePhase.MEMORIZING
    last_action: Optional[dict] = None
    held: Optional[HeldCard] = None
    scores: dict[str, int] = field(default_factory=dict)
    winners: list[str] = field(default_factory=list)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def discard_top(self) -> Optional[Card]:
        """Get the top card of the discard pile (if any)."""
        if self.discard_pile:
            return self.discard_pile[-1]
        return None

    def hand(self, player_id: str) -> list[Card]:
        """Get a player's hand (empty list if unknown)."""
        return self.player_hands.get(player_id, [])

    def held_by(self, player_id: str) -> Optional[HeldCard]:
        """Get the held card if it belongs to player_id."""
        if self.held and self.held.player_id == player_id:
            return self.held
        return None

    def total_cards(self) -> int:
        """Count every card in the record (deck, discard, hands, held slot)."""
        total = len(self.deck) + len(self.discard_pile)
        total += sum(len(hand) for hand in self.player_hands.values())
        if self.held:
            total += 1
        return total

    def advance_phase(self, phase: GamePhase) -> None:
        """
        Move the game forward to phase.

        Raises:
            InvalidState: phase is not later than the current one.
        """
        if PHASE_ORDER[phase] <= PHASE_ORDER[self.phase]:
            raise InvalidState(
                f"Cannot move from {self.phase.value} to {phase.value}",
                {"phase": self.phase.value},
            )
        self.phase = phase

    def copy(self) -> "GameState":
        """Deep copy for working on a transition without touching the loaded state."""
        return copy.deepcopy(self)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict:
        """
        Full server-side serialization, including hidden cards.

        Never send this to a client; use view.project_for() instead.
        """
        return {
            "deck": [c.to_dict() for c in self.deck],
            "discard_pile": [c.to_dict() for c in self.discard_pile],
            "player_hands": {
                pid: [c.to_dict() for c in hand]
                for pid, hand in self.player_hands.items()
            },
            "revealed_cards": {pid: list(idx) for pid, idx in self.revealed_cards.items()},
            "phase": self.phase.value,
            "last_action": self.last_action,
            "held": self.held.to_dict() if self.held else None,
            "scores": dict(self.scores),
            "winners": list(self.winners),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "GameState":
        """Rebuild state from to_dict() output."""
        held = d.get("held")
        return cls(
            deck=[Card.from_dict(c) for c in d.get("deck", [])],
            discard_pile=[Card.from_dict(c) for c in d.get("discard_pile", [])],
            player_hands={
                pid: [Card.from_dict(c) for c in hand]
                for pid, hand in d.get("player_hands", {}).items()
            },
            revealed_cards={pid: list(idx) for pid, idx in d.get("revealed_cards", {}).items()},
            phase=GamePhase(d.get("phase", GamePhase.MEMORIZING.value)),
            last_action=d.get("last_action"),
            held=HeldCard.from_dict(held) if held else None,
            scores=dict(d.get("scores", {})),
            winners=list(d.get("winners", [])),
        )


def deal_initial_hands(deck: list[Card], player_ids: list[str]) -> GameState:
    """
    Deal a new game from a shuffled deck.

    Deals HAND_SIZE cards to each player in player order, consuming from the
    front of the deck, then one more card face-up to seed the discard pile.
    The rest becomes the draw pile.

    Args:
        deck: Shuffled deck (not modified).
        player_ids: Players in turn order.

    Returns:
        A GameState in MEMORIZING phase, each player able to see cards 0 and 3.

    Raises:
        InvalidState: Fewer than MIN_PLAYERS players.
        ValidationError: Too many players or duplicate player IDs.
        ResourceExhausted: Deck too small for the deal.
    """
    if len(player_ids) < MIN_PLAYERS:
        raise InvalidState(
            f"Need at least {MIN_PLAYERS} players to deal",
            {"players": len(player_ids)},
        )
    if len(player_ids) > MAX_PLAYERS:
        raise ValidationError(
            f"At most {MAX_PLAYERS} players can be dealt in",
            {"players": len(player_ids)},
        )
    if len(set(player_ids)) != len(player_ids):
        raise ValidationError("Duplicate player in deal order")

    needed = HAND_SIZE * len(player_ids) + 1
    if len(deck) < needed:
        raise ResourceExhausted(
            "Not enough cards to deal",
            {"needed": needed, "available": len(deck)},
        )

    hands: dict[str, list[Card]] = {}
    revealed: dict[str, list[int]] = {}
    for i, player_id in enumerate(player_ids):
        hands[player_id] = list(deck[i * HAND_SIZE:(i + 1) * HAND_SIZE])
        revealed[player_id] = list(MEMORIZE_INDICES)

    dealt = HAND_SIZE * len(player_ids)
    return GameState(
        deck=list(deck[dealt + 1:]),
        discard_pile=[deck[dealt]],
        player_hands=hands,
        revealed_cards=revealed,
        phase=GamePhase.MEMORIZING,
    )
