"""
Card value and game shape constants for Dutch.

This module is the single source of truth for card point values.

Dutch Scoring (lower is better):
    - Ace: 1 point
    - 2-10: Face value
    - Jack, Queen: 10 points
    - Black King (clubs, spades): 0 points
    - Red King (hearts, diamonds): -1 point
"""

# =============================================================================
# Card Values - Single Source of Truth
# =============================================================================

DEFAULT_CARD_VALUES: dict[str, int] = {
    'A': 1,
    '2': 2,
    '3': 3,
    '4': 4,
    '5': 5,
    '6': 6,
    '7': 7,
    '8': 8,
    '9': 9,
    '10': 10,
    'J': 10,
    'Q': 10,
    'K': 0,  # Black king; red kings use RED_KING_VALUE
}
RED_KING_VALUE: int = -1
RED_SUITS: frozenset[str] = frozenset({"hearts", "diamonds"})


# =============================================================================
# Game Constants
# =============================================================================

DECK_SIZE = 52
HAND_SIZE = 4
MIN_PLAYERS = 2
MAX_PLAYERS = 6

# Hand positions each player may look at during the memorizing phase
MEMORIZE_INDICES: tuple[int, ...] = (0, 3)

# Piles a player may draw from
PILE_DECK = "deck"
PILE_DISCARD = "discard"
PILE_SOURCES: tuple[str, ...] = (PILE_DECK, PILE_DISCARD)

# Winner selection when the lowest score is tied
TIE_BREAK_SHARED = "shared"
TIE_BREAK_CALLER_LOSES = "caller_loses_ties"
TIE_BREAK_RULES: tuple[str, ...] = (TIE_BREAK_SHARED, TIE_BREAK_CALLER_LOSES)
