"""
Test suite for the Dutch card and deck model.

Covers:
- Card values (A=1, 2-10 face, J/Q=10, black K=0, red K=-1)
- Deck construction and shuffling
- Initial deal (hands, discard seed, revealed indices)
- GameState serialization and card accounting
- Phase progression (forward only)

Run with: pytest test_game.py -v
"""

import random

import pytest

from constants import DECK_SIZE
from errors import InvalidState, ResourceExhausted, ValidationError
from game import (
    Card, Suit, Rank, RANK_VALUES, GamePhase, GameState, HeldCard,
    card_value, score_hand, full_deck, shuffle_cards, create_deck, deal_initial_hands,
)


# =============================================================================
# Card Value Tests
# =============================================================================

class TestCardValues:
    """Verify card values match Dutch scoring."""

    def test_ace_worth_1(self):
        assert RANK_VALUES[Rank.ACE] == 1

    def test_two_through_ten_face_value(self):
        assert RANK_VALUES[Rank.TWO] == 2
        assert RANK_VALUES[Rank.FIVE] == 5
        assert RANK_VALUES[Rank.TEN] == 10

    def test_face_cards_worth_10(self):
        assert RANK_VALUES[Rank.JACK] == 10
        assert RANK_VALUES[Rank.QUEEN] == 10

    def test_black_king_worth_0(self):
        assert card_value(Card(Suit.CLUBS, Rank.KING)) == 0
        assert card_value(Card(Suit.SPADES, Rank.KING)) == 0

    def test_red_king_worth_negative_1(self):
        assert card_value(Card(Suit.HEARTS, Rank.KING)) == -1
        assert Card(Suit.DIAMONDS, Rank.KING).value() == -1

    def test_score_hand_sums_values(self):
        hand = [
            Card(Suit.HEARTS, Rank.ACE),
            Card(Suit.CLUBS, Rank.SEVEN),
            Card(Suit.SPADES, Rank.QUEEN),
            Card(Suit.DIAMONDS, Rank.KING),
        ]
        assert score_hand(hand) == 1 + 7 + 10 - 1


class TestCardIdentity:

    def test_id_is_rank_dash_suit(self):
        assert Card(Suit.HEARTS, Rank.TEN).id == "10-hearts"

    def test_cards_are_immutable(self):
        card = Card(Suit.HEARTS, Rank.ACE)
        with pytest.raises(Exception):
            card.rank = Rank.TWO

    def test_dict_round_trip(self):
        card = Card(Suit.SPADES, Rank.JACK)
        assert Card.from_dict(card.to_dict()) == card


# =============================================================================
# Deck Tests
# =============================================================================

class TestDeck:

    def test_full_deck_has_52_distinct_cards(self):
        deck = full_deck()
        assert len(deck) == DECK_SIZE
        assert len({c.id for c in deck}) == DECK_SIZE

    def test_create_deck_is_a_permutation(self):
        deck = create_deck(random.Random(7))
        assert sorted(c.id for c in deck) == sorted(c.id for c in full_deck())

    def test_shuffle_does_not_modify_input(self):
        cards = full_deck()
        before = list(cards)
        shuffle_cards(cards, random.Random(1))
        assert cards == before

    def test_seeded_shuffle_is_reproducible(self):
        assert create_deck(random.Random(42)) == create_deck(random.Random(42))

    def test_shuffle_reaches_every_position(self):
        """Over many shuffles of 3 cards, every permutation shows up."""
        rng = random.Random(3)
        cards = full_deck()[:3]
        seen = {tuple(c.id for c in shuffle_cards(cards, rng)) for _ in range(300)}
        assert len(seen) == 6


# =============================================================================
# Deal Tests
# =============================================================================

class TestDeal:

    def test_three_player_deal(self):
        state = deal_initial_hands(full_deck(), ["p1", "p2", "p3"])

        assert all(len(state.hand(p)) == 4 for p in ["p1", "p2", "p3"])
        assert len(state.deck) == 39
        assert len(state.discard_pile) == 1
        assert state.revealed_cards == {"p1": [0, 3], "p2": [0, 3], "p3": [0, 3]}
        assert state.phase == GamePhase.MEMORIZING
        assert state.total_cards() == DECK_SIZE

    def test_deal_takes_from_deck_front_in_player_order(self):
        deck = full_deck()
        state = deal_initial_hands(deck, ["p1", "p2"])
        assert state.hand("p1") == deck[0:4]
        assert state.hand("p2") == deck[4:8]
        assert state.discard_pile == [deck[8]]
        assert state.deck == deck[9:]

    def test_deal_needs_two_players(self):
        with pytest.raises(InvalidState):
            deal_initial_hands(full_deck(), ["p1"])

    def test_deal_rejects_seven_players(self):
        with pytest.raises(ValidationError):
            deal_initial_hands(full_deck(), [f"p{i}" for i in range(7)])

    def test_deal_rejects_duplicate_players(self):
        with pytest.raises(ValidationError):
            deal_initial_hands(full_deck(), ["p1", "p1"])

    def test_deal_rejects_short_deck(self):
        with pytest.raises(ResourceExhausted):
            deal_initial_hands(full_deck()[:8], ["p1", "p2"])


# =============================================================================
# GameState Tests
# =============================================================================

class TestGameState:

    def test_held_card_counts_toward_total(self):
        state = deal_initial_hands(full_deck(), ["p1", "p2"])
        card = state.deck.pop()
        state.held = HeldCard(player_id="p1", card=card, source="deck")
        assert state.total_cards() == DECK_SIZE

    def test_held_by_only_matches_owner(self):
        state = deal_initial_hands(full_deck(), ["p1", "p2"])
        state.held = HeldCard(player_id="p1", card=state.deck.pop(), source="deck")
        assert state.held_by("p1") is state.held
        assert state.held_by("p2") is None

    def test_serialization_round_trip(self):
        state = deal_initial_hands(full_deck(), ["p1", "p2"])
        state.held = HeldCard(player_id="p2", card=state.discard_pile.pop(), source="discard")
        state.phase = GamePhase.PLAYING

        restored = GameState.from_dict(state.to_dict())
        assert restored.deck == state.deck
        assert restored.player_hands == state.player_hands
        assert restored.held == state.held
        assert restored.phase == GamePhase.PLAYING

    def test_copy_is_independent(self):
        state = deal_initial_hands(full_deck(), ["p1", "p2"])
        working = state.copy()
        working.deck.pop()
        working.player_hands["p1"][0] = working.discard_pile.pop()
        assert len(state.deck) == 43
        assert len(state.discard_pile) == 1


class TestPhaseOrder:

    def test_phases_move_forward(self):
        state = GameState()
        state.advance_phase(GamePhase.PLAYING)
        state.advance_phase(GamePhase.DUTCH_ROUND)
        state.advance_phase(GamePhase.FINISHED)
        assert state.phase == GamePhase.FINISHED

    def test_playing_can_skip_to_finished(self):
        state = GameState(phase=GamePhase.PLAYING)
        state.advance_phase(GamePhase.FINISHED)
        assert state.phase == GamePhase.FINISHED

    @pytest.mark.parametrize("current,target", [
        (GamePhase.PLAYING, GamePhase.MEMORIZING),
        (GamePhase.DUTCH_ROUND, GamePhase.PLAYING),
        (GamePhase.FINISHED, GamePhase.DUTCH_ROUND),
        (GamePhase.PLAYING, GamePhase.PLAYING),
    ])
    def test_phase_never_moves_back(self, current, target):
        state = GameState(phase=current)
        with pytest.raises(InvalidState):
            state.advance_phase(target)
        assert state.phase == current
