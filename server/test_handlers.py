"""
Test suite for WebSocket message handlers.

Tests handler flows end to end against in-memory stores, with mock
WebSockets collecting what each connection is sent.

Run with: pytest test_handlers.py -v
"""

import random

import pytest

from handlers import (
    ConnectionContext,
    HANDLERS,
    dispatch,
    handle_action,
    handle_create_room,
)
from services.game_service import GameService
from stores.action_log import MemoryActionLog
from stores.game_store import MemoryGameStore
from stores.pubsub import LocalPubSub


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)

    def last_message(self) -> dict:
        return self.messages[-1] if self.messages else {}

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]


def make_ctx(websocket=None, player_id="test_player"):
    """Create a ConnectionContext with sensible defaults."""
    ws = websocket or MockWebSocket()
    return ConnectionContext(
        websocket=ws,
        connection_id=f"conn_{player_id}",
        player_id=player_id,
    )


def make_service():
    return GameService(MemoryGameStore(), MemoryActionLog(), LocalPubSub(), rng=random.Random(5))


async def setup_game(service, started=True, memorized=True):
    """Host and guest connected to the same room, optionally mid-game."""
    host = make_ctx(player_id="host")
    guest = make_ctx(player_id="guest")
    await dispatch({"type": "create_room", "player_name": "Host"}, host, service=service)
    code = host.websocket.messages_of_type("room_created")[0]["room_code"]
    await dispatch({"type": "join_room", "room_code": code, "player_name": "Guest"}, guest, service=service)
    await dispatch({"type": "set_ready", "ready": True}, guest, service=service)
    if started:
        await dispatch({"type": "start_game"}, host, service=service)
        if memorized:
            await dispatch({"type": "end_memorizing"}, host, service=service)
    return host, guest


# =============================================================================
# Lobby handlers
# =============================================================================

class TestCreateRoom:

    @pytest.mark.asyncio
    async def test_create_room_replies_and_watches(self):
        service = make_service()
        ctx = make_ctx()

        await handle_create_room({"player_name": "Alice"}, ctx, service=service)

        created = ctx.websocket.messages_of_type("room_created")[0]
        assert created["player_id"] == "test_player"
        assert len(created["room_code"]) == 6
        assert ctx.current_room_id == created["room_id"]
        state = ctx.websocket.messages_of_type("game_state")[-1]["game_state"]
        assert state["players"][0]["name"] == "Alice"

    @pytest.mark.asyncio
    async def test_bad_max_players_is_an_error(self):
        service = make_service()
        ctx = make_ctx()
        await dispatch({"type": "create_room", "max_players": 9}, ctx, service=service)
        assert ctx.websocket.last_message()["code"] == "validation_error"


class TestJoinRoom:

    @pytest.mark.asyncio
    async def test_join_notifies_host(self):
        service = make_service()
        host, guest = await setup_game(service, started=False)

        joined = guest.websocket.messages_of_type("room_joined")[0]
        assert joined["room_id"] == host.current_room_id
        host_state = host.websocket.messages_of_type("game_state")[-1]["game_state"]
        assert host_state["player_order"] == ["host", "guest"]

    @pytest.mark.asyncio
    async def test_join_nonexistent_room(self):
        service = make_service()
        ctx = make_ctx()
        await dispatch({"type": "join_room", "room_code": "FFFFFF"}, ctx, service=service)
        msg = ctx.websocket.last_message()
        assert msg["type"] == "error"
        assert msg["code"] == "not_found"


# =============================================================================
# Game handlers
# =============================================================================

class TestGameFlow:

    @pytest.mark.asyncio
    async def test_start_game_pushes_private_states(self):
        service = make_service()
        host, guest = await setup_game(service, memorized=False)

        host_state = host.websocket.messages_of_type("game_state")[-1]["game_state"]
        guest_state = guest.websocket.messages_of_type("game_state")[-1]["game_state"]

        assert host_state["phase"] == "memorizing"
        assert host_state["revealed_cards"] == {"host": [0, 3]}
        assert guest_state["revealed_cards"] == {"guest": [0, 3]}
        assert host_state["player_hands"]["guest"]["cards"] is None
        assert guest_state["player_hands"]["host"]["cards"] is None

    @pytest.mark.asyncio
    async def test_draw_reply_carries_card_only_to_drawer(self):
        service = make_service()
        host, guest = await setup_game(service)

        await handle_action({"action": "draw", "source": "deck"}, host, service=service)

        result = host.websocket.messages_of_type("action_result")[-1]
        assert result["success"] is True
        assert "drawn_card" in result

        guest_action = guest.websocket.messages_of_type("action")[-1]["action"]
        assert guest_action["type"] == "draw"
        assert "card" not in guest_action["data"]
        guest_state = guest.websocket.messages_of_type("game_state")[-1]["game_state"]
        assert guest_state["held_card"] is None
        assert guest_state["has_held_card"] is True

    @pytest.mark.asyncio
    async def test_out_of_turn_action_is_rejected(self):
        service = make_service()
        host, guest = await setup_game(service)

        await dispatch({"type": "action", "action": "draw", "source": "deck"}, guest, service=service)

        msg = guest.websocket.last_message()
        assert msg["type"] == "error"
        assert msg["code"] == "unauthorized"
        assert "Host" in msg["message"]

    @pytest.mark.asyncio
    async def test_malformed_action_is_validation_error(self):
        service = make_service()
        host, _ = await setup_game(service)
        await dispatch({"type": "action", "action": "swap"}, host, service=service)
        assert host.websocket.last_message()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_get_actions_oldest_first(self):
        service = make_service()
        host, _ = await setup_game(service)
        await dispatch({"type": "action", "action": "draw", "source": "deck"}, host, service=service)
        await dispatch({"type": "get_actions"}, host, service=service)

        actions = host.websocket.messages_of_type("actions")[-1]["actions"]
        assert [a["type"] for a in actions] == ["game_started", "memorizing_ended", "draw"]
        assert [a["sequence_num"] for a in actions] == [1, 2, 3]


class TestLeaveAndDelete:

    @pytest.mark.asyncio
    async def test_leave_room_stops_updates(self):
        service = make_service()
        host, guest = await setup_game(service, started=False)

        await dispatch({"type": "leave_room"}, guest, service=service)
        assert guest.websocket.last_message()["type"] == "room_left"
        assert guest.current_room_id is None

        before = len(guest.websocket.messages)
        await dispatch({"type": "set_ready", "ready": True}, host, service=service)
        assert len(guest.websocket.messages) == before

    @pytest.mark.asyncio
    async def test_delete_room_closes_for_everyone(self):
        service = make_service()
        host, guest = await setup_game(service, started=False)

        await dispatch({"type": "delete_room"}, host, service=service)

        assert guest.websocket.messages_of_type("room_closed")
        assert host.websocket.messages_of_type("room_closed")
        assert guest.current_room_id is None


class TestDispatch:

    @pytest.mark.asyncio
    async def test_unknown_type(self):
        ctx = make_ctx()
        await dispatch({"type": "teleport"}, ctx, service=make_service())
        assert ctx.websocket.last_message()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_room_scoped_message_without_room(self):
        ctx = make_ctx()
        await dispatch({"type": "get_state"}, ctx, service=make_service())
        msg = ctx.websocket.last_message()
        assert msg["type"] == "error"
        assert msg["message"] == "Not in a room"

    def test_all_message_types_registered(self):
        assert set(HANDLERS) == {
            "create_room", "join_room", "set_ready", "leave_room", "delete_room",
            "start_game", "end_memorizing", "action", "get_state", "get_actions",
        }
