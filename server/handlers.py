"""WebSocket message handlers for the Dutch card game.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict (see dispatch()).

A connection watches at most one room at a time. While watching, it gets a
freshly redacted game_state for its own player after every committed change,
plus the public action entries as they are logged.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket

from errors import GameError, INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE, ValidationError
from logging_config import log_context
from services.game_service import ActionResult, GameService
from stores.pubsub import MessageHandler, MessageType, PubSubMessage

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    player_id: str
    current_room_id: Optional[str] = None
    listener: Optional[MessageHandler] = None


async def send_error(ctx: ConnectionContext, code: str, message: str, details: Optional[dict] = None) -> None:
    payload = {"type": "error", "code": code, "message": message}
    if details:
        payload["details"] = details
    await ctx.websocket.send_json(payload)


async def send_result(ctx: ConnectionContext, reply_type: str, result: ActionResult) -> None:
    """Send a successful result as reply_type, or the failure as an error."""
    if result.success:
        await ctx.websocket.send_json({"type": reply_type, **result.to_dict()})
    else:
        await send_error(ctx, result.code, result.error, result.details)


async def send_state(ctx: ConnectionContext, service: GameService, room_id: str, quiet: bool = False) -> None:
    """Send this connection's own view of a room."""
    result = await service.get_state(ctx.player_id, room_id)
    if result.success:
        await ctx.websocket.send_json({"type": "game_state", "game_state": result.state})
    elif not quiet:
        await send_error(ctx, result.code, result.error)


def _room_id(data: dict, ctx: ConnectionContext) -> str:
    room_id = data.get("room_id") or ctx.current_room_id
    if not room_id:
        raise ValidationError("Not in a room")
    return room_id


# ---------------------------------------------------------------------------
# Room subscription
# ---------------------------------------------------------------------------

async def watch_room(ctx: ConnectionContext, room_id: str, service: GameService) -> None:
    """Subscribe this connection to a room's channel (replacing any previous one)."""
    if ctx.current_room_id == room_id and ctx.listener is not None:
        return
    await unwatch_room(ctx, service)

    async def listener(msg: PubSubMessage) -> None:
        if msg.type == MessageType.STATE_CHANGED:
            await send_state(ctx, service, msg.room_id, quiet=True)
        elif msg.type == MessageType.ACTION_APPENDED:
            await ctx.websocket.send_json({
                "type": "action",
                "room_id": msg.room_id,
                "action": msg.data.get("action"),
            })
        elif msg.type == MessageType.ROOM_CLOSED:
            await unwatch_room(ctx, service)
            await ctx.websocket.send_json({"type": "room_closed", "room_id": msg.room_id})

    ctx.current_room_id = room_id
    ctx.listener = listener
    await service.pubsub.subscribe(room_id, listener)


async def unwatch_room(ctx: ConnectionContext, service: GameService) -> None:
    if ctx.current_room_id and ctx.listener is not None:
        await service.pubsub.remove_handler(ctx.current_room_id, ctx.listener)
    ctx.current_room_id = None
    ctx.listener = None


# ---------------------------------------------------------------------------
# Lobby / Room handlers
# ---------------------------------------------------------------------------

async def handle_create_room(data: dict, ctx: ConnectionContext, *, service: GameService, **kw) -> None:
    max_players = data.get("max_players")
    if max_players is not None and not isinstance(max_players, int):
        raise ValidationError("max_players must be a number")

    room = await service.rooms.create_room(
        ctx.player_id,
        data.get("player_name", "Player"),
        name=data.get("room_name", ""),
        max_players=max_players,
    )
    await watch_room(ctx, room.id, service)

    await ctx.websocket.send_json({
        "type": "room_created",
        "room_id": room.id,
        "room_code": room.code,
        "player_id": ctx.player_id,
    })
    await send_state(ctx, service, room.id)


async def handle_join_room(data: dict, ctx: ConnectionContext, *, service: GameService, **kw) -> None:
    room_code = data.get("room_code", "").upper()
    if not room_code:
        raise ValidationError("room_code is required")
    player_name = data.get("player_name", "Player")

    room = await service.rooms.join_room(room_code, ctx.player_id, player_name)
    await watch_room(ctx, room.id, service)

    await ctx.websocket.send_json({
        "type": "room_joined",
        "room_id": room.id,
        "room_code": room.code,
        "player_id": ctx.player_id,
    })
    await send_state(ctx, service, room.id)


async def handle_set_ready(data: dict, ctx: ConnectionContext, *, service: GameService, **kw) -> None:
    await service.rooms.set_ready(_room_id(data, ctx), ctx.player_id, bool(data.get("ready", True)))


async def handle_leave_room(data: dict, ctx: ConnectionContext, *, service: GameService, **kw) -> None:
    room_id = _room_id(data, ctx)
    await service.rooms.leave_room(room_id, ctx.player_id)
    if ctx.current_room_id == room_id:
        await unwatch_room(ctx, service)
    await ctx.websocket.send_json({"type": "room_left", "room_id": room_id})


async def handle_delete_room(data: dict, ctx: ConnectionContext, *, service: GameService, **kw) -> None:
    result = await service.delete_room(_room_id(data, ctx), ctx.player_id)
    if not result.success:
        await send_error(ctx, result.code, result.error, result.details)


# ---------------------------------------------------------------------------
# Game handlers
# ---------------------------------------------------------------------------

async def handle_start_game(data: dict, ctx: ConnectionContext, *, service: GameService, **kw) -> None:
    result = await service.start_game(_room_id(data, ctx), ctx.player_id)
    if not result.success:
        await send_error(ctx, result.code, result.error, result.details)


async def handle_end_memorizing(data: dict, ctx: ConnectionContext, *, service: GameService, **kw) -> None:
    result = await service.end_memorizing(_room_id(data, ctx), ctx.player_id)
    if not result.success:
        await send_error(ctx, result.code, result.error, result.details)


async def handle_action(data: dict, ctx: ConnectionContext, *, service: GameService, **kw) -> None:
    request = {key: value for key, value in data.items() if key != "type"}
    if not request.get("room_id") and not request.get("roomId"):
        request["room_id"] = ctx.current_room_id
    result = await service.submit_action(ctx.player_id, request)
    await send_result(ctx, "action_result", result)


async def handle_get_state(data: dict, ctx: ConnectionContext, *, service: GameService, **kw) -> None:
    await send_state(ctx, service, _room_id(data, ctx))


async def handle_get_actions(data: dict, ctx: ConnectionContext, *, service: GameService, **kw) -> None:
    room_id = _room_id(data, ctx)
    actions = await service.recent_actions(ctx.player_id, room_id, data.get("limit"))
    await ctx.websocket.send_json({"type": "actions", "room_id": room_id, "actions": actions})


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "create_room": handle_create_room,
    "join_room": handle_join_room,
    "set_ready": handle_set_ready,
    "leave_room": handle_leave_room,
    "delete_room": handle_delete_room,
    "start_game": handle_start_game,
    "end_memorizing": handle_end_memorizing,
    "action": handle_action,
    "get_state": handle_get_state,
    "get_actions": handle_get_actions,
}


async def dispatch(data: dict, ctx: ConnectionContext, **deps) -> None:
    """Route one client message to its handler, turning errors into error messages."""
    msg_type = data.get("type")
    handler = HANDLERS.get(msg_type)
    if handler is None:
        await send_error(ctx, ValidationError.code, f"Unknown message type: {msg_type}")
        return

    with log_context(player_id=ctx.player_id, room_id=data.get("room_id") or ctx.current_room_id):
        try:
            await handler(data, ctx, **deps)
        except GameError as e:
            await send_error(ctx, e.code, e.message, e.details)
        except Exception:
            logger.exception(f"Unhandled error in {msg_type} handler")
            await send_error(ctx, INTERNAL_ERROR, INTERNAL_ERROR_MESSAGE)
