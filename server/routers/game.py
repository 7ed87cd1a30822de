"""
Game API router.

A small REST surface over the same game service the WebSocket uses:
guest sessions, room lobby, turn actions and redacted state reads.

Every request other than POST /api/session needs
"Authorization: Bearer <token>"; the player is whoever the token names.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from errors import (
    GameError,
    INTERNAL_ERROR,
    INVALID_STATE,
    NOT_FOUND,
    RESOURCE_EXHAUSTED,
    UNAUTHORIZED,
    VALIDATION_ERROR,
)
from services.game_service import ActionResult, GameService
from services.identity import IdentityService, bearer_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["game"])

HTTP_STATUS = {
    UNAUTHORIZED: 403,
    INVALID_STATE: 409,
    RESOURCE_EXHAUSTED: 409,
    NOT_FOUND: 404,
    VALIDATION_ERROR: 400,
    INTERNAL_ERROR: 500,
}


# =============================================================================
# Request Models
# =============================================================================


class CreateRoomRequest(BaseModel):
    """Create room request."""
    player_name: str = Field(default="Player", min_length=1, max_length=32)
    room_name: str = ""
    max_players: Optional[int] = None


class JoinRoomRequest(BaseModel):
    """Join room request."""
    room_code: str = Field(min_length=1)
    player_name: str = Field(default="Player", min_length=1, max_length=32)


class ReadyRequest(BaseModel):
    """Ready toggle request."""
    ready: bool = True


# =============================================================================
# Dependencies
# =============================================================================

# These will be set by main.py during startup
_game_service: Optional[GameService] = None
_identity: Optional[IdentityService] = None


def set_game_dependencies(service: GameService, identity: IdentityService) -> None:
    """Set the game service and identity instances (called from main.py)."""
    global _game_service, _identity
    _game_service = service
    _identity = identity


def get_game_service_dep() -> GameService:
    """Dependency to get the game service."""
    if _game_service is None:
        raise HTTPException(status_code=503, detail="Game service not initialized")
    return _game_service


def get_identity_dep() -> IdentityService:
    """Dependency to get the identity service."""
    if _identity is None:
        raise HTTPException(status_code=503, detail="Identity service not initialized")
    return _identity


def current_player(
    authorization: Optional[str] = Header(None),
    identity: IdentityService = Depends(get_identity_dep),
) -> str:
    """Dependency resolving the verified player ID from the bearer token."""
    player_id = identity.verify(bearer_token(authorization))
    if player_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return player_id


# =============================================================================
# Helpers
# =============================================================================


def error_response(code: str, message: str, details: Optional[dict] = None) -> JSONResponse:
    content = {"code": code, "error": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=HTTP_STATUS.get(code, 500), content=content)


def result_response(result: ActionResult) -> JSONResponse:
    if not result.success:
        return error_response(result.code, result.error, result.details)
    return JSONResponse(content=result.to_dict())


def room_response(room) -> dict:
    return {"room": room.to_dict(), "players": room.player_list()}


# =============================================================================
# Session
# =============================================================================


@router.post("/session")
async def create_session(
    authorization: Optional[str] = Header(None),
    identity: IdentityService = Depends(get_identity_dep),
):
    """Issue a guest token (or re-issue for a still-valid one)."""
    player_id, token = identity.issue_token(identity.verify(bearer_token(authorization)))
    return {"player_id": player_id, "token": token}


# =============================================================================
# Rooms
# =============================================================================


@router.post("/rooms")
async def create_room(
    request: CreateRoomRequest,
    player_id: str = Depends(current_player),
    service: GameService = Depends(get_game_service_dep),
):
    try:
        room = await service.rooms.create_room(
            player_id, request.player_name, name=request.room_name, max_players=request.max_players
        )
    except GameError as e:
        return error_response(e.code, e.message, e.details)
    return room_response(room)


@router.post("/rooms/join")
async def join_room(
    request: JoinRoomRequest,
    player_id: str = Depends(current_player),
    service: GameService = Depends(get_game_service_dep),
):
    try:
        room = await service.rooms.join_room(request.room_code, player_id, request.player_name)
    except GameError as e:
        return error_response(e.code, e.message, e.details)
    return room_response(room)


@router.post("/rooms/{room_id}/ready")
async def set_ready(
    room_id: str,
    request: ReadyRequest,
    player_id: str = Depends(current_player),
    service: GameService = Depends(get_game_service_dep),
):
    try:
        room = await service.rooms.set_ready(room_id, player_id, request.ready)
    except GameError as e:
        return error_response(e.code, e.message, e.details)
    return room_response(room)


@router.post("/rooms/{room_id}/leave")
async def leave_room(
    room_id: str,
    player_id: str = Depends(current_player),
    service: GameService = Depends(get_game_service_dep),
):
    try:
        room = await service.rooms.leave_room(room_id, player_id)
    except GameError as e:
        return error_response(e.code, e.message, e.details)
    return {"left": True, "room_deleted": room is None}


@router.delete("/rooms/{room_id}")
async def delete_room(
    room_id: str,
    player_id: str = Depends(current_player),
    service: GameService = Depends(get_game_service_dep),
):
    return result_response(await service.delete_room(room_id, player_id))


# =============================================================================
# Game
# =============================================================================


@router.post("/rooms/{room_id}/start")
async def start_game(
    room_id: str,
    player_id: str = Depends(current_player),
    service: GameService = Depends(get_game_service_dep),
):
    return result_response(await service.start_game(room_id, player_id))


@router.post("/rooms/{room_id}/end-memorizing")
async def end_memorizing(
    room_id: str,
    player_id: str = Depends(current_player),
    service: GameService = Depends(get_game_service_dep),
):
    return result_response(await service.end_memorizing(room_id, player_id))


@router.post("/rooms/{room_id}/actions")
async def submit_action(
    room_id: str,
    body: dict = Body(...),
    player_id: str = Depends(current_player),
    service: GameService = Depends(get_game_service_dep),
):
    """Submit a draw, swap, discard or Dutch call. The room comes from the path."""
    body.pop("roomId", None)
    request = {**body, "room_id": room_id}
    return result_response(await service.submit_action(player_id, request))


@router.get("/rooms/{room_id}/state")
async def get_state(
    room_id: str,
    player_id: str = Depends(current_player),
    service: GameService = Depends(get_game_service_dep),
):
    result = await service.get_state(player_id, room_id)
    if not result.success:
        return error_response(result.code, result.error)
    return result.state


@router.get("/rooms/{room_id}/actions")
async def get_actions(
    room_id: str,
    limit: Optional[int] = None,
    player_id: str = Depends(current_player),
    service: GameService = Depends(get_game_service_dep),
):
    try:
        actions = await service.recent_actions(player_id, room_id, limit)
    except GameError as e:
        return error_response(e.code, e.message, e.details)
    return {"room_id": room_id, "actions": actions}
