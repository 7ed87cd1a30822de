"""FastAPI WebSocket server for the Dutch card game."""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
import redis.asyncio as redis

from config import config
from handlers import ConnectionContext, dispatch, unwatch_room
from logging_config import setup_logging
from middleware.request_id import RequestIDMiddleware
from routers.game import router as game_router, set_game_dependencies
from routers.health import router as health_router, set_health_dependencies
from services.game_service import GameService
from services.identity import IdentityService
from services.turn_timer import TurnTimer
from stores.action_log import ActionLog, MemoryActionLog, RedisActionLog
from stores.game_store import GameStore, MemoryGameStore, RedisGameStore
from stores.pubsub import GamePubSub, LocalPubSub, PubSub

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


# =============================================================================
# Services (initialized in lifespan)
# =============================================================================

_redis_client: Optional[redis.Redis] = None
_game_store: Optional[GameStore] = None
_action_log: Optional[ActionLog] = None
_pubsub: Optional[PubSub] = None
_game_service: Optional[GameService] = None
_turn_timer: Optional[TurnTimer] = None
_sweep_task: Optional[asyncio.Task] = None
_identity = IdentityService()


async def _init_backends() -> str:
    """Pick the memory or Redis backends. Returns the backend name."""
    global _redis_client, _game_store, _action_log, _pubsub

    if config.REDIS_URL:
        _redis_client = redis.from_url(config.REDIS_URL, decode_responses=False)
        await _redis_client.ping()
        logger.info("Redis client connected")

        _game_store = RedisGameStore(_redis_client)
        _action_log = RedisActionLog(_redis_client)
        _pubsub = GamePubSub(_redis_client, server_id=config.SERVER_ID)
        return "redis"

    logger.warning("REDIS_URL not configured - rooms live in this process only")
    _game_store = MemoryGameStore()
    _action_log = MemoryActionLog()
    _pubsub = LocalPubSub(server_id=config.SERVER_ID)
    return "memory"


async def _periodic_room_sweep():
    """Delete rooms left untouched past the store TTL."""
    while True:
        try:
            await asyncio.sleep(config.ROOM_SWEEP_SECONDS)
            await _game_service.sweep_expired_rooms()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error(f"Room sweep failed: {e}")


async def _shutdown_services():
    """Gracefully shut down all services."""
    if _sweep_task:
        _sweep_task.cancel()
        try:
            await _sweep_task
        except asyncio.CancelledError:
            pass

    if _turn_timer:
        await _turn_timer.stop()

    if _pubsub:
        await _pubsub.stop()

    if _redis_client:
        await _redis_client.close()
        logger.info("Redis connection closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for async service initialization."""
    global _game_service, _turn_timer, _sweep_task

    backend = await _init_backends()
    await _pubsub.start()

    _game_service = GameService(_game_store, _action_log, _pubsub)
    _turn_timer = TurnTimer(_game_service)
    _game_service.timer = _turn_timer

    if config.ROOM_SWEEP_SECONDS > 0:
        _sweep_task = asyncio.create_task(_periodic_room_sweep())

    set_game_dependencies(_game_service, _identity)
    set_health_dependencies(game_store=_game_store, backend=backend)

    logger.info(f"Dutch server started (environment={config.ENVIRONMENT}, backend={backend})")

    yield

    logger.info("Shutdown initiated...")
    await _shutdown_services()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Dutch Card Game",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

# Request ID middleware (outermost - generates/propagates request IDs)
app.add_middleware(RequestIDMiddleware)

app.include_router(game_router)
app.include_router(health_router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    # The token is the only source of the player's identity
    player_id = _identity.verify(websocket.query_params.get("token"))
    if player_id is None:
        await websocket.send_json({
            "type": "error",
            "code": "unauthorized",
            "message": "Authentication required. Request a token from /api/session.",
        })
        await websocket.close(code=4001, reason="Authentication required")
        return

    connection_id = str(uuid.uuid4())
    logger.debug(f"WebSocket connected as player {player_id}, connection {connection_id}")

    ctx = ConnectionContext(
        websocket=websocket,
        connection_id=connection_id,
        player_id=player_id,
    )

    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                continue
            await dispatch(data, ctx, service=_game_service)
    except WebSocketDisconnect:
        logger.debug(f"WebSocket {connection_id} disconnected")
    finally:
        # The seat is kept; the player can reconnect and join again
        await unwatch_room(ctx, _game_service)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Dutch server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
