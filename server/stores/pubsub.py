"""
Per-room change notification.

Whenever a room's record is committed, the game service publishes on the
room's channel. Each WebSocket connection subscribed to the room reacts by
re-projecting the state for its own viewer, so hidden cards never travel on
a channel: state messages carry only the new version.

This module provides:
- Message types for state changes, action log entries and room closure
- LocalPubSub for a single server process
- GamePubSub for several server processes sharing Redis

Usage:
    pubsub = LocalPubSub()
    await pubsub.start()

    async def handle_message(msg: PubSubMessage):
        print(f"Received: {msg.type} for room {msg.room_id}")

    await pubsub.subscribe(room_id, handle_message)

    await pubsub.publish(PubSubMessage(
        type=MessageType.STATE_CHANGED,
        room_id=room_id,
        data={"version": 7},
    ))

    await pubsub.stop()
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Awaitable, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """Types of messages that can be published on a room channel."""

    # Record committed (carries only the new version)
    STATE_CHANGED = "state_changed"

    # Public action log entry appended
    ACTION_APPENDED = "action_appended"

    # Room deleted
    ROOM_CLOSED = "room_closed"


@dataclass
class PubSubMessage:
    """
    Message sent on a room channel.

    Attributes:
        type: Message type (determines how handlers process it).
        room_id: Room this message is for.
        data: Message payload (type-specific, public data only).
        sender_id: Server ID of the sender (to avoid echo across servers).
    """

    type: MessageType
    room_id: str
    data: dict
    sender_id: Optional[str] = None

    def to_json(self) -> str:
        """Serialize to JSON for Redis."""
        return json.dumps({
            "type": self.type.value,
            "room_id": self.room_id,
            "data": self.data,
            "sender_id": self.sender_id,
        })

    @classmethod
    def from_json(cls, raw: str) -> "PubSubMessage":
        """Deserialize from JSON."""
        d = json.loads(raw)
        return cls(
            type=MessageType(d["type"]),
            room_id=d["room_id"],
            data=d.get("data", {}),
            sender_id=d.get("sender_id"),
        )


# Type alias for message handlers
MessageHandler = Callable[[PubSubMessage], Awaitable[None]]


class PubSub:
    """
    Handler registry and local dispatch shared by both implementations.

    Handlers registered on this process always receive messages published
    by this process, directly and in publish order.
    """

    CHANNEL_PREFIX = "dutch:channel:"

    def __init__(self, server_id: str = "default"):
        self.server_id = server_id
        self._handlers: dict[str, list[MessageHandler]] = {}

    def _channel(self, room_id: str) -> str:
        """Get the channel name for a room."""
        return f"{self.CHANNEL_PREFIX}{room_id}"

    async def subscribe(self, room_id: str, handler: MessageHandler) -> None:
        """
        Subscribe to room events.

        Args:
            room_id: Room to subscribe to.
            handler: Async function to call on each message.
        """
        channel = self._channel(room_id)
        if channel not in self._handlers:
            self._handlers[channel] = []
            await self._on_first_handler(channel)
            logger.debug(f"Subscribed to channel {channel}")
        self._handlers[channel].append(handler)

    async def unsubscribe(self, room_id: str) -> None:
        """Drop every handler for a room."""
        channel = self._channel(room_id)
        if channel in self._handlers:
            del self._handlers[channel]
            await self._on_last_handler(channel)
            logger.debug(f"Unsubscribed from channel {channel}")

    async def remove_handler(self, room_id: str, handler: MessageHandler) -> None:
        """
        Remove a specific handler from a room subscription.

        Args:
            room_id: Room the handler was registered for.
            handler: Handler to remove.
        """
        channel = self._channel(room_id)
        if channel in self._handlers:
            handlers = self._handlers[channel]
            if handler in handlers:
                handlers.remove(handler)
            # If no handlers left, unsubscribe
            if not handlers:
                await self.unsubscribe(room_id)

    def handler_count(self, room_id: str) -> int:
        return len(self._handlers.get(self._channel(room_id), []))

    async def publish(self, message: PubSubMessage) -> int:
        """
        Publish a message to a room's channel.

        Returns:
            Number of local handlers that received the message.
        """
        message.sender_id = self.server_id
        return await self._dispatch(self._channel(message.room_id), message)

    async def _dispatch(self, channel: str, message: PubSubMessage) -> int:
        # Copy: a handler may remove itself while we iterate
        handlers = list(self._handlers.get(channel, []))
        for handler in handlers:
            try:
                await handler(message)
            except Exception as e:
                logger.error(f"Error in pubsub handler: {e}", exc_info=True)
        return len(handlers)

    async def _on_first_handler(self, channel: str) -> None:
        pass

    async def _on_last_handler(self, channel: str) -> None:
        pass

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        self._handlers.clear()


class LocalPubSub(PubSub):
    """In-process pub/sub for a single server."""

    async def stop(self) -> None:
        await super().stop()
        logger.info("LocalPubSub stopped")


class GamePubSub(PubSub):
    """
    Redis pub/sub for cross-server room events.

    Publishing dispatches to local handlers and then to Redis; the listener
    skips messages this server sent, so local handlers see each message once.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        server_id: str = "default",
    ):
        """
        Initialize pub/sub with Redis client.

        Args:
            redis_client: Async Redis client.
            server_id: Unique ID for this server instance.
        """
        super().__init__(server_id)
        self.redis = redis_client
        self.pubsub = redis_client.pubsub()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def _on_first_handler(self, channel: str) -> None:
        await self.pubsub.subscribe(channel)

    async def _on_last_handler(self, channel: str) -> None:
        await self.pubsub.unsubscribe(channel)

    async def publish(self, message: PubSubMessage) -> int:
        count = await super().publish(message)
        channel = self._channel(message.room_id)
        remote = await self.redis.publish(channel, message.to_json())
        logger.debug(f"Published {message.type.value} to {channel} ({remote} receivers)")
        return count

    async def start(self) -> None:
        """Start listening for messages."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._listen())
        logger.info("GamePubSub listener started")

    async def stop(self) -> None:
        """Stop listening and clean up."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        await self.pubsub.close()
        await super().stop()
        logger.info("GamePubSub listener stopped")

    async def _listen(self) -> None:
        """Main listener loop."""
        while self._running:
            try:
                if not self._handlers:
                    # get_message() needs at least one subscribed channel
                    await asyncio.sleep(0.1)
                    continue
                message = await self.pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message and message["type"] == "message":
                    await self._handle_message(message)

            except asyncio.CancelledError:
                break
            except redis.ConnectionError as e:
                logger.error(f"PubSub connection error: {e}")
                await asyncio.sleep(1)
            except Exception as e:
                logger.error(f"PubSub listener error: {e}", exc_info=True)
                await asyncio.sleep(1)

    async def _handle_message(self, raw_message: dict) -> None:
        """Handle an incoming Redis message."""
        try:
            channel = raw_message["channel"]
            if isinstance(channel, bytes):
                channel = channel.decode()

            data = raw_message["data"]
            if isinstance(data, bytes):
                data = data.decode()

            msg = PubSubMessage.from_json(data)

            # Already dispatched locally when we published it
            if msg.sender_id == self.server_id:
                return

            await self._dispatch(channel, msg)

        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in pubsub message: {e}")
        except Exception as e:
            logger.error(f"Error processing pubsub message: {e}", exc_info=True)
