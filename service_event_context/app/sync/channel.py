"""
Broadcast transports for storage-change notifications.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional

import redis.asyncio as redis
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shared.logging import get_logger
from shared.errors import BroadcastError

MessageHandler = Callable[["BroadcastMessage"], Awaitable[None]]


class BroadcastMessage(BaseModel):
    """``{"key": ..., "newValue": ...}``; a null ``newValue`` means the key was cleared."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    new_value: Optional[str] = Field(default=None, alias="newValue")
    origin: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class BroadcastChannel(ABC):
    """One execution context's endpoint on a best-effort broadcast medium.

    A context never receives its own publications.
    """

    def __init__(self, context_id: str):
        self.context_id = context_id
        self._handlers: List[MessageHandler] = []

    def subscribe(self, handler: MessageHandler):
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: MessageHandler):
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def _dispatch(self, message: BroadcastMessage, logger):
        for handler in list(self._handlers):
            try:
                await handler(message)
            except Exception as e:
                logger.error("Broadcast handler failed", key=message.key, error=str(e))

    @abstractmethod
    async def start(self):
        ...

    @abstractmethod
    async def stop(self):
        ...

    @abstractmethod
    async def publish(self, key: str, new_value: Optional[str]):
        ...


class LocalBroadcastHub:
    """In-process fan-out between the channels of sibling contexts."""

    def __init__(self):
        self.channels: List["LocalBroadcastChannel"] = []
        self.logger = get_logger("event_context.sync.local_hub")

    def channel(self, context_id: str) -> "LocalBroadcastChannel":
        return LocalBroadcastChannel(self, context_id)

    async def deliver(self, message: BroadcastMessage):
        for channel in list(self.channels):
            if channel.context_id != message.origin:
                await channel._dispatch(message, self.logger)


class LocalBroadcastChannel(BroadcastChannel):
    """Channel attached to a ``LocalBroadcastHub``; delivers only while started."""

    def __init__(self, hub: LocalBroadcastHub, context_id: str):
        super().__init__(context_id)
        self.hub = hub

    @property
    def started(self) -> bool:
        return self in self.hub.channels

    async def start(self):
        if not self.started:
            self.hub.channels.append(self)

    async def stop(self):
        if self.started:
            self.hub.channels.remove(self)

    async def publish(self, key: str, new_value: Optional[str]):
        await self.hub.deliver(BroadcastMessage(key=key, new_value=new_value, origin=self.context_id))


class RedisBroadcastChannel(BroadcastChannel):
    """Redis pub/sub channel shared by every process of one client."""

    def __init__(
        self,
        redis_url: str,
        context_id: str,
        channel_name: str = "event-context:storage",
        client: Optional[redis.Redis] = None,
    ):
        super().__init__(context_id)
        self.redis_url = redis_url
        self.channel_name = channel_name
        self.logger = get_logger("event_context.sync.redis")
        self.redis: Optional[redis.Redis] = client
        self._owns_client = client is None
        self._pubsub = None
        self._listener_task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self):
        """Subscribe and start the listener task."""
        if self.running:
            return
        try:
            if self.redis is None:
                self.redis = redis.from_url(self.redis_url, decode_responses=True)
            self._pubsub = self.redis.pubsub()
            await self._pubsub.subscribe(self.channel_name)
        except Exception as e:
            self.logger.error("Failed to subscribe to broadcast channel", channel=self.channel_name, error=str(e))
            raise BroadcastError("Broadcast channel unavailable", details={"error": str(e)})

        self.running = True
        self._listener_task = asyncio.create_task(self._listen_loop())
        self.logger.info("Broadcast channel started", channel=self.channel_name)

    async def stop(self):
        """Stop listening and release the subscription."""
        self.running = False
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel_name)
                await self._pubsub.aclose()
            except Exception as e:
                self.logger.warning("Error closing broadcast subscription", error=str(e))
            self._pubsub = None

        if self._owns_client and self.redis is not None:
            await self.redis.aclose()
            self.redis = None
        self.logger.info("Broadcast channel stopped", channel=self.channel_name)

    async def publish(self, key: str, new_value: Optional[str]):
        if self.redis is None:
            raise BroadcastError("Broadcast channel not started")
        message = BroadcastMessage(key=key, new_value=new_value, origin=self.context_id)
        try:
            await self.redis.publish(self.channel_name, message.to_json())
        except Exception as e:
            raise BroadcastError("Broadcast publish failed", details={"key": key, "error": str(e)})

    async def handle_raw(self, data) -> bool:
        """Decode one pub/sub payload and dispatch it; returns whether it was dispatched."""
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            message = BroadcastMessage.model_validate_json(data)
        except (ValidationError, ValueError) as e:
            self.logger.warning("Ignoring malformed broadcast", error=str(e))
            return False

        if message.origin == self.context_id:
            return False
        await self._dispatch(message, self.logger)
        return True

    async def _listen_loop(self):
        while self.running:
            try:
                raw = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if raw and raw.get("type") == "message":
                    await self.handle_raw(raw.get("data"))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Error in broadcast listener", error=str(e))
                await asyncio.sleep(1)
