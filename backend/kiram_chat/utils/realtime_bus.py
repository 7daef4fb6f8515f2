import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set

import redis.asyncio as redis

from kiram_chat.config import settings
from kiram_chat.core.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]
OnError = Callable[[Exception], Awaitable[None]]


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


async def publish_change(bus, channels: Iterable[str], payload: dict) -> None:
    """Notify watchers; the write already happened, so a bus outage is only logged."""
    message = json.dumps(payload)
    for channel in channels:
        try:
            await bus.publish(channel, message)
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Realtime bus publish failed on {channel}: {e}")


class LocalBus:
    """In-process fanout used when no Redis is configured (single worker)."""

    def __init__(self) -> None:
        self._queues: Dict[str, Set[asyncio.Queue]] = {}

    async def publish(self, channel: str, message: str) -> None:
        for queue in list(self._queues.get(channel, ())):
            queue.put_nowait(message)

    async def subscribe(self, channel: str, on_message: OnMessage, on_error: Optional[OnError] = None):
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.setdefault(channel, set()).add(queue)
        bus = self

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    message = await queue.get()
                    if message is None:
                        break
                    await on_message(message)

            async def cancel(self_inner):
                self_inner._running = False
                listeners = bus._queues.get(channel)
                if listeners is not None:
                    listeners.discard(queue)
                    if not listeners:
                        del bus._queues[channel]
                queue.put_nowait(None)

        return _Sub()

    def subscriber_count(self, channel: str) -> int:
        return len(self._queues.get(channel, ()))

    async def close(self) -> None:
        return


class RedisBus:

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: OnMessage, on_error: Optional[OnError] = None):
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Realtime bus subscribe failed on {channel}: {e}")
            raise StoreUnavailable(f"Could not watch {channel}: {e}") from e

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                        if msg and msg.get("type") == "message":
                            data = msg.get("data")
                            if isinstance(data, bytes):
                                data = data.decode("utf-8")
                            await on_message(data)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.warning(f"Realtime bus read failed on {channel}: {e}")
                        if on_error is not None:
                            await on_error(e)
                        await asyncio.sleep(0.5)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                    await pubsub.aclose()
                except redis.RedisError as e:
                    logger.warning(f"Realtime bus unsubscribe failed on {channel}: {e}")

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    if settings.REDIS_URL:
        _bus = RedisBus(settings.REDIS_URL)
        logger.info("Realtime bus: redis pub/sub")
    else:
        _bus = LocalBus()
        logger.info("Realtime bus: in-process (REDIS_URL not set)")
    return _bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
        _bus = None
