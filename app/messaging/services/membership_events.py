"""Cross-process participant cache invalidation over Redis pub/sub.

Every API process keeps its own ParticipantCache. After a membership change
commits, the process that made it publishes the conversation id; every
process (itself included) drops the matching cache entry on receipt.
"""

import asyncio
from uuid import UUID

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.messaging.services.participant_cache import ParticipantCache

logger = structlog.get_logger(__name__)

RECONNECT_DELAY_SECONDS = 1.0


async def publish_membership_change(redis: Redis | None, conversation_id: UUID) -> None:
    """Announce a membership change. Failures are logged, never raised."""
    if redis is None:
        return
    try:
        await redis.publish(settings.MEMBERSHIP_CHANNEL, str(conversation_id))
    except (RedisError, OSError):
        logger.warning("membership_publish_failed", conversation_id=str(conversation_id))


def handle_membership_event(cache: ParticipantCache, payload: object) -> None:
    try:
        conversation_id = UUID(str(payload))
    except ValueError:
        logger.warning("membership_event_malformed", payload=str(payload))
        return
    cache.delete(conversation_id)


async def _consume(redis: Redis, cache: ParticipantCache, channel: str) -> None:
    pubsub = redis.pubsub()
    try:
        await pubsub.subscribe(channel)
        # Events published while disconnected are lost
        cache.clear()
        logger.info("membership_listener_subscribed", channel=channel)
        async for message in pubsub.listen():
            if message.get("type") == "message":
                handle_membership_event(cache, message.get("data"))
    finally:
        try:
            await pubsub.unsubscribe(channel)
        finally:
            await pubsub.aclose()


async def listen_for_membership_changes(
    redis: Redis,
    cache: ParticipantCache,
    channel: str | None = None,
    reconnect_delay: float = RECONNECT_DELAY_SECONDS,
) -> None:
    """Apply membership events to the local cache until cancelled.

    The whole cache is dropped once each (re)subscription is in place.
    """
    channel = channel or settings.MEMBERSHIP_CHANNEL
    while True:
        try:
            await _consume(redis, cache, channel)
        except (RedisError, OSError) as e:
            logger.warning("membership_listener_disconnected", error=str(e))
        await asyncio.sleep(reconnect_delay)
