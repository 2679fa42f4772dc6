from uuid import UUID

from redis.asyncio import Redis

from app.core.config import settings
from app.messaging.schemas.message import TypingUser


class TypingIndicatorService:
    """Short-lived "is typing" markers kept in Redis.

    Each marker is a key ``typing:<conversation>:<user>`` holding the display
    name, expiring after a few seconds unless refreshed by the client.
    """

    def __init__(self, redis: Redis, ttl_seconds: int | None = None) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds or settings.TYPING_TTL_SECONDS

    @staticmethod
    def _key(conversation_id: UUID, user_id: UUID | str) -> str:
        return f"typing:{conversation_id}:{user_id}"

    async def set_typing(self, conversation_id: UUID, user_id: UUID, name: str) -> None:
        await self.redis.setex(self._key(conversation_id, user_id), self.ttl_seconds, name)

    async def get_typing(self, conversation_id: UUID, requester_id: UUID) -> list[TypingUser]:
        """Users currently typing in the conversation, excluding the requester."""
        cursor = 0
        pattern = self._key(conversation_id, "*")
        typing: list[TypingUser] = []

        while True:
            cursor, keys = await self.redis.scan(cursor, match=pattern, count=100)

            for key in keys:
                user_part = key.rsplit(":", 1)[-1]
                try:
                    user_id = UUID(user_part)
                except ValueError:
                    continue
                if user_id == requester_id:
                    continue
                name = await self.redis.get(key)
                # Expired between SCAN and GET
                if name:
                    typing.append(TypingUser(user_id=user_id, name=name))

            if cursor == 0:
                break

        return typing
