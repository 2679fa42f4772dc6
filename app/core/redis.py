from redis.asyncio import Redis

# Global Redis client instance, set up in the application lifespan
redis_client: Redis | None = None


async def get_optional_redis() -> Redis | None:
    """Redis client, or None when the application runs without Redis.

    Used for best-effort side channels (membership broadcast) that must
    never fail the request they accompany.
    """
    return redis_client
