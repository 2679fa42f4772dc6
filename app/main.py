import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core import redis as redis_module
from app.core.config import settings
from app.core.exceptions import register_exception_handlers
from app.core.log_config import RequestLoggingMiddleware, setup_logging
from app.db.session import SessionLocal
from app.messaging.routes import messages as messages_routes
from app.messaging.services.membership_events import listen_for_membership_changes
from app.messaging.services.participant_cache import ParticipantCache

setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("connecting_to_redis")
    redis_module.redis_client = Redis.from_url(
        settings.REDIS_URL, decode_responses=True, encoding="utf-8"
    )

    try:
        await redis_module.redis_client.ping()
        logger.info("redis_connected")
    except (RedisError, OSError) as e:
        logger.error("redis_connection_failed", error=str(e))

    # Keeps retrying until Redis is reachable
    listener = asyncio.create_task(
        listen_for_membership_changes(redis_module.redis_client, app.state.participant_cache)
    )

    yield

    listener.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await listener

    logger.info("closing_redis")
    if redis_module.redis_client:
        await redis_module.redis_client.aclose()
        redis_module.redis_client = None
    logger.info("redis_closed")


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="Conversations, messages and read receipts for the community platform",
    version="1.0.0",
)

app.state.participant_cache = ParticipantCache(settings.PARTICIPANT_CACHE_SIZE)

register_exception_handlers(app, debug=settings.DEBUG)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(
    messages_routes.router,
    prefix=f"{settings.API_V1_PREFIX}/messaging",
    tags=["messaging"],
)


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": settings.PROJECT_NAME, "version": "1.0.0", "status": "running"}


@app.get("/health")
async def health_check() -> dict[str, str]:
    result = {"status": "healthy", "database": "ok", "redis": "ok"}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        result["database"] = "unavailable"
        result["status"] = "degraded"
    finally:
        db.close()

    try:
        if redis_module.redis_client is None:
            raise RedisError("not initialized")
        await redis_module.redis_client.ping()
    except (RedisError, OSError):
        result["redis"] = "unavailable"
        result["status"] = "degraded"

    return result
