import os
from pathlib import Path

from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / ".env.test"
load_dotenv(env_file)
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core import redis as redis_module  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import get_db  # noqa: E402
from app.messaging.services.access_control import AccessControl  # noqa: E402
from app.messaging.services.conversation_service import ConversationService  # noqa: E402
from app.messaging.services.message_service import MessageService  # noqa: E402
from app.messaging.services.participant_cache import ParticipantCache  # noqa: E402
from app.messaging.services.read_receipt_service import ReadReceiptService  # noqa: E402
from tests.utils.factories import create_user_factory  # noqa: E402


@pytest.fixture
def memory_engine():
    """In-memory SQLite shared by every connection of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(memory_engine):
    session_factory = sessionmaker(bind=memory_engine, autocommit=False, autoflush=False)
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def participant_cache():
    return ParticipantCache(capacity=100)


@pytest.fixture
def access(db_session, participant_cache):
    return AccessControl(db_session, participant_cache)


@pytest.fixture
def conversation_service(db_session, access):
    return ConversationService(db_session, access)


@pytest.fixture
def message_service(db_session, access):
    return MessageService(db_session, access)


@pytest.fixture
def receipt_service(db_session, access):
    return ReadReceiptService(db_session, access)


@pytest.fixture
def alice(db_session):
    return create_user_factory(db_session, email="alice@example.com", name="Alice")


@pytest.fixture
def bob(db_session):
    return create_user_factory(db_session, email="bob@example.com", name="Bob")


@pytest.fixture
def carol(db_session):
    return create_user_factory(db_session, email="carol@example.com", name="Carol")


@pytest.fixture
def dave(db_session):
    return create_user_factory(db_session, email="dave@example.com", name="Dave")


@pytest.fixture
def inactive_user(db_session):
    return create_user_factory(
        db_session, email="gone@example.com", name="Gone", is_active=False
    )


@pytest.fixture
async def test_client(db_session, participant_cache):
    from app.main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    original_cache = app.state.participant_cache
    app.state.participant_cache = participant_cache
    redis_module.redis_client = None

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
    app.state.participant_cache = original_cache
    redis_module.redis_client = None
