import os

# Must be set before syncly.database builds its engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

from unittest.mock import AsyncMock, Mock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from syncly.config import settings
from syncly.database import Base
from syncly.models import Customer, Product, Shop
from syncly.services.llm import LLMResponse
from syncly.services.messenger_service import MessengerService
from syncly.services.result import Result


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def engine():
    """Shared in-memory SQLite engine; every session sees the same database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fast_pipeline(monkeypatch):
    """No artificial typing delay, no Redis, no retries."""
    monkeypatch.setattr(settings, "min_reply_delay_seconds", 0)
    monkeypatch.setattr(settings, "ai_timeout_seconds", 5)
    monkeypatch.setattr(settings, "ai_max_retries", 0)
    monkeypatch.setattr(settings, "redis_url", None)
    monkeypatch.setattr(settings, "quiet_window_seconds", 5)
    monkeypatch.setattr(settings, "batching_enabled", True)


@pytest.fixture
def graph_api():
    """Patch every Graph API call; returns the AsyncMock for call inspection."""
    with patch.object(MessengerService, "_make_request", new_callable=AsyncMock) as mock_request:
        mock_request.return_value = Result.success({"recipient_id": "user-1", "message_id": "m-1"})
        yield mock_request


@pytest.fixture
def llm():
    """Fake LLM provider wired into ai_service."""
    provider = Mock()
    provider.generate = AsyncMock(return_value=LLMResponse(content="Сайн байна уу! Танд юугаар туслах вэ?", model="gpt-5-mini"))
    with patch("syncly.services.ai_service.get_llm_provider", return_value=provider):
        yield provider


@pytest.fixture
def shop(db):
    shop = Shop(
        name="Acme",
        facebook_page_id="page-1",
        facebook_page_access_token="page-token",
        is_ai_active=True,
        subscription_plan="pro",
        subscription_status="active",
    )
    db.add(shop)
    db.commit()
    return shop


@pytest.fixture
def customer(db, shop):
    customer = Customer(shop_id=shop.id, platform="messenger", platform_user_id="user-1", name="Бат")
    db.add(customer)
    db.commit()
    return customer


@pytest.fixture
def product(db, shop):
    product = Product(
        shop_id=shop.id,
        name="Цамц",
        description="Хөвөн даавуун цамц",
        price=35000,
        stock=10,
        images=["https://cdn.example.com/tsamts.jpg"],
    )
    db.add(product)
    db.commit()
    return product


@pytest.fixture
def sent_messages(graph_api):
    """Bodies of every me/messages call that carried a message (not a sender action)."""

    def _collect() -> list[dict]:
        bodies = []
        for call in graph_api.call_args_list:
            body = call.kwargs.get("json") or {}
            if "message" in body:
                bodies.append(body)
        return bodies

    return _collect
