import asyncio
import os
import sys
from typing import AsyncGenerator

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_affiliate_ledger.db"
os.environ["SCHEDULER_ENABLED"] = "false"

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.core.config import settings
from app.db.base import Base
from app.db.session import AsyncSessionLocal, engine
from app.main import app, configure_services
from app.services.alerting import ErrorAlertingService
from app.services.payout_orchestrator import PayoutBatchOrchestrator
from app.services.settings_provider import (
    AffiliateSettingsProvider,
    default_affiliate_settings,
)
from tests.utils.fakes import FIXED_NOW, FakeTransferGateway, NotificationCollector

if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest_asyncio.fixture(scope="function", autouse=True)
async def reset_schema_between_tests() -> AsyncGenerator[None, None]:
    """Ensure test isolation by recreating the schema for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
def fake_gateway() -> FakeTransferGateway:
    return FakeTransferGateway()


@pytest.fixture
def notifications() -> NotificationCollector:
    return NotificationCollector()


@pytest.fixture
def alerting(notifications: NotificationCollector) -> ErrorAlertingService:
    return ErrorAlertingService(notifier=notifications, max_per_window=100)


@pytest.fixture
def settings_provider() -> AffiliateSettingsProvider:
    return AffiliateSettingsProvider(
        AsyncSessionLocal, default_affiliate_settings(settings), ttl_seconds=0
    )


@pytest.fixture
def orchestrator(
    fake_gateway: FakeTransferGateway,
    settings_provider: AffiliateSettingsProvider,
    alerting: ErrorAlertingService,
) -> PayoutBatchOrchestrator:
    return PayoutBatchOrchestrator(
        session_factory=AsyncSessionLocal,
        transfer_gateway=fake_gateway,
        settings_provider=settings_provider,
        alert_sink=alerting,
        clock=lambda: FIXED_NOW,
        supported_country="US",
        supported_currency="usd",
    )


@pytest_asyncio.fixture(scope="function")
async def client(
    fake_gateway: FakeTransferGateway,
    settings_provider: AffiliateSettingsProvider,
    alerting: ErrorAlertingService,
) -> AsyncGenerator[AsyncClient, None]:
    configure_services(
        app,
        session_factory=AsyncSessionLocal,
        transfer_gateway=fake_gateway,
        settings_provider=settings_provider,
        alerting=alerting,
        clock=lambda: FIXED_NOW,
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

