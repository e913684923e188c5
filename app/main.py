import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.middlewares import register_exception_handlers
from app.api.v1 import api_router
from app.core.config import settings
from app.db.session import AsyncSessionLocal
from app.services.alerting import ErrorAlertingService
from app.services.payout_orchestrator import PayoutBatchOrchestrator, utcnow
from app.services.scheduled_jobs import build_job_runner
from app.services.settings_provider import (
    AffiliateSettingsProvider,
    default_affiliate_settings,
)
from app.services.transfer_gateway import StripeTransferGateway, TransferGateway

logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s - %(name)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)


def configure_services(
    app: FastAPI,
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    transfer_gateway: Optional[TransferGateway] = None,
    settings_provider: Optional[AffiliateSettingsProvider] = None,
    alerting: Optional[ErrorAlertingService] = None,
    clock: Callable[[], datetime] = utcnow,
) -> None:
    """Build the long-lived collaborators once and hang them on app.state."""
    transfer_gateway = transfer_gateway or StripeTransferGateway(
        settings.stripe_secret_key
    )
    settings_provider = settings_provider or AffiliateSettingsProvider(
        session_factory,
        default_affiliate_settings(settings),
        ttl_seconds=settings.affiliate_settings_cache_ttl_seconds,
    )
    alerting = alerting or ErrorAlertingService(
        window_seconds=settings.alert_rate_limit_window_seconds,
        max_per_window=settings.alert_max_per_window,
    )
    orchestrator = PayoutBatchOrchestrator(
        session_factory=session_factory,
        transfer_gateway=transfer_gateway,
        settings_provider=settings_provider,
        alert_sink=alerting,
        clock=clock,
        supported_country=settings.payout_country,
        supported_currency=settings.payout_currency,
    )

    app.state.session_factory = session_factory
    app.state.transfer_gateway = transfer_gateway
    app.state.settings_provider = settings_provider
    app.state.alerting = alerting
    app.state.clock = clock
    app.state.job_runner = build_job_runner(
        session_factory, orchestrator, settings_provider, clock, alert_sink=alerting
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if settings.scheduler_enabled:
        app.state.job_runner.start()
    else:
        logger.info("Scheduler disabled; jobs run only when triggered via /v1/jobs")
    yield
    app.state.job_runner.stop()


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    debug=settings.api_debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
configure_services(app)

app.include_router(api_router, prefix="/v1")
app.mount("/metrics", make_asgi_app())


@app.get("/health")
async def health_check() -> dict:
    return {"status": "healthy"}
