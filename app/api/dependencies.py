from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.session import AsyncSessionLocal
from app.services.alerting import ErrorAlertingService
from app.services.job_runner import JobRunner
from app.services.payout_orchestrator import PayoutBatchOrchestrator
from app.services.settings_provider import AffiliateSettingsProvider


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


def get_actor_id(x_actor_id: Annotated[Optional[str], Header()] = None) -> str:
    return x_actor_id or "system"


def get_settings_provider(request: Request) -> AffiliateSettingsProvider:
    return request.app.state.settings_provider


def get_alerting(request: Request) -> ErrorAlertingService:
    return request.app.state.alerting


def get_job_runner(request: Request) -> JobRunner:
    return request.app.state.job_runner


def get_orchestrator(request: Request) -> PayoutBatchOrchestrator:
    state = request.app.state
    return PayoutBatchOrchestrator(
        session_factory=state.session_factory,
        transfer_gateway=state.transfer_gateway,
        settings_provider=state.settings_provider,
        alert_sink=state.alerting,
        clock=state.clock,
        supported_country=settings.payout_country,
        supported_currency=settings.payout_currency,
    )


SessionDep = Annotated[AsyncSession, Depends(get_session)]
ActorDep = Annotated[str, Depends(get_actor_id)]
SettingsProviderDep = Annotated[
    AffiliateSettingsProvider, Depends(get_settings_provider)
]
AlertingDep = Annotated[ErrorAlertingService, Depends(get_alerting)]
JobRunnerDep = Annotated[JobRunner, Depends(get_job_runner)]
OrchestratorDep = Annotated[PayoutBatchOrchestrator, Depends(get_orchestrator)]
