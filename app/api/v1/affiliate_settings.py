from fastapi import APIRouter

from app.api.dependencies import ActorDep, SessionDep, SettingsProviderDep
from app.db.repositories import AuditLogRepository
from app.schemas.settings import AffiliateSettingsData, AffiliateSettingsUpdate

router = APIRouter()


@router.get("", response_model=AffiliateSettingsData)
async def get_affiliate_settings(
    settings_provider: SettingsProviderDep,
) -> AffiliateSettingsData:
    return await settings_provider.get_affiliate_settings()


@router.patch("", response_model=AffiliateSettingsData)
async def update_affiliate_settings(
    settings_data: AffiliateSettingsUpdate,
    settings_provider: SettingsProviderDep,
    session: SessionDep,
    actor_id: ActorDep,
) -> AffiliateSettingsData:
    updated = await settings_provider.update_affiliate_settings(settings_data)
    async with session.begin():
        await AuditLogRepository(session).create(
            actor=actor_id,
            action="affiliate_settings.update",
            entity_type="affiliate_settings",
            entity_id="main",
            metadata_=settings_data.model_dump(mode="json", exclude_none=True),
        )
    return updated
