import asyncio
import logging
import time
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.enums import CommissionType
from app.db.repositories import SettingsRepository
from app.schemas.settings import AffiliateSettingsData, AffiliateSettingsUpdate

logger = logging.getLogger(__name__)


def default_affiliate_settings(config: Settings) -> AffiliateSettingsData:
    return AffiliateSettingsData(
        minimum_payout=config.default_minimum_payout,
        approval_days=config.default_approval_days,
        default_commission_type=CommissionType.PERCENT,
        default_commission_value=10,
        program_active=True,
    )


class AffiliateSettingsProvider:
    """Program settings with a TTL cache in front of the settings table.

    Built once at startup and handed to whoever needs settings; tests build
    their own instance with a fake clock.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        defaults: AffiliateSettingsData,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self._defaults = defaults
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: Optional[AffiliateSettingsData] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def _fresh(self) -> Optional[AffiliateSettingsData]:
        if self._cached is not None and self._clock() < self._expires_at:
            return self._cached
        return None

    async def get_affiliate_settings(self) -> AffiliateSettingsData:
        cached = self._fresh()
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._fresh()
            if cached is not None:
                return cached

            async with self._session_factory() as session:
                row = await SettingsRepository(session).get_main()
                loaded = (
                    AffiliateSettingsData.model_validate(row)
                    if row is not None
                    else self._defaults
                )

            self._cached = loaded
            self._expires_at = self._clock() + self._ttl_seconds
            logger.debug(
                "Affiliate settings loaded minimum_payout=%s approval_days=%s",
                loaded.minimum_payout,
                loaded.approval_days,
            )
            return loaded

    async def update_affiliate_settings(
        self, patch: AffiliateSettingsUpdate
    ) -> AffiliateSettingsData:
        changes = patch.model_dump(exclude_none=True)
        async with self._session_factory() as session:
            async with session.begin():
                repo = SettingsRepository(session)
                if await repo.get_main() is None:
                    seed = self._defaults.model_dump(exclude={"updated_at"})
                    seed.update(changes)
                    changes = seed
                await repo.upsert_main(**changes)

        self.invalidate()
        logger.info(
            "Affiliate settings updated fields=%s",
            sorted(patch.model_dump(exclude_none=True)),
            extra={"fields": sorted(patch.model_dump(exclude_none=True))},
        )
        return await self.get_affiliate_settings()

    def invalidate(self) -> None:
        self._cached = None
        self._expires_at = 0.0
