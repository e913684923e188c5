from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import AffiliateSettings

MAIN_SETTINGS_ID = "main"


class SettingsRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_main(self) -> Optional[AffiliateSettings]:
        stmt = select(AffiliateSettings).where(
            AffiliateSettings.id == MAIN_SETTINGS_ID
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_main(self, **fields: Any) -> AffiliateSettings:
        row = await self.get_main()
        if row is None:
            row = AffiliateSettings(id=MAIN_SETTINGS_ID)
            self.session.add(row)
        for name, value in fields.items():
            setattr(row, name, value)
        await self.session.flush()
        return row
