"""Site settings — a single row keyed ``"default"``, created on first read."""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.models import SiteSettings
from blogcms.schemas import SiteSettingsUpdate

logger = logging.getLogger(__name__)

SETTINGS_ID = "default"

_OPTIONAL_FIELDS = ("logo_url", "favicon_url", "meta_description", "footer_text")


async def get_settings(db: AsyncSession) -> SiteSettings:
    row = await db.get(SiteSettings, SETTINGS_ID)
    if row is None:
        row = SiteSettings(id=SETTINGS_ID)
        db.add(row)
        await db.flush()
        logger.info("Created default site settings")
    return row


async def update_settings(db: AsyncSession, data: SiteSettingsUpdate) -> SiteSettings:
    """Upsert the settings row; blank optional strings are stored as NULL."""
    row = await get_settings(db)
    row.site_name = data.site_name
    for field in _OPTIONAL_FIELDS:
        setattr(row, field, getattr(data, field) or None)
    await db.flush()
    return row
