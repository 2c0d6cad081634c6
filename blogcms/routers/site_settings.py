from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.database import get_db
from blogcms.dependencies import get_current_user, require_roles
from blogcms.models import ROLE_ADMIN
from blogcms.schemas import SiteSettingsResponse, SiteSettingsUpdate
from blogcms.services import settings_service

router = APIRouter(prefix="/api/v1/settings", tags=["settings"])


@router.get("", response_model=SiteSettingsResponse, dependencies=[Depends(get_current_user)])
async def get_site_settings(db: AsyncSession = Depends(get_db)):
    return await settings_service.get_settings(db)


@router.put("", response_model=SiteSettingsResponse, dependencies=[Depends(require_roles(ROLE_ADMIN))])
async def update_site_settings(data: SiteSettingsUpdate, db: AsyncSession = Depends(get_db)):
    return await settings_service.update_settings(db, data)
