from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.database import get_db
from blogcms.dependencies import require_roles
from blogcms.models import ROLE_ADMIN, ROLE_EDITOR
from blogcms.schemas import DeleteResult, RSSSourceCreate, RSSSourceResponse, RSSSourceUpdate
from blogcms.services import rss_service

router = APIRouter(
    prefix="/api/v1/rss-sources",
    tags=["rss-sources"],
    dependencies=[Depends(require_roles(ROLE_ADMIN, ROLE_EDITOR))],
)


@router.get("", response_model=list[RSSSourceResponse])
async def list_sources(db: AsyncSession = Depends(get_db)):
    return await rss_service.list_sources(db)


@router.post("", status_code=201, response_model=RSSSourceResponse)
async def create_source(data: RSSSourceCreate, db: AsyncSession = Depends(get_db)):
    return await rss_service.create_source(db, data)


@router.put("/{source_id}", response_model=RSSSourceResponse)
async def update_source(source_id: int, data: RSSSourceUpdate, db: AsyncSession = Depends(get_db)):
    return await rss_service.update_source(db, source_id, data)


@router.delete("/{source_id}", response_model=DeleteResult)
async def delete_source(source_id: int, db: AsyncSession = Depends(get_db)):
    await rss_service.delete_source(db, source_id)
    return {"success": True}
