import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.database import get_db
from blogcms.dependencies import get_current_user
from blogcms.exceptions import BlogError, internal_error_payload
from blogcms.models import User
from blogcms.schemas import DeleteResult
from blogcms.services import comment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/comments", tags=["comments"])


@router.delete("/{comment_id}", response_model=DeleteResult)
async def delete_comment(
    comment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await comment_service.delete_comment(db, comment_id, user.id)
        await db.commit()
        return result
    except BlogError:
        raise
    except Exception as exc:
        logger.exception("Error deleting comment %s", comment_id)
        await db.rollback()
        return JSONResponse(
            status_code=500,
            content=internal_error_payload(exc, "Failed to delete comment"),
        )
