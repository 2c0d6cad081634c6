"""
View counting for posts.

Counting is best-effort telemetry: a reader's page must never fail or
stall because the counter could not be bumped.  Every outcome is
therefore reported as a ``ViewCountResponse`` rather than an exception:

- accepted         -> ``success=True``, ``views=<new count>``
- rate-limited     -> ``success=True``, ``views=None`` (already counted
  within the current window)
- missing / failed -> ``success=False``, ``views=None``, ``error`` set

Unlike the other services this one commits its own transaction, so a
storage failure surfaces here (and is swallowed) instead of in the
request teardown.
"""
import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.models import Article
from blogcms.ratelimit import view_limiter
from blogcms.schemas import ViewCountResponse

logger = logging.getLogger(__name__)

INCREMENT_FAILED = "Failed to increment views"


async def increment_views(db: AsyncSession, slug: str) -> int | None:
    """
    Atomically add one view to the post at *slug* and return the new
    total, or None when no such post exists.
    """
    stmt = (
        update(Article)
        .where(Article.slug == slug)
        .values(view_count=Article.view_count + 1)
        .returning(Article.view_count)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def record_view(db: AsyncSession, slug: str, client_id: str) -> ViewCountResponse:
    if not await view_limiter.hit(client_id, slug):
        return ViewCountResponse(success=True, views=None)

    try:
        views = await increment_views(db, slug)
        if views is None:
            await db.rollback()
            logger.warning("View not counted: post %r does not exist", slug)
            return ViewCountResponse(success=False, views=None, error=INCREMENT_FAILED)
        await db.commit()
    except Exception:
        logger.exception("Error incrementing views for post %r", slug)
        await db.rollback()
        return ViewCountResponse(success=False, views=None, error=INCREMENT_FAILED)

    return ViewCountResponse(success=True, views=views)
