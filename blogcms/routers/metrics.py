from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.cache import cache
from blogcms.database import get_db
from blogcms.dependencies import require_roles
from blogcms.models import ROLE_ADMIN, ROLE_EDITOR, Article, Comment, User
from blogcms.schemas import MetricsResponse

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


@router.get(
    "",
    response_model=MetricsResponse,
    dependencies=[Depends(require_roles(ROLE_ADMIN, ROLE_EDITOR))],
)
async def get_dashboard_metrics(db: AsyncSession = Depends(get_db)):
    article_stats = (
        await db.execute(
            select(func.count(Article.id), func.coalesce(func.sum(Article.view_count), 0))
        )
    ).one()
    total_articles, total_views = article_stats

    total_comments = (await db.execute(select(func.count()).select_from(Comment))).scalar_one()
    total_users = (await db.execute(select(func.count()).select_from(User))).scalar_one()

    avg_comments = total_comments / total_articles if total_articles > 0 else 0

    return MetricsResponse(
        total_articles=total_articles,
        total_comments=total_comments,
        total_users=total_users,
        total_views=total_views,
        avg_comments_per_article=round(avg_comments, 2),
        cache_info=cache.stats,
    )
