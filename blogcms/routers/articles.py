from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.database import get_db
from blogcms.dependencies import PaginationParams, get_client_id, get_current_user, require_roles
from blogcms.models import ROLE_ADMIN, ROLE_EDITOR, User
from blogcms.schemas import (
    ArticleCreate,
    ArticleDetail,
    ArticleUpdate,
    CommentCreate,
    CommentPage,
    CommentResponse,
    PaginatedResponse,
    ViewCountResponse,
)
from blogcms.services import article_service, comment_service, view_service

router = APIRouter(prefix="/api/v1/posts", tags=["posts"])

require_editor = require_roles(ROLE_ADMIN, ROLE_EDITOR)


@router.get("", response_model=PaginatedResponse)
async def list_posts(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.get_articles(
        db, pagination.page, pagination.page_size, pagination.sort_by, pagination.sort_order
    )


@router.get("/{slug}", response_model=ArticleDetail)
async def get_post(slug: str, db: AsyncSession = Depends(get_db)):
    post = await article_service.get_article(db, slug)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.post("", status_code=201, response_model=ArticleDetail)
async def create_post(
    data: ArticleCreate,
    user: User = Depends(require_editor),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.create_article(db, data, author_id=user.id)


@router.put("/{slug}", response_model=ArticleDetail, dependencies=[Depends(require_editor)])
async def update_post(slug: str, data: ArticleUpdate, db: AsyncSession = Depends(get_db)):
    post = await article_service.update_article(db, slug, data)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.delete("/{slug}", status_code=204, dependencies=[Depends(require_editor)])
async def delete_post(slug: str, db: AsyncSession = Depends(get_db)):
    deleted = await article_service.delete_article(db, slug)
    if not deleted:
        raise HTTPException(status_code=404, detail="Post not found")


@router.post("/{slug}/views", response_model=ViewCountResponse)
async def record_view(
    slug: str,
    client_id: str = Depends(get_client_id),
    db: AsyncSession = Depends(get_db),
):
    # Always 200: the page that fires this must never see an error.
    return await view_service.record_view(db, slug, client_id)


@router.get("/{slug}/comments", response_model=CommentPage)
async def list_comments(
    slug: str,
    page: int = Query(1, ge=1),
    limit: int = Query(15, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.get_comments(db, slug, page, limit)


@router.post("/{slug}/comments", status_code=201, response_model=CommentResponse)
async def add_comment(
    slug: str,
    data: CommentCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await comment_service.add_comment(db, slug, data, user)
