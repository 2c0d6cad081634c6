"""
Comment service — threaded comments on posts.

Comments form a tree through ``parent_id``.  Reads fetch a post's whole
comment set in one query and assemble the tree in memory; writes are
guarded by a per-user cooldown.  Deleting a comment first clears the
image files attached to it and its direct replies (best-effort), then
issues a single delete whose FK cascade removes the replies.
"""
import asyncio
import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, load_only, selectinload

from blogcms import storage
from blogcms.config import settings
from blogcms.exceptions import ForbiddenError, NotFoundError, RateLimitedError
from blogcms.models import Article, Comment, User
from blogcms.ratelimit import comment_limiter
from blogcms.schemas import CommentCreate

logger = logging.getLogger(__name__)


def _author_to_dict(author: User | None) -> dict | None:
    if author is None:
        return None
    return {
        "id": author.id,
        "username": author.username,
        "display_name": author.display_name,
        "avatar_url": author.avatar_url,
    }


def _comment_to_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "content": comment.content,
        "image_url": comment.image_url,
        "article_id": comment.article_id,
        "author_id": comment.author_id,
        "parent_id": comment.parent_id,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
        "author": _author_to_dict(comment.author),
    }


def build_comment_tree(comments: list[dict]) -> list[dict]:
    """
    Nest a flat list of comment dicts by ``parent_id``.

    Replies at every depth are ordered oldest first.  Roots keep the
    order they arrive in; replies whose parent is missing are dropped.
    """
    nodes = {c["id"]: {**c, "replies": []} for c in comments}
    roots: list[dict] = []
    for comment in comments:
        node = nodes[comment["id"]]
        parent_id = comment["parent_id"]
        if parent_id is None:
            roots.append(node)
        elif parent_id in nodes:
            nodes[parent_id]["replies"].append(node)

    stack = list(roots)
    while stack:
        node = stack.pop()
        node["replies"].sort(key=lambda r: (r["created_at"] or "", r["id"]))
        stack.extend(node["replies"])
    return roots


async def _get_post_id(db: AsyncSession, slug: str) -> int:
    post_id = (await db.execute(select(Article.id).where(Article.slug == slug))).scalar_one_or_none()
    if post_id is None:
        raise NotFoundError("Post not found")
    return post_id


async def get_comments(db: AsyncSession, slug: str, page: int = 1, limit: int | None = None) -> dict:
    """
    Return one page of a post's comment tree.

    Pagination applies to top-level comments only (newest first); each
    root carries its full reply subtree.
    """
    limit = limit or settings.COMMENTS_PAGE_SIZE
    post_id = await _get_post_id(db, slug)

    q = (
        select(Comment)
        .where(Comment.article_id == post_id)
        .options(joinedload(Comment.author))
        .order_by(Comment.created_at.asc(), Comment.id.asc())
    )
    rows = (await db.execute(q)).unique().scalars().all()

    roots = build_comment_tree([_comment_to_dict(c) for c in rows])
    roots.sort(key=lambda r: (r["created_at"] or "", r["id"]), reverse=True)

    skip = (page - 1) * limit
    page_items = roots[skip:skip + limit]
    return {
        "comments": page_items,
        "has_more": skip + len(page_items) < len(roots),
        "total_top_level": len(roots),
        "total_all": len(rows),
    }


async def add_comment(db: AsyncSession, slug: str, data: CommentCreate, author: User) -> dict:
    """
    Post a comment (or a reply when ``parent_id`` is set) as *author*.

    Raises ``RateLimitedError`` inside the cooldown window,
    ``NotFoundError`` for an unknown post or parent.
    """
    if not await comment_limiter.hit(str(author.id)):
        retry_after = await comment_limiter.retry_after(str(author.id))
        raise RateLimitedError(
            "Too many comments. Try again in a few seconds.", retry_after=retry_after
        )

    post_id = await _get_post_id(db, slug)

    if data.parent_id is not None:
        parent = await db.get(Comment, data.parent_id)
        if parent is None or parent.article_id != post_id:
            raise NotFoundError("Parent comment not found")

    comment = Comment(
        content=data.content,
        image_url=data.image_url or None,
        article_id=post_id,
        author_id=author.id,
        parent_id=data.parent_id,
    )
    db.add(comment)
    await db.flush()
    logger.info("Comment %s created on post %s by user %s", comment.id, slug, author.id)

    result = _comment_to_dict(comment)
    result["author"] = _author_to_dict(author)
    return result


async def _remove_image(comment_id: int, image_url: str) -> None:
    try:
        await storage.delete_comment_image(image_url)
    except Exception:
        logger.exception("Image cleanup failed for comment %s (%s)", comment_id, image_url)


async def delete_comment(db: AsyncSession, comment_id: int, requester_id: int) -> dict:
    """
    Delete *comment_id* on behalf of *requester_id*.

    1. Load the comment and its direct replies (id, author, image only).
    2. Check existence, then authorship.
    3. Remove every attached image independently; failures are logged
       and never abort the delete.
    4. Delete the comment row; the FK cascade drops the replies in the
       same statement.
    """
    columns = (Comment.id, Comment.author_id, Comment.image_url)
    q = (
        select(Comment)
        .where(Comment.id == comment_id)
        .options(
            load_only(*columns),
            selectinload(Comment.replies).load_only(*columns),
        )
    )
    comment = (await db.execute(q)).scalar_one_or_none()

    if comment is None:
        raise NotFoundError("Comment not found")
    if comment.author_id != requester_id:
        raise ForbiddenError()

    await asyncio.gather(
        *(
            _remove_image(item.id, item.image_url)
            for item in [comment, *comment.replies]
            if item.image_url
        )
    )

    await db.execute(delete(Comment).where(Comment.id == comment_id))
    logger.info(
        "Comment %s deleted by user %s (%d direct replies)",
        comment_id,
        requester_id,
        len(comment.replies),
    )
    return {"success": True}

