"""
Post service — business logic for the Article aggregate.

Design notes
------------
- Posts are addressed by slug everywhere outside this module.  The slug
  is derived from the title on create and then kept stable so that links
  already shared keep working after an edit.
- List and detail reads go through the Redis cache-aside layer; cache
  keys encode every dimension that affects the result.
- ``joinedload`` (author) and ``selectinload`` (tags) are used to avoid
  N+1 queries; ``unique()`` is required after ``joinedload``.
- Functions flush but do not commit; the ``get_db`` dependency owns the
  transaction.
- View counting lives in ``view_service`` and never goes through here.
"""
import logging
import math
import re
from datetime import datetime, timezone

from slugify import slugify as python_slugify
from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from blogcms import storage
from blogcms.cache import cache, post_detail_key, post_list_key
from blogcms.config import settings
from blogcms.models import Article, Tag
from blogcms.schemas import ArticleCreate, ArticleUpdate, PaginatedResponse

logger = logging.getLogger(__name__)

_SLUG_WORD_SPLIT_RE = re.compile(r"[\s_-]+")
_SLUG_NON_WORD_RE = re.compile(r"[^\w]")
MAX_SLUG_LENGTH = 100

# Dropped from slugs so titles reduce to their keywords.
SLUG_STOPWORDS: frozenset[str] = frozenset({
    "в", "на", "с", "по", "из", "за", "от", "до", "для", "при", "под", "над",
    "о", "об", "без", "через", "между", "среди", "около", "возле", "вокруг",
    "и", "или", "но", "а", "что", "как", "чтобы", "если", "когда", "где",
    "который", "которая", "которое", "которые", "это", "этот", "эта", "эти",
    "он", "она", "оно", "они", "мы", "вы", "ты", "быть", "был", "была", "было", "были",
    "не", "нет", "ни", "уже", "еще", "тоже", "также",
    "a", "an", "the", "in", "on", "at", "by", "for", "of", "to", "with", "from",
    "up", "about", "into", "through", "during", "within", "without", "against",
    "and", "or", "but", "as", "if", "when", "where", "which", "that", "what",
    "this", "these", "those", "he", "she", "it", "they", "we", "you", "i",
    "is", "are", "was", "were", "be", "been", "being",
    "not", "no", "nor", "yet", "so", "too", "also",
})

# Cyrillic transliteration applied before the generic unidecode pass.
_CYRILLIC_REPLACEMENTS: list[tuple[str, str]] = [
    (cyr, lat)
    for cyr, lat in zip(
        "абвгдеёжзийклмнопрстуфхцчшщъыьэюя",
        ["a", "b", "v", "g", "d", "e", "yo", "zh", "z", "i", "y", "k", "l", "m", "n", "o",
         "p", "r", "s", "t", "u", "f", "h", "ts", "ch", "sh", "sch", "", "y", "", "e", "yu", "ya"],
    )
]

# Columns that are safe to sort by; guards against arbitrary attribute access.
_SORTABLE_COLUMNS: frozenset[str] = frozenset(
    {"created_at", "published_at", "view_count", "title"}
)


def slugify(text: str) -> str:
    """
    Return an ASCII, lowercase slug derived from *text*.

    Stop-words are dropped and Cyrillic is transliterated, so
    "Как установить Windows на компьютер" becomes
    "ustanovit-windows-kompyuter".
    """
    words = [
        word
        for word in _SLUG_WORD_SPLIT_RE.split((text or "").lower())
        if _SLUG_NON_WORD_RE.sub("", word) not in SLUG_STOPWORDS
    ]
    return python_slugify(
        " ".join(words),
        max_length=MAX_SLUG_LENGTH,
        replacements=_CYRILLIC_REPLACEMENTS,
    )


def _resolve_sort_column(sort_by: str):
    if sort_by in _SORTABLE_COLUMNS:
        return getattr(Article, sort_by)
    return Article.created_at


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _serialize_user(author) -> dict | None:
    if author is None:
        return None
    return {
        "id": author.id,
        "username": author.username,
        "email": author.email,
        "display_name": author.display_name,
        "bio": author.bio,
        "avatar_url": author.avatar_url,
        "role": author.role,
        "created_at": _isoformat(author.created_at),
    }


def _article_to_dict(article: Article) -> dict:
    """Serialise a post for list views."""
    return {
        "id": article.id,
        "title": article.title,
        "slug": article.slug,
        "excerpt": article.excerpt,
        "cover_image": article.cover_image,
        "view_count": article.view_count,
        "is_published": article.is_published,
        "published_at": _isoformat(article.published_at),
        "created_at": _isoformat(article.created_at),
        "updated_at": _isoformat(article.updated_at),
        "user_id": article.user_id,
        "author": _serialize_user(article.author),
        "tags": [{"id": t.id, "name": t.name} for t in article.tags],
    }


def _article_detail_to_dict(article: Article) -> dict:
    data = _article_to_dict(article)
    data["content"] = article.content
    return data


async def _resolve_tags(db: AsyncSession, tag_names: list[str]) -> list[Tag]:
    """Return Tag rows for *tag_names*, creating missing ones."""
    tags: list[Tag] = []
    for name in dict.fromkeys(n.strip() for n in tag_names if n.strip()):
        result = await db.execute(select(Tag).where(Tag.name == name))
        tag = result.scalar_one_or_none()
        if not tag:
            tag = Tag(name=name)
            db.add(tag)
            await db.flush()
        tags.append(tag)
    return tags


async def _unique_slug(db: AsyncSession, title: str) -> str:
    base = slugify(title) or "post"
    slug = base
    suffix = 1
    while (await db.execute(select(Article.id).where(Article.slug == slug))).first() is not None:
        suffix += 1
        slug = f"{base}-{suffix}"
    return slug


async def _load_article(db: AsyncSession, slug: str, refresh: bool = False) -> Article | None:
    q = (
        select(Article)
        .where(Article.slug == slug)
        .options(joinedload(Article.author), selectinload(Article.tags))
    )
    if refresh:
        q = q.execution_options(populate_existing=True)
    result = await db.execute(q)
    return result.unique().scalar_one_or_none()


async def get_articles(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> PaginatedResponse:
    """Return a page of published posts, served from cache when possible."""
    cache_key = post_list_key(page, page_size, sort_by, sort_order)
    cached = await cache.get(cache_key)
    if cached:
        return PaginatedResponse(**cached)

    count_q = select(func.count()).select_from(Article).where(Article.is_published.is_(True))
    total: int = (await db.execute(count_q)).scalar_one()

    sort_col = _resolve_sort_column(sort_by)
    order_expr = desc(sort_col) if sort_order == "desc" else asc(sort_col)

    articles_q = (
        select(Article)
        .where(Article.is_published.is_(True))
        .options(joinedload(Article.author), selectinload(Article.tags))
        .order_by(order_expr, desc(Article.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(articles_q)
    articles = result.unique().scalars().all()

    response = PaginatedResponse(
        items=[_article_to_dict(a) for a in articles],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )
    await cache.set(cache_key, response.model_dump(), ttl=settings.CACHE_TTL_LIST)
    return response


async def get_article(db: AsyncSession, slug: str) -> dict | None:
    """Return the detail dict for *slug*, or None when it does not exist."""
    cache_key = post_detail_key(slug)
    cached = await cache.get(cache_key)
    if cached:
        return cached

    article = await _load_article(db, slug)
    if article is None:
        return None

    data = _article_detail_to_dict(article)
    await cache.set(cache_key, data, ttl=settings.CACHE_TTL_DETAIL)
    return data


async def create_article(db: AsyncSession, data: ArticleCreate, author_id: int) -> dict:
    """Create a post owned by *author_id* and return its detail dict."""
    article = Article(
        title=data.title,
        slug=await _unique_slug(db, data.title),
        content=data.content,
        excerpt=data.excerpt,
        cover_image=data.cover_image or None,
        is_published=data.is_published,
        user_id=author_id,
    )
    if data.is_published:
        article.published_at = datetime.now(timezone.utc)

    if data.tags:
        article.tags.extend(await _resolve_tags(db, data.tags))

    db.add(article)
    await db.flush()
    await cache.invalidate_post()
    logger.info("Post created: %s by user %s", article.slug, author_id)

    # Reload so author and tags come back fully populated.
    article = await _load_article(db, article.slug, refresh=True)
    return _article_detail_to_dict(article)


async def update_article(db: AsyncSession, slug: str, data: ArticleUpdate) -> dict | None:
    """
    Partially update the post at *slug*; only fields present in the
    payload change.  Returns None when the post does not exist.
    """
    article = await _load_article(db, slug)
    if article is None:
        return None

    update_data = data.model_dump(exclude_unset=True)
    tags_data: list[str] | None = update_data.pop("tags", None)

    for field, value in update_data.items():
        setattr(article, field, value)

    if data.is_published and not article.published_at:
        article.published_at = datetime.now(timezone.utc)

    if tags_data is not None:
        article.tags.clear()
        article.tags.extend(await _resolve_tags(db, tags_data))

    await db.flush()
    await cache.invalidate_post(slug)
    return _article_detail_to_dict(article)


async def delete_article(db: AsyncSession, slug: str) -> bool:
    """
    Delete the post at *slug* together with its comments (store cascade)
    and, best-effort, its uploaded images.

    Returns False when the post does not exist.
    """
    result = await db.execute(select(Article).where(Article.slug == slug))
    article = result.scalar_one_or_none()
    if article is None:
        return False

    removed = await storage.delete_article_files(article.cover_image, article.content)
    logger.info("Post %s: removed %d stored file(s)", slug, removed)

    await db.delete(article)
    await db.flush()
    await cache.invalidate_post(slug)
    return True

