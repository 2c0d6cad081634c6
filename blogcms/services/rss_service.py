"""
RSS source catalogue.

Adding a source resolves the submitted site URL to its actual feed with
``feeds.find_feed``; the stored URL is the feed, the default name comes
from the site.  Fetching and parsing feed items is done by the ingestion
job outside this service.
"""
import logging
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms import feeds
from blogcms.exceptions import BadRequestError, ConflictError, NotFoundError
from blogcms.models import RSSSource
from blogcms.schemas import RSSSourceCreate, RSSSourceUpdate

logger = logging.getLogger(__name__)


class InvalidURLError(BadRequestError):
    default_message = "Invalid URL format"


class FeedNotFoundError(NotFoundError):
    default_message = "RSS feed not found on this website. Please provide a direct RSS feed URL."


def normalize_url(raw: str) -> str:
    """
    Return *raw* as an absolute http(s) URL, prefixing ``https://`` when
    no scheme is given.  Raises ``InvalidURLError`` otherwise.
    """
    url = raw.strip()
    if "://" not in url:
        url = f"https://{url}"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname or " " in url:
        raise InvalidURLError()
    return url


def name_from_url(url: str) -> str:
    host = urlparse(url).hostname or ""
    return host.removeprefix("www.") or "RSS Feed"


async def list_sources(db: AsyncSession) -> list[RSSSource]:
    q = select(RSSSource).order_by(RSSSource.created_at.desc(), RSSSource.id.desc())
    return list((await db.execute(q)).scalars().all())


async def _get_source(db: AsyncSession, source_id: int) -> RSSSource:
    source = await db.get(RSSSource, source_id)
    if source is None:
        raise NotFoundError("Source not found")
    return source


async def _ensure_unique(db: AsyncSession, url: str, exclude_id: int | None = None) -> None:
    q = select(RSSSource.id).where(RSSSource.url == url)
    if exclude_id is not None:
        q = q.where(RSSSource.id != exclude_id)
    if (await db.execute(q)).first() is not None:
        raise ConflictError("This RSS feed is already added")


async def create_source(db: AsyncSession, data: RSSSourceCreate) -> RSSSource:
    site_url = normalize_url(data.url)
    feed_url = await feeds.find_feed(site_url)
    if feed_url is None:
        raise FeedNotFoundError()
    await _ensure_unique(db, feed_url)

    source = RSSSource(
        name=(data.name or "").strip() or name_from_url(site_url),
        url=feed_url,
        enabled=True,
        is_default=False,
    )
    db.add(source)
    await db.flush()
    logger.info("RSS source added: %s (%s)", source.name, source.url)
    return source


async def update_source(db: AsyncSession, source_id: int, data: RSSSourceUpdate) -> RSSSource:
    source = await _get_source(db, source_id)
    changes = data.model_dump(exclude_unset=True)

    if changes.get("enabled") is not None:
        source.enabled = changes["enabled"]
    if changes.get("name") is not None:
        source.name = changes["name"].strip()
    if changes.get("url") is not None:
        url = normalize_url(changes["url"])
        await _ensure_unique(db, url, exclude_id=source_id)
        source.url = url

    await db.flush()
    return source


async def delete_source(db: AsyncSession, source_id: int) -> None:
    source = await _get_source(db, source_id)
    await db.delete(source)
    await db.flush()
    logger.info("RSS source removed: %s", source.url)
