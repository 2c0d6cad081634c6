"""
RSS/Atom feed discovery for user-supplied site URLs.

``find_feed`` tries, in order:

1. the URL itself, when it has a path (a direct feed link);
2. a list of conventional feed paths on the site root;
3. ``<link rel="alternate">`` feed tags on the home page;
4. the WordPress default ``/feed/``.

Every outbound request is best-effort: transport errors and non-2xx
answers just move on to the next candidate.
"""
import logging
from html.parser import HTMLParser
from urllib.parse import urljoin, urlparse

import httpx

from blogcms.config import settings

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; blogcms-feed-finder/1.0)"

COMMON_FEED_PATHS = (
    "/feed",
    "/rss",
    "/feed.xml",
    "/rss.xml",
    "/atom.xml",
    "/feed.rss",
    "/rss.php",
    "/feed/",
    "/rss/",
    "/index.xml",
    "/blog/feed",
    "/blog/rss",
    "/news/feed",
    "/news/rss",
)

_FEED_TYPE_HINTS = ("xml", "rss", "atom")
_FEED_MARKERS = ("<rss", "<feed", "<rdf:RDF")


def build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.FEED_DISCOVERY_TIMEOUT,
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
    )


class _FeedLinkParser(HTMLParser):
    """Collect ``href``s of RSS/Atom ``<link>`` tags, in document order."""

    def __init__(self) -> None:
        super().__init__()
        self.rss: list[str] = []
        self.atom: list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag != "link":
            return
        attributes = {name: (value or "") for name, value in attrs}
        rel = attributes.get("rel", "").lower().split()
        link_type = attributes.get("type", "").lower()
        href = attributes.get("href", "").strip()
        if not href or not ({"alternate", "feed"} & set(rel)):
            return
        if "rss" in link_type:
            self.rss.append(href)
        elif link_type == "application/atom+xml":
            self.atom.append(href)


def _feedish_content_type(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "").lower()
    return any(hint in content_type for hint in _FEED_TYPE_HINTS)


async def _head_ok(client: httpx.AsyncClient, url: str) -> httpx.Response | None:
    try:
        response = await client.head(url)
    except httpx.HTTPError as exc:
        logger.debug("Feed check HEAD %s failed: %s", url, exc)
        return None
    return response if response.is_success else None


async def _is_feed(client: httpx.AsyncClient, url: str) -> bool:
    """
    True when *url* answers with a feed content type and, if the body can
    be fetched, the body looks like RSS, Atom or RDF.
    """
    head = await _head_ok(client, url)
    if head is None or not _feedish_content_type(head):
        return False
    try:
        response = await client.get(url)
    except httpx.HTTPError:
        # The HEAD answer already said feed.
        return True
    return response.is_success and any(marker in response.text for marker in _FEED_MARKERS)


async def _linked_feeds(client: httpx.AsyncClient, base_url: str) -> list[str]:
    try:
        response = await client.get(base_url)
    except httpx.HTTPError as exc:
        logger.debug("Feed check GET %s failed: %s", base_url, exc)
        return []
    if not response.is_success:
        return []

    parser = _FeedLinkParser()
    parser.feed(response.text)
    return [urljoin(base_url + "/", href) for href in parser.rss + parser.atom]


async def find_feed(site_url: str) -> str | None:
    """Return the feed URL published by *site_url*, or None if none is found."""
    parsed = urlparse(site_url)
    base_url = f"{parsed.scheme}://{parsed.netloc}"

    async with build_client() as client:
        if parsed.path not in ("", "/") and await _is_feed(client, site_url):
            return site_url

        for path in COMMON_FEED_PATHS:
            candidate = base_url + path
            if await _is_feed(client, candidate):
                return candidate

        for candidate in await _linked_feeds(client, base_url):
            if await _head_ok(client, candidate) is not None:
                return candidate

        wordpress_feed = base_url + "/feed/"
        if await _head_ok(client, wordpress_feed) is not None:
            return wordpress_feed

    logger.info("No feed found for %s", site_url)
    return None
