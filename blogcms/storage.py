"""
Uploaded-file storage and best-effort cleanup.

Files are written below ``<PUBLIC_DIR>/uploads`` and addressed by their
public URL (``/uploads/<kind>s/<name>``).  Records only keep that URL, so
cleanup works backwards from it: anything outside ``/uploads/`` (an
external image, for instance) is left alone.

Deletion helpers never raise; a failed cleanup is logged and reported as
``False`` so callers can carry on with their primary work.
"""
import functools
import json
import logging
import re
import secrets
import time
from pathlib import Path
from urllib.parse import urlparse

from anyio import to_thread

from blogcms.config import settings

logger = logging.getLogger(__name__)

UPLOADS_PREFIX = "/uploads/"

UPLOAD_KINDS: frozenset[str] = frozenset({"avatar", "logo", "cover", "comment"})
ALLOWED_CONTENT_TYPES: frozenset[str] = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}
)

_FILENAME_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9.-]")


def public_root() -> Path:
    return Path(settings.PUBLIC_DIR)


def _local_path_for(file_url: str) -> Path | None:
    """Map a public upload URL to its path on disk, or None if unmanaged."""
    relative = file_url
    if file_url.startswith(("http://", "https://")):
        relative = urlparse(file_url).path

    if not relative.startswith(UPLOADS_PREFIX):
        return None
    if ".." in relative:
        logger.warning("Refusing to delete suspicious path: %s", relative)
        return None
    return public_root() / relative.lstrip("/")


async def delete_uploaded_file(file_url: str | None) -> bool:
    """
    Delete the stored file behind *file_url*.

    Returns True when a file was removed; False when the reference is
    empty, points outside the uploads area, or the file is already gone.
    """
    if not file_url:
        return False
    try:
        path = _local_path_for(file_url)
        if path is None:
            return False
        if not await to_thread.run_sync(path.is_file):
            logger.info("Upload already absent: %s", path)
            return False
        await to_thread.run_sync(path.unlink)
        logger.info("Deleted upload %s", path)
        return True
    except Exception as exc:
        logger.error("Failed to delete upload %s: %s", file_url, exc)
        return False


async def delete_comment_image(image_url: str | None) -> bool:
    """Remove a comment's attached image, if it has one."""
    if not image_url:
        return False
    return await delete_uploaded_file(image_url)


def extract_image_urls(content) -> list[str]:
    """
    Return the image URLs referenced by editor JSON *content*.

    Accepts a JSON string, a ``{"blocks": [...]}`` dict or a bare block
    list.  Plain-text content simply yields an empty list.
    """
    if isinstance(content, str):
        try:
            content = json.loads(content)
        except ValueError:
            return []

    if isinstance(content, dict):
        blocks = content.get("blocks") or []
    elif isinstance(content, list):
        blocks = content
    else:
        return []

    urls: list[str] = []
    for block in blocks:
        if not isinstance(block, dict) or block.get("type") != "image":
            continue
        data = block.get("data") or {}
        file_info = data.get("file") if isinstance(data.get("file"), dict) else {}
        url = file_info.get("url") or data.get("url")
        if isinstance(url, str) and url:
            urls.append(url)
    return urls


async def delete_article_files(cover_image: str | None, content: str) -> int:
    """Delete an article's cover and inline images; return how many went."""
    deleted = 0
    for url in [cover_image, *extract_image_urls(content)]:
        if url and await delete_uploaded_file(url):
            deleted += 1
    return deleted


def unique_filename(original_name: str) -> str:
    stem, dot, ext = original_name.rpartition(".")
    if not dot:
        stem, ext = original_name, "bin"
    safe_stem = _FILENAME_UNSAFE_RE.sub("_", stem).lower() or "file"
    safe_ext = _FILENAME_UNSAFE_RE.sub("", ext).lower() or "bin"
    return f"{safe_stem}-{int(time.time() * 1000)}-{secrets.token_hex(3)}.{safe_ext}"


async def save_upload(kind: str, original_name: str, data: bytes) -> tuple[str, str]:
    """
    Write *data* to the uploads area for *kind* and return
    ``(public_url, filename)``.
    """
    filename = unique_filename(original_name)
    directory = public_root() / "uploads" / f"{kind}s"
    await to_thread.run_sync(functools.partial(directory.mkdir, parents=True, exist_ok=True))
    await to_thread.run_sync((directory / filename).write_bytes, data)
    logger.info("Stored %s upload %s (%d bytes)", kind, filename, len(data))
    return f"{UPLOADS_PREFIX}{kind}s/{filename}", filename
