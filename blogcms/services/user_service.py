"""
User service — reads, creation, self-service profile edits and role
changes for the User aggregate.

Accounts are normally provisioned by the identity provider; ``create_user``
backs the admin dashboard's "add user" form.  Uniqueness of username and
email is enforced by the database; ``update_profile`` also checks it up
front (case-insensitively) so a clash is reported as a validation error.
"""
import logging
import re

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.exceptions import BadRequestError, NotFoundError
from blogcms.models import ROLE_ADMIN, ROLE_EDITOR, ROLE_USER, User
from blogcms.schemas import ProfileUpdate, UserCreate

logger = logging.getLogger(__name__)

VALID_ROLES = (ROLE_USER, ROLE_EDITOR, ROLE_ADMIN)

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 30
_USERNAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$")

# Usernames double as profile URLs, so they must not shadow site routes.
RESERVED_USERNAMES: frozenset[str] = frozenset({
    "admin", "settings", "login", "signin", "signup", "register", "logout", "signout",
    "auth", "authentication", "dashboard", "profile", "account",
    "api", "apis", "static", "public", "assets", "uploads", "files", "images", "media",
    "blog", "post", "posts", "article", "articles", "author", "authors", "editor",
    "write", "create", "edit", "delete", "update",
    "user", "users", "u", "member", "members", "team",
})
_RESERVED_SUFFIXES = (".ico", ".txt", ".xml", ".json", ".html", ".js", ".css")


def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "display_name": user.display_name,
        "bio": user.bio,
        "avatar_url": user.avatar_url,
        "role": user.role,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _post_summary_to_dict(article) -> dict:
    """Post summary embedded in a user profile (no author, no tags)."""
    return {
        "id": article.id,
        "title": article.title,
        "slug": article.slug,
        "excerpt": article.excerpt,
        "cover_image": article.cover_image,
        "view_count": article.view_count,
        "is_published": article.is_published,
        "published_at": article.published_at.isoformat() if article.published_at else None,
        "created_at": article.created_at.isoformat() if article.created_at else None,
        "user_id": article.user_id,
        "author": None,
        "tags": [],
    }


async def get_users(db: AsyncSession, role: str | None = None) -> list[dict]:
    """Return all users, newest first, optionally filtered by *role*."""
    q = select(User).order_by(User.created_at.desc(), User.id.desc())
    if role:
        q = q.where(User.role == role)
    result = await db.execute(q)
    return [_user_to_dict(u) for u in result.scalars().all()]


async def get_user(db: AsyncSession, user_id: int) -> dict | None:
    """Return a user's profile with their posts, or None if unknown."""
    q = (
        select(User)
        .where(User.id == user_id)
        .options(selectinload(User.articles))
    )
    result = await db.execute(q)
    user = result.unique().scalar_one_or_none()
    if user is None:
        return None

    data = _user_to_dict(user)
    data["articles"] = [_post_summary_to_dict(a) for a in user.articles]
    return data


async def create_user(db: AsyncSession, data: UserCreate) -> dict:
    user = User(
        username=data.username,
        email=data.email,
        display_name=data.display_name,
        bio=data.bio,
        avatar_url=data.avatar_url,
        role=data.role,
    )
    db.add(user)
    await db.flush()
    return _user_to_dict(user)


def validate_username(username: str) -> str:
    """Return *username* normalised to lowercase, or raise ``BadRequestError``."""
    normalized = (username or "").strip()
    if not normalized:
        raise BadRequestError("Username is required")
    if len(normalized) < USERNAME_MIN_LENGTH:
        raise BadRequestError(f"Username must be at least {USERNAME_MIN_LENGTH} characters")
    if len(normalized) > USERNAME_MAX_LENGTH:
        raise BadRequestError(f"Username cannot be longer than {USERNAME_MAX_LENGTH} characters")
    if not _USERNAME_RE.match(normalized):
        raise BadRequestError(
            "Username may only contain letters, digits, hyphens and underscores "
            "and must start with a letter or digit"
        )
    lowered = normalized.lower()
    if lowered in RESERVED_USERNAMES or lowered.endswith(_RESERVED_SUFFIXES):
        raise BadRequestError("This username is reserved")
    return lowered


async def update_profile(db: AsyncSession, user: User, data: ProfileUpdate) -> dict:
    """
    Apply a self-service profile edit to *user*.

    Blank fields leave the stored value untouched.  A new username is
    validated, lowercased and checked against every other account.
    """
    if data.username and data.username.strip().lower() != user.username.lower():
        username = validate_username(data.username)
        clash = await db.execute(
            select(User.id).where(func.lower(User.username) == username, User.id != user.id)
        )
        if clash.first() is not None:
            raise BadRequestError("This username is already taken")
        user.username = username

    for field in ("display_name", "bio", "avatar_url"):
        value = getattr(data, field)
        if value:
            setattr(user, field, value)

    await db.flush()
    logger.info("Profile updated for user %s", user.id)
    return _user_to_dict(user)


async def change_role(db: AsyncSession, acting_user: User, user_id: int, role: str) -> dict:
    """Set *user_id*'s role on behalf of an admin; admins cannot demote themselves."""
    if role not in VALID_ROLES:
        raise BadRequestError(f"Invalid role. Allowed roles: {', '.join(VALID_ROLES)}")

    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    if user.id == acting_user.id:
        raise BadRequestError("You cannot change your own role")

    previous = user.role
    user.role = role
    await db.flush()
    logger.info(
        "Role changed for user %s: %s -> %s by user %s", user.id, previous, role, acting_user.id
    )
    return _user_to_dict(user)
