from fastapi import Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from blogcms.config import settings
from blogcms.database import get_db
from blogcms.exceptions import ForbiddenError, UnauthorizedError
from blogcms.models import User
from blogcms.ratelimit import client_id_from_headers
from blogcms.security import decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


class PaginationParams:
    """
    Reusable FastAPI dependency that parses and validates pagination /
    sorting query parameters.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    page_size:
        Number of items per page, clamped to ``settings.MAX_PAGE_SIZE``.
    sort_by:
        ORM column name to sort by; the service validates it.
    sort_order:
        ``"asc"`` or ``"desc"``.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        page_size: int = Query(
            20,
            ge=1,
            le=100,
            description="Number of items returned per page (max 100).",
        ),
        sort_by: str = Query("created_at", description="Column name to sort results by."),
        sort_order: str = Query(
            "desc",
            pattern="^(asc|desc)$",
            description="Sort direction: 'asc' or 'desc'.",
        ),
    ) -> None:
        self.page = page
        self.page_size = min(page_size, settings.MAX_PAGE_SIZE)
        self.sort_by = sort_by
        self.sort_order = sort_order

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


def get_client_id(request: Request) -> str:
    return client_id_from_headers(request.headers)


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """Resolve the bearer token to a User, or None for anonymous callers."""
    if credentials is None:
        return None
    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        return None
    return await db.get(User, user_id)


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise UnauthorizedError()
    return user


def require_roles(*roles: str):
    """
    Build a dependency that admits only users whose role is in *roles*.

    Usage::

        @router.put("", dependencies=[Depends(require_roles("ADMIN"))])
    """

    async def _check(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise ForbiddenError(f"Requires role: {' or '.join(roles)}")
        return user

    return _check
