"""
Domain errors raised by the service layer.

Services raise these instead of returning sentinel values whenever a
caller needs to tell several failure modes apart (missing record vs.
wrong owner, for example).  ``register_exception_handlers`` maps each one
to its HTTP status so routers stay thin.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from blogcms.config import settings

logger = logging.getLogger(__name__)


class BlogError(Exception):
    status_code: int = 400
    default_message: str = "Bad request"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(BlogError):
    status_code = 400
    default_message = "Bad request"


class UnauthorizedError(BlogError):
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(BlogError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(BlogError):
    status_code = 404
    default_message = "Not found"


class ConflictError(BlogError):
    status_code = 409
    default_message = "Conflict"


class RateLimitedError(BlogError):
    status_code = 429
    default_message = "Too many requests"

    def __init__(self, message: str | None = None, retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = retry_after


def internal_error_payload(exc: Exception, error: str) -> dict:
    """
    Build the body of a 500 response.

    The exception message is only echoed back outside production; the
    full traceback always goes to the log.
    """
    payload: dict = {"error": error}
    if not settings.is_production:
        payload["details"] = str(exc)
    return payload


async def _blog_error_handler(request: Request, exc: BlogError) -> JSONResponse:
    content: dict = {"detail": exc.message}
    headers = None
    if isinstance(exc, RateLimitedError):
        content["retry_after"] = exc.retry_after
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BlogError, _blog_error_handler)
