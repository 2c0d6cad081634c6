import logging
import time
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from blogcms.config import settings

logger = logging.getLogger(__name__)

query_count_var: ContextVar[int] = ContextVar("query_count", default=0)


def install_query_counter(engine) -> None:
    """
    Count every SQL statement issued through *engine* into the
    per-request ``query_count_var``, including the extra SELECTs emitted
    by ``selectinload``.

    Call once per engine (``database.py`` for the app, ``conftest.py``
    for the test engine).
    """
    sync_engine = engine.sync_engine

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _count_query(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


class RequestMetricsMiddleware:
    """
    Pure ASGI middleware that stamps each response with
    ``X-Response-Time-Ms`` and ``X-Query-Count`` and logs requests slower
    than ``settings.SLOW_REQUEST_MS``.

    Written as raw ASGI rather than ``BaseHTTPMiddleware`` so the inner
    app runs in the same task and the ``ContextVar`` counter is visible
    here.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        query_count_var.set(0)
        start = time.perf_counter()
        status_code = 0

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                headers = list(message.get("headers", []))
                headers.append((b"x-response-time-ms", str(duration_ms).encode()))
                headers.append((b"x-query-count", str(query_count_var.get()).encode()))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)

        elapsed_ms = (time.perf_counter() - start) * 1000
        if elapsed_ms > settings.SLOW_REQUEST_MS:
            logger.warning(
                "Slow request %s %s -> %s in %.1fms (%d queries)",
                scope.get("method"),
                scope.get("path"),
                status_code,
                elapsed_ms,
                query_count_var.get(),
            )
