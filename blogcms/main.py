import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from blogcms import storage
from blogcms.cache import cache
from blogcms.config import settings
from blogcms.exceptions import register_exception_handlers
from blogcms.middleware import RequestMetricsMiddleware
from blogcms.routers import articles, comments, metrics, rss_sources, site_settings, uploads, users

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await cache.connect()
    except Exception as exc:
        logger.warning("Starting without Redis: %s", exc)
    yield
    await cache.disconnect()


app = FastAPI(
    title="blogcms",
    description="Blog content-management API: posts, comments, uploads, RSS sources and site settings",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestMetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(articles.router)
app.include_router(comments.router)
app.include_router(users.router)
app.include_router(site_settings.router)
app.include_router(rss_sources.router)
app.include_router(uploads.router)
app.include_router(metrics.router)

# Uploaded images are served straight from disk.
app.mount(
    "/uploads",
    StaticFiles(directory=storage.public_root() / "uploads", check_dir=False),
    name="uploads",
)


@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
