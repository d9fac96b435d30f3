import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from app.background import detached
from app.cache import cache
from app.config import settings
from app.exceptions import BlogError, TransientInfraError
from app.middleware import TimingMiddleware
from app.routers import comments, metrics, posts

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        await cache.connect()
    except (RedisError, OSError, ValueError) as exc:
        logger.warning("Cache disabled: %s", exc)  # App works without Redis
    yield
    # Shutdown: let in-flight cache write-backs finish before closing the pool.
    await detached.drain()
    await cache.disconnect()

app = FastAPI(
    title="Threaded Comments API",
    description="Blog posts with nested comment threads, cached trees and cascading deletes",
    version="1.0.0",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(posts.router)
app.include_router(comments.router)
app.include_router(metrics.router)


@app.exception_handler(BlogError)
async def blog_error_handler(request: Request, exc: BlogError):
    if isinstance(exc, TransientInfraError):
        logger.error("%s %s failed: %r", request.method, request.url.path, exc.__cause__)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
