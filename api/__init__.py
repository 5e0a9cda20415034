"""REST API module for the marketplace.

This module provides HTTP endpoints for:
- Browsing, creating and moderating projects
- Carts and wishlists
- Reviews and rating statistics
- Purchase transactions and sales statistics
- Project downloads
- Per-user dashboard statistics
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import settings_conf
from database import close as db_close, get_pool, get_store
from ratelimit import MemoryBucketStore, PostgresBucketStore, build_limiters

from .errors import register_error_handlers

logger = logging.getLogger(__name__)

API_TITLE = "ProjXChange API"
API_VERSION = "1.0.0"


# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Initializing API...")
    store = await get_store()

    if settings_conf['store_backend'] == 'postgres':
        bucket_store = PostgresBucketStore(await get_pool())
    else:
        bucket_store = MemoryBucketStore()
    app.state.rate_limiters = build_limiters(settings_conf, bucket_store)
    logger.info(f"API ready with {type(store).__name__}")

    yield

    logger.info("Shutting down API...")
    await db_close()


# Create FastAPI app
app = FastAPI(
    title=API_TITLE,
    description="REST API for the ProjXChange project marketplace",
    version=API_VERSION,
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and duration of every request."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)"
    )
    return response


# Root endpoint - register this BEFORE other routers
@app.get("/")
async def root():
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "status": "running"
    }


# Import and include all routers
from .projects import router as projects_router
from .carts import router as carts_router
from .wishlists import router as wishlists_router
from .reviews import router as reviews_router
from .transactions import router as transactions_router
from .downloads import router as downloads_router
from .dashboard import router as dashboard_router

app.include_router(projects_router)
app.include_router(carts_router)
app.include_router(wishlists_router)
app.include_router(reviews_router)
app.include_router(transactions_router)
app.include_router(downloads_router)
app.include_router(dashboard_router)
