"""
Transit Ticketing API - Main Application Entry Point

Users are stored durably in the database and cached in Redis; tickets live
only in Redis and are valid for exactly as long as their key exists.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from transit_ticketing.api.deps import get_engine
from transit_ticketing.api.middleware import RequestLoggingMiddleware
from transit_ticketing.api.router import api_router
from transit_ticketing.core.config import get_settings
from transit_ticketing.core.logging import get_logger, setup_logging
from transit_ticketing.core.metrics import metrics_endpoint
from transit_ticketing.db.session import build_session_factory, get_engine as get_db_engine
from transit_ticketing.infrastructure.redis_client import RedisClient
from transit_ticketing.services.engine import TicketingEngine

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        ticket_validity_seconds=settings.TICKET_VALIDITY_SECONDS,
        max_cached_users=settings.MAX_CACHED_USERS,
    )

    db_engine = get_db_engine()
    app.state.engine = TicketingEngine(build_session_factory(db_engine), RedisClient.get_client())

    health = await app.state.engine.health()
    if health["status"] != "healthy":
        logger.warning("stores_unavailable_at_startup", stores=health["stores"])

    yield

    await RedisClient.close()
    await db_engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Transit user registry with TTL-bound tickets over a durable store and Redis",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check(engine: TicketingEngine = Depends(get_engine)):
    """Health check endpoint for Docker and load balancers."""
    health = await engine.health()
    return {
        **health,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
