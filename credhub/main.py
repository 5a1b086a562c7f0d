import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from credhub.config import get_settings
from credhub.database import engine
from credhub.services.secret_codec import get_secret_codec

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifespan: startup and shutdown events."""
    # Refuse to start without an encryption key
    get_secret_codec().ensure_configured()

    # Startup: create all database tables if they don't exist
    from credhub.database import Base
    from credhub import models  # noqa: F401 - Import models to register them with Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Credential hub started")
    yield
    # Shutdown: dispose the async engine connection pool
    await engine.dispose()


app = FastAPI(
    title="Twitch Credential Hub",
    description="Twitch app credentials, OAuth tokens and EventSub webhooks",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Router includes ---
from credhub.api.tokens import router as tokens_router
from credhub.api.twitch_configs import router as twitch_configs_router
from credhub.api.webhooks import router as webhooks_router

app.include_router(twitch_configs_router, prefix="/api")
app.include_router(tokens_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


@app.get("/api/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint.

    Returns a simple status response to verify the API is running.
    """
    return {"status": "ok"}
