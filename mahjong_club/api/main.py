"""
Mahjong Club Tournament API Server

FastAPI server for tournament registration, pairing, results and standings.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import uvicorn
from slowapi import _rate_limit_exceeded_handler  # type: ignore
from slowapi.errors import RateLimitExceeded  # type: ignore

from mahjong_club.api.routes import router, limiter as routes_limiter
from mahjong_club.database import db
from mahjong_club.alembic.env import run_migrations_online_programmatic

# Set up logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events."""
    logger.info("Starting up Mahjong Club Tournament API...")

    # Alembic is idempotent, so running migrations on every start is safe
    try:
        logger.info("Running database migrations...")
        await run_migrations_online_programmatic()
    except Exception as e:
        logger.error(f"Database migration failed: {e}", exc_info=True)
        if os.getenv("ENV") == "production":
            raise

    # Fallback for local databases without migrations applied
    try:
        await db.init_database()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        if os.getenv("ENV") == "production":
            raise

    yield  # App is running

    logger.info("Shutting down Mahjong Club Tournament API...")
    await db.engine.dispose()


app = FastAPI(
    title="Mahjong Club Tournament API",
    description="Tournament registration, pairing, results and UMA standings for a riichi mahjong club",
    version="1.0.0",
    lifespan=lifespan
)

# Setup rate limiter
app.state.limiter = routes_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware to allow frontend access
allowed_origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router)


@app.get("/api/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
