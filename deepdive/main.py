"""
FastAPI application entry point for the Deep Dive API.

Configures logging, CORS and the API routers, and manages the database pool
used by filter presets and the team directory. Warehouse access is created
lazily on the first comparison.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deepdive import __version__
from deepdive.api import api_router
from deepdive.core.config import get_settings
from deepdive.core.database import close_db, execute_query_one, init_db
from deepdive.services.presets import ensure_preset_table

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: initialize the database pool and the filter_presets table.
    Shutdown: close the pool.

    The API still starts without a database; only presets and the team
    perspective need it.
    """
    logger.info("Deep Dive API starting")
    try:
        await init_db()
        await ensure_preset_table()
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")

    yield

    logger.info("Deep Dive API shutting down")
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="Deep Dive API",
    version=__version__,
    description=(
        "Comparative A/B/C revenue tiering across two periods with "
        "new/lost entity detection and cached hierarchical drill-down."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# /deep-dive and /presets
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check for monitoring and load balancer probes.

    The service is healthy without a database; the database field reports
    whether presets and teams are available.
    """
    try:
        await execute_query_one("SELECT 1")
        database = "connected"
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        database = "unavailable"

    return {"status": "healthy", "database": database}


@app.get("/")
async def root():
    return {
        "name": "Deep Dive API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "deepdive.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
