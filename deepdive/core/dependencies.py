"""
FastAPI dependency injection module for the deep-dive backend.

Provides reusable dependencies so endpoint handlers never build
infrastructure themselves, and tests can swap any of them through
app.dependency_overrides.

Key Dependencies Provided:
- get_db_session: Async generator yielding a connection from the asyncpg pool
- get_settings_dependency: Returns the cached Settings singleton
- get_warehouse_dependency: Returns the BigQuery warehouse singleton
- get_team_directory: Returns the PostgreSQL team directory
- get_session_store: Returns the in-memory drill-down session registry
- SettingsDep, DBSessionDep, WarehouseDep, TeamDirectoryDep, SessionStoreDep:
  Annotated type aliases for endpoint signatures

Usage Examples:
    @router.post("/deep-dive")
    async def analyze(
        request: AnalyzeRequest,
        settings: SettingsDep,
        warehouse: WarehouseDep,
    ) -> AnalyzeResponse:
        ...

    # In tests
    app.dependency_overrides[get_warehouse_dependency] = lambda: stub_warehouse
"""

from functools import lru_cache
from typing import AsyncGenerator, Annotated

from fastapi import Depends
from asyncpg import Connection

from deepdive.core.config import Settings, get_settings
from deepdive.core.database import get_db_pool
from deepdive.core.warehouse import Warehouse, get_warehouse
from deepdive.services.sessions import SessionStore
from deepdive.services.teams import PostgresTeamDirectory, TeamDirectory


# =============================================================================
# Database Session Dependency
# =============================================================================

async def get_db_session() -> AsyncGenerator[Connection, None]:
    """
    Yield an async database connection from the pool.

    The connection is released back to the pool when the endpoint completes,
    whether it succeeded or raised.

    Yields:
        asyncpg.Connection: An active database connection from the pool.

    Raises:
        RuntimeError: If DATABASE_URL is not configured.
        asyncpg.PostgresError: If connection acquisition fails.
    """
    pool = await get_db_pool()
    async with pool.acquire() as connection:
        yield connection


# =============================================================================
# Settings and Infrastructure Dependencies
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so tests can override it:

        app.dependency_overrides[get_settings_dependency] = lambda: mock_settings
    """
    return get_settings()


def get_warehouse_dependency() -> Warehouse:
    """Return the BigQuery warehouse singleton."""
    return get_warehouse()


def get_team_directory() -> TeamDirectory:
    """Return the team directory backed by the PostgreSQL pool."""
    return PostgresTeamDirectory()


@lru_cache()
def get_session_store() -> SessionStore:
    """Return the process-wide drill-down session registry."""
    return SessionStore(max_sessions=get_settings().session_max_count)


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

# Usage: async def endpoint(settings: SettingsDep)
SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

# Usage: async def endpoint(db: DBSessionDep)
DBSessionDep = Annotated[Connection, Depends(get_db_session)]

WarehouseDep = Annotated[Warehouse, Depends(get_warehouse_dependency)]

TeamDirectoryDep = Annotated[TeamDirectory, Depends(get_team_directory)]

SessionStoreDep = Annotated[SessionStore, Depends(get_session_store)]
