"""
Core infrastructure package for the deep-dive backend.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL connectivity via asyncpg (presets, team directory)
- BigQuery warehouse client
- Engine error taxonomy

FastAPI dependencies live in deepdive.core.dependencies and are imported
from there directly, since they reference the service layer:

    from deepdive.core.dependencies import SettingsDep, WarehouseDep
"""

# =============================================================================
# Re-exports from deepdive.core.config
# =============================================================================
from deepdive.core.config import Settings, get_settings

# =============================================================================
# Re-exports from deepdive.core.database
# =============================================================================
from deepdive.core.database import init_db, close_db, get_db_pool

# =============================================================================
# Re-exports from deepdive.core.exceptions
# =============================================================================
from deepdive.core.exceptions import DeepDiveError, DataSourceError, InvariantViolation

# =============================================================================
# Re-exports from deepdive.core.warehouse
# =============================================================================
from deepdive.core.warehouse import Warehouse, BigQueryWarehouse, get_warehouse

__all__ = [
    'Settings',
    'get_settings',
    'init_db',
    'close_db',
    'get_db_pool',
    'DeepDiveError',
    'DataSourceError',
    'InvariantViolation',
    'Warehouse',
    'BigQueryWarehouse',
    'get_warehouse',
]
