"""
Saved filter presets.

A preset stores a deep-dive configuration (perspective, dimension filters,
simplified filter, period pair) under a name, per page. The configuration is
kept in the filters JSONB column. At most one preset per page is the default:
saving or updating a preset as the default clears the previous one in the
same transaction.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import asyncpg

from deepdive.core.database import execute_command
from deepdive.models.schemas import (
    FilterPresetCreate,
    FilterPresetResponse,
    FilterPresetUpdate,
)
from deepdive.sql.deep_dive_queries import (
    CLEAR_DEFAULT_PRESET,
    CLEAR_OTHER_DEFAULT_PRESETS,
    CREATE_FILTER_PRESETS_TABLE,
    DELETE_PRESET,
    INSERT_PRESET,
    SELECT_PRESET_BY_ID,
    SELECT_PRESET_FOR_UPDATE,
    SELECT_PRESETS_BY_PAGE,
    UPDATE_PRESET,
)

logger = logging.getLogger(__name__)

# Keys of the preset payload stored in the filters JSONB column
PAYLOAD_FIELDS = ('perspective', 'filters', 'simplified_filter', 'period1', 'period2')

# An explicit null in an update leaves these unchanged
NON_NULL_FIELDS = frozenset({'name', 'filters', 'is_default'})


class PresetConflictError(Exception):
    """A preset with the same name already exists on the page."""


def _payload(preset: FilterPresetCreate) -> Dict[str, Any]:
    return preset.model_dump(mode='json', include=set(PAYLOAD_FIELDS))


def record_to_preset(record: asyncpg.Record) -> FilterPresetResponse:
    """Convert a filter_presets row into a response model."""
    stored = record['filters']
    if isinstance(stored, str):
        stored = json.loads(stored)
    stored = stored or {}

    return FilterPresetResponse(
        id=record['id'],
        name=record['name'],
        description=record['description'],
        page=record['page'],
        is_default=bool(record['is_default']),
        created_at=record['created_at'],
        updated_at=record['updated_at'],
        **{field: stored[field] for field in PAYLOAD_FIELDS if stored.get(field) is not None},
    )


async def ensure_preset_table() -> None:
    await execute_command(CREATE_FILTER_PRESETS_TABLE)


async def list_presets(conn: asyncpg.Connection, page: str) -> List[FilterPresetResponse]:
    rows = await conn.fetch(SELECT_PRESETS_BY_PAGE, page)
    return [record_to_preset(row) for row in rows]


async def get_preset(conn: asyncpg.Connection, preset_id: str) -> Optional[FilterPresetResponse]:
    row = await conn.fetchrow(SELECT_PRESET_BY_ID, preset_id)
    return record_to_preset(row) if row else None


async def create_preset(conn: asyncpg.Connection, preset: FilterPresetCreate) -> FilterPresetResponse:
    """
    Insert a preset.

    Raises:
        PresetConflictError: If the page already has a preset with this name.
    """
    async with conn.transaction():
        if preset.is_default:
            await conn.execute(CLEAR_DEFAULT_PRESET, preset.page)
        try:
            row = await conn.fetchrow(
                INSERT_PRESET,
                preset.name,
                preset.description,
                preset.page,
                json.dumps(_payload(preset)),
                preset.is_default,
            )
        except asyncpg.UniqueViolationError as e:
            raise PresetConflictError(
                f"preset '{preset.name}' already exists on page '{preset.page}'"
            ) from e

    logger.info(f"Saved filter preset '{preset.name}' for page {preset.page}")
    return record_to_preset(row)


async def update_preset(
    conn: asyncpg.Connection,
    preset_id: str,
    update: FilterPresetUpdate,
) -> Optional[FilterPresetResponse]:
    """
    Apply a partial update to a preset.

    The row is locked for the transaction. Making the preset the default
    clears the previous default of its page in the same transaction.

    Returns:
        The updated preset, or None when it does not exist.

    Raises:
        PresetConflictError: If the new name is taken on the page.
    """
    async with conn.transaction():
        row = await conn.fetchrow(SELECT_PRESET_FOR_UPDATE, preset_id)
        if row is None:
            return None

        current = record_to_preset(row)
        changes = {
            field: getattr(update, field)
            for field in update.model_fields_set
            if getattr(update, field) is not None or field not in NON_NULL_FIELDS
        }
        merged = current.model_copy(update=changes)

        if merged.is_default and not current.is_default:
            await conn.execute(CLEAR_OTHER_DEFAULT_PRESETS, current.page, preset_id)
        try:
            row = await conn.fetchrow(
                UPDATE_PRESET,
                preset_id,
                merged.name,
                merged.description,
                json.dumps(_payload(merged)),
                merged.is_default,
            )
        except asyncpg.UniqueViolationError as e:
            raise PresetConflictError(
                f"preset '{merged.name}' already exists on page '{current.page}'"
            ) from e

    logger.info(f"Updated filter preset {preset_id} ({', '.join(sorted(update.model_fields_set))})")
    return record_to_preset(row)


async def delete_preset(conn: asyncpg.Connection, preset_id: str) -> bool:
    """Delete a preset; False when it did not exist."""
    status = await conn.execute(DELETE_PRESET, preset_id)
    return status.endswith(' 1')
