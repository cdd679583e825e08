"""
FastAPI router for saved deep-dive filter presets.

Key Endpoints:
- GET    /presets?page=deep-dive - List presets of a page (default first)
- GET    /presets/{preset_id} - Fetch one preset
- POST   /presets - Save a preset (409 if the name is taken on the page)
- PATCH  /presets/{preset_id} - Rename, change the payload or make default
- DELETE /presets/{preset_id} - Remove a preset

Dependencies:
- deepdive/core/dependencies.py: DBSessionDep
- deepdive/services/presets.py: preset persistence
"""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query

from deepdive.core.dependencies import DBSessionDep
from deepdive.models.schemas import (
    FilterPresetCreate,
    FilterPresetListResponse,
    FilterPresetResponse,
    FilterPresetUpdate,
)
from deepdive.services.presets import (
    PresetConflictError,
    create_preset,
    delete_preset,
    get_preset,
    list_presets,
    update_preset,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=FilterPresetListResponse)
async def list_page_presets(
    db: DBSessionDep,
    page: str = Query("deep-dive", min_length=1, max_length=50),
) -> FilterPresetListResponse:
    try:
        presets = await list_presets(db, page)
    except Exception as e:
        logger.error(f"Error listing presets for page {page}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list presets")

    return FilterPresetListResponse(presets=presets)


@router.get("/{preset_id}", response_model=FilterPresetResponse)
async def get_page_preset(preset_id: UUID, db: DBSessionDep) -> FilterPresetResponse:
    try:
        preset = await get_preset(db, str(preset_id))
    except Exception as e:
        logger.error(f"Error fetching preset {preset_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to fetch preset")

    if preset is None:
        raise HTTPException(status_code=404, detail=f"Preset not found: {preset_id}")
    return preset


@router.post("", response_model=FilterPresetResponse, status_code=201)
async def save_preset(request: FilterPresetCreate, db: DBSessionDep) -> FilterPresetResponse:
    """
    Save the current deep-dive configuration under a name.

    Example Request:
        POST /presets
        {
            "name": "Alice lost publishers",
            "perspective": "pid",
            "filters": {"pic": "alice"},
            "is_default": true
        }
    """
    try:
        return await create_preset(db, request)
    except PresetConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error saving preset '{request.name}': {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to save preset")


@router.patch("/{preset_id}", response_model=FilterPresetResponse)
async def edit_preset(
    preset_id: UUID,
    request: FilterPresetUpdate,
    db: DBSessionDep,
) -> FilterPresetResponse:
    """
    Update a preset; omitted fields keep their stored value.

    Example Request:
        PATCH /presets/6f1c2a8e-3d4b-4c5a-9e7f-0a1b2c3d4e5f
        {"name": "Alice lost publishers (Q3)", "is_default": true}
    """
    try:
        preset = await update_preset(db, str(preset_id), request)
    except PresetConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error updating preset {preset_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to update preset")

    if preset is None:
        raise HTTPException(status_code=404, detail=f"Preset not found: {preset_id}")
    return preset


@router.delete("/{preset_id}")
async def remove_preset(preset_id: UUID, db: DBSessionDep) -> dict:
    try:
        deleted = await delete_preset(db, str(preset_id))
    except Exception as e:
        logger.error(f"Error deleting preset {preset_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to delete preset")

    if not deleted:
        raise HTTPException(status_code=404, detail=f"Preset not found: {preset_id}")
    return {"success": True}
