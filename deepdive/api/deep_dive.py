"""
FastAPI router for the deep-dive comparison engine.

Key Endpoints:
- GET  /deep-dive/perspectives - Perspective registry (grouping keys, children)
- POST /deep-dive - Stateless comparison with optional tier filter
- POST /deep-dive/sessions - Open a drill-down session and load its root view
- GET  /deep-dive/sessions/{session_id} - Current view of a session
- POST /deep-dive/sessions/{session_id}/drill-down - Descend into an entity
- POST /deep-dive/sessions/{session_id}/back - Ascend one breadcrumb
- POST /deep-dive/sessions/{session_id}/perspective - Switch root perspective
- POST /deep-dive/sessions/{session_id}/periods - Change the period pair
- POST /deep-dive/sessions/{session_id}/filters - Change base filters
- POST /deep-dive/sessions/{session_id}/analyze - Re-run, bypassing the cache
- DELETE /deep-dive/sessions/{session_id} - Close a session

Error mapping:
- InvariantViolation (invalid transition, unknown filter key, bad period) -> 400
- Unknown session -> 404
- DataSourceError (warehouse or team directory failure) -> 502; the session
  view keeps the error so the client can offer a retry through /analyze
- Anything else -> 500, logged with traceback

Dependencies:
- deepdive/core/dependencies.py: SettingsDep, WarehouseDep, TeamDirectoryDep,
  SessionStoreDep
- deepdive/services/pipeline.py: build_pipeline, apply_tier_filter
- deepdive/services/drill_down.py: DrillDownController
"""

import logging
from typing import Awaitable, Callable, Dict, List

from fastapi import APIRouter, HTTPException

from deepdive.core.dependencies import (
    SessionStoreDep,
    SettingsDep,
    TeamDirectoryDep,
    WarehouseDep,
)
from deepdive.core.exceptions import DataSourceError, InvariantViolation
from deepdive.models.schemas import (
    AnalyzeContext,
    AnalyzeRequest,
    AnalyzeResponse,
    DeepDiveView,
    DrillDownRequest,
    FilterChangeRequest,
    PeriodChangeRequest,
    PerspectiveChangeRequest,
    SessionCreateRequest,
    SessionResponse,
)
from deepdive.services.aggregator import to_dimension_filters
from deepdive.services.cache import ResultCache
from deepdive.services.drill_down import DrillDownController
from deepdive.services.perspectives import PERSPECTIVES
from deepdive.services.pipeline import apply_tier_filter, build_pipeline
from deepdive.services.sessions import SessionStore


# =============================================================================
# Module Configuration
# =============================================================================

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================


def _get_controller(store: SessionStore, session_id: str) -> DrillDownController:
    controller = store.get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return controller


async def _apply_event(
    store: SessionStore,
    session_id: str,
    event: str,
    transition: Callable[[DrillDownController], Awaitable[DeepDiveView]],
) -> SessionResponse:
    """Run one UI event against a session and map engine errors to HTTP."""
    controller = _get_controller(store, session_id)

    try:
        view = await transition(controller)
    except InvariantViolation as e:
        logger.warning(f"Rejected {event} for session {session_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except DataSourceError as e:
        logger.error(f"Data source failure during {event} for session {session_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Error handling {event} for session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to handle {event}")

    return SessionResponse(session_id=session_id, view=view)


# =============================================================================
# GET /deep-dive/perspectives
# =============================================================================


@router.get("/perspectives")
async def list_perspectives() -> Dict[str, List[Dict[str, object]]]:
    """Perspective registry for building the drill-down UI."""
    return {
        "perspectives": [
            {
                "id": p.id.value,
                "label": p.label,
                "grouping_key": p.grouping_key,
                "child": p.child.value if p.child else None,
                "is_leaf": p.is_leaf,
            }
            for p in PERSPECTIVES.values()
        ]
    }


# =============================================================================
# POST /deep-dive - Stateless comparison
# =============================================================================


@router.post("", response_model=AnalyzeResponse)
async def analyze(
    request: AnalyzeRequest,
    settings: SettingsDep,
    warehouse: WarehouseDep,
    team_directory: TeamDirectoryDep,
) -> AnalyzeResponse:
    """
    Compare two periods for one perspective.

    The summary covers every record; tier_filter only narrows the returned
    records.

    Example Request:
        POST /deep-dive
        {
            "perspective": "pid",
            "period1": {"start": "2026-08-01", "end": "2026-08-31"},
            "period2": {"start": "2026-09-01", "end": "2026-09-30"},
            "filters": {"pic": "alice"},
            "tier_filter": "LOST"
        }
    """
    try:
        filters = to_dimension_filters(request.filters)
        pipeline = build_pipeline(settings, warehouse, team_directory)
        result = await pipeline.run(
            request.perspective,
            request.period1,
            request.period2,
            filters,
            request.simplified_filter,
        )
    except InvariantViolation as e:
        logger.warning(f"Rejected deep-dive request: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except DataSourceError as e:
        logger.error(f"Deep-dive data source failure: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Error running deep-dive: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to run deep-dive analysis")

    return AnalyzeResponse(
        data=apply_tier_filter(result.records, request.tier_filter),
        summary=result.summary,
        context=AnalyzeContext(
            perspective=request.perspective,
            period1=request.period1,
            period2=request.period2,
            filters=filters.as_dict(),
            tier_filter=request.tier_filter,
        ),
    )


# =============================================================================
# Drill-down sessions
# =============================================================================


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def create_session(
    request: SessionCreateRequest,
    settings: SettingsDep,
    warehouse: WarehouseDep,
    team_directory: TeamDirectoryDep,
    store: SessionStoreDep,
) -> SessionResponse:
    """
    Open a drill-down session at a root perspective and load its view.

    The session is registered only after the first load succeeds.
    """
    try:
        controller = DrillDownController(
            pipeline=build_pipeline(settings, warehouse, team_directory),
            cache=ResultCache(settings.cache_ttl_seconds, settings.cache_max_entries),
            perspective=request.perspective,
            period1=request.period1,
            period2=request.period2,
            filters=request.filters,
            simplified_filter=request.simplified_filter,
        )
        view = await controller.load()
    except InvariantViolation as e:
        logger.warning(f"Rejected deep-dive session: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except DataSourceError as e:
        logger.error(f"Data source failure opening deep-dive session: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Error opening deep-dive session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to open deep-dive session")

    session_id = store.create(controller)
    logger.info(f"Opened deep-dive session {session_id} at {request.perspective.value}")
    return SessionResponse(session_id=session_id, view=view)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, store: SessionStoreDep) -> SessionResponse:
    controller = _get_controller(store, session_id)
    return SessionResponse(session_id=session_id, view=controller.view)


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str, store: SessionStoreDep) -> dict:
    if not store.remove(session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"success": True}


@router.post("/sessions/{session_id}/drill-down", response_model=SessionResponse)
async def drill_down(
    session_id: str,
    request: DrillDownRequest,
    store: SessionStoreDep,
) -> SessionResponse:
    return await _apply_event(
        store, session_id, "drill-down",
        lambda c: c.descend(request.child_perspective, request.entity_id, request.display_name),
    )


@router.post("/sessions/{session_id}/back", response_model=SessionResponse)
async def go_back(session_id: str, store: SessionStoreDep) -> SessionResponse:
    return await _apply_event(store, session_id, "back", lambda c: c.ascend())


@router.post("/sessions/{session_id}/perspective", response_model=SessionResponse)
async def change_perspective(
    session_id: str,
    request: PerspectiveChangeRequest,
    store: SessionStoreDep,
) -> SessionResponse:
    return await _apply_event(
        store, session_id, "perspective change",
        lambda c: c.change_perspective(request.perspective),
    )


@router.post("/sessions/{session_id}/periods", response_model=SessionResponse)
async def change_periods(
    session_id: str,
    request: PeriodChangeRequest,
    store: SessionStoreDep,
) -> SessionResponse:
    return await _apply_event(
        store, session_id, "period change",
        lambda c: c.change_periods(request.period1, request.period2),
    )


@router.post("/sessions/{session_id}/filters", response_model=SessionResponse)
async def change_filters(
    session_id: str,
    request: FilterChangeRequest,
    store: SessionStoreDep,
) -> SessionResponse:
    return await _apply_event(
        store, session_id, "filter change",
        lambda c: c.change_filters(request.filters, request.simplified_filter),
    )


@router.post("/sessions/{session_id}/analyze", response_model=SessionResponse)
async def reanalyze(session_id: str, store: SessionStoreDep) -> SessionResponse:
    return await _apply_event(store, session_id, "analyze", lambda c: c.analyze())
