"""
Deep-dive API package.

Router modules:
- deep_dive: Stateless comparisons and drill-down sessions
- presets: Saved filter presets
"""

from fastapi import APIRouter

from deepdive.api.deep_dive import router as deep_dive_router
from deepdive.api.presets import router as presets_router

api_router = APIRouter()

api_router.include_router(deep_dive_router, prefix="/deep-dive", tags=["deep-dive"])
api_router.include_router(presets_router, prefix="/presets", tags=["presets"])

__all__ = [
    "api_router",
    "deep_dive_router",
    "presets_router",
]
