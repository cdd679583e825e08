"""
Package initialization file for deep-dive models.

Re-exports the enumerations from enums.py and the Pydantic schemas from
schemas.py so other modules can import them from deepdive.models directly.

Usage:
    from deepdive.models import (
        PerspectiveId,
        PeriodRange,
        ComparisonRecord,
        # ... etc
    )
"""

# =============================================================================
# Enums
# =============================================================================

from deepdive.models.enums import (
    PerspectiveId,
    LifecycleStatus,
    RevenueTier,
    Tier,
    DisplayTier,
    WarningSeverity,
    FieldDataType,
    FilterOperator,
    ENTITY_OPERATORS,
    ClauseLogic,
    IncludeExclude,
    ViewMode,
)

# =============================================================================
# Schemas
# =============================================================================

from deepdive.models.schemas import (
    # Inputs
    PeriodRange,
    DimensionFilters,
    FilterClause,
    SimplifiedFilter,
    TeamMapping,
    # Aggregates and records
    EntityAggregate,
    MetricDeltas,
    ActionableWarning,
    ComparisonRecord,
    ComparisonSummary,
    ComparisonResult,
    CacheEntry,
    # Drill-down state
    BreadcrumbEntry,
    DrillDownPath,
    SegmentResult,
    DeepDiveView,
    # API
    AnalyzeRequest,
    AnalyzeContext,
    AnalyzeResponse,
    SessionCreateRequest,
    DrillDownRequest,
    PerspectiveChangeRequest,
    PeriodChangeRequest,
    FilterChangeRequest,
    SessionResponse,
    # Presets
    FilterPresetCreate,
    FilterPresetUpdate,
    FilterPresetResponse,
    FilterPresetListResponse,
)

__all__ = [
    'PerspectiveId',
    'LifecycleStatus',
    'RevenueTier',
    'Tier',
    'DisplayTier',
    'WarningSeverity',
    'FieldDataType',
    'FilterOperator',
    'ENTITY_OPERATORS',
    'ClauseLogic',
    'IncludeExclude',
    'ViewMode',
    'PeriodRange',
    'DimensionFilters',
    'FilterClause',
    'SimplifiedFilter',
    'TeamMapping',
    'EntityAggregate',
    'MetricDeltas',
    'ActionableWarning',
    'ComparisonRecord',
    'ComparisonSummary',
    'ComparisonResult',
    'CacheEntry',
    'BreadcrumbEntry',
    'DrillDownPath',
    'SegmentResult',
    'DeepDiveView',
    'AnalyzeRequest',
    'AnalyzeContext',
    'AnalyzeResponse',
    'SessionCreateRequest',
    'DrillDownRequest',
    'PerspectiveChangeRequest',
    'PeriodChangeRequest',
    'FilterChangeRequest',
    'SessionResponse',
    'FilterPresetCreate',
    'FilterPresetUpdate',
    'FilterPresetResponse',
    'FilterPresetListResponse',
]
