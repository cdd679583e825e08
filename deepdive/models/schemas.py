"""
Pydantic models for the Deep Dive backend.

This module provides type-safe data validation and serialization for the
comparison engine and its API contracts:

- Period and filter inputs (PeriodRange, DimensionFilters, SimplifiedFilter)
- Per-period aggregates and merged comparison records
- Summary, cache entry, drill-down path and view state
- Request/response models for the deep-dive and preset routers

All models use Pydantic v2 syntax.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from deepdive.models.enums import (
    ClauseLogic,
    DisplayTier,
    FieldDataType,
    FilterOperator,
    IncludeExclude,
    LifecycleStatus,
    PerspectiveId,
    RevenueTier,
    Tier,
    ViewMode,
    WarningSeverity,
)


# =============================================================================
# Inputs: periods and filters
# =============================================================================


class PeriodRange(BaseModel):
    """
    Inclusive date range.

    Ordering (start <= end) is checked by the engine, which raises
    InvariantViolation, and by the API request models, which answer 422.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={"example": {"start": "2026-09-01", "end": "2026-09-30"}},
    )

    start: date = Field(..., description="First day of the period (inclusive)")
    end: date = Field(..., description="Last day of the period (inclusive)")

    @property
    def is_ordered(self) -> bool:
        return self.start <= self.end


FilterValue = Union[str, List[str]]


class DimensionFilters(BaseModel):
    """
    Typed filter record keyed by perspective grouping keys.

    Each value is either a single entity id or a list of ids (multi-select).
    Unknown keys are rejected. Ids are normalised to strings; numeric
    publisher, media and zone ids are re-typed when the predicate is built.
    """
    model_config = ConfigDict(extra='forbid')

    team: Optional[FilterValue] = None
    pic: Optional[FilterValue] = None
    pid: Optional[FilterValue] = None
    mid: Optional[FilterValue] = None
    product: Optional[FilterValue] = None
    zid: Optional[FilterValue] = None

    @field_validator('team', 'pic', 'pid', 'mid', 'product', 'zid', mode='before')
    @classmethod
    def _normalise_ids(cls, value: Any) -> Optional[FilterValue]:
        if value is None or value == '':
            return None
        if isinstance(value, (list, tuple, set)):
            ids = [str(v) for v in value if v is not None and v != '']
            return ids or None
        return str(value)

    def as_dict(self) -> Dict[str, FilterValue]:
        """Set filters only, in declaration order."""
        return self.model_dump(exclude_none=True)

    def get(self, key: str) -> Optional[FilterValue]:
        return getattr(self, key, None)

    def with_value(self, key: str, value: Optional[FilterValue]) -> "DimensionFilters":
        data = self.as_dict()
        data[key] = value
        return DimensionFilters(**data)

    def without(self, key: str) -> "DimensionFilters":
        data = self.as_dict()
        data.pop(key, None)
        return DimensionFilters(**data)

    def merged(self, other: "DimensionFilters") -> "DimensionFilters":
        """Filters of `other` override filters of self key by key."""
        data = self.as_dict()
        data.update(other.as_dict())
        return DimensionFilters(**data)


class FilterClause(BaseModel):
    """
    One condition of a simplified filter.

    Direct operator: field + operator + value (e.g. `pid equals 1234`).
    Entity operator: field + operator + attribute_field + condition + value
    (e.g. `zid has product equals video`).

    data_type and attribute_data_type are echoed back to the filter editor;
    predicates always use the warehouse column types.
    """
    id: Optional[str] = None
    field: str = Field(..., description="Warehouse column (entity field or direct field)")
    data_type: FieldDataType = FieldDataType.STRING
    operator: FilterOperator
    attribute_field: Optional[str] = None
    attribute_data_type: Optional[FieldDataType] = None
    condition: Optional[FilterOperator] = None
    value: Any = None
    enabled: bool = True


class SimplifiedFilter(BaseModel):
    """Flat list of clauses combined by one logic toggle, optionally negated."""
    name: Optional[str] = None
    include_exclude: IncludeExclude = IncludeExclude.INCLUDE
    clauses: List[FilterClause] = Field(default_factory=list)
    clause_logic: ClauseLogic = ClauseLogic.AND


class TeamMapping(BaseModel):
    """A sales team and the PICs (persons in charge) assigned to it."""
    team_id: str
    team_name: str
    pics: List[str] = Field(default_factory=list)


# =============================================================================
# Aggregates and comparison records
# =============================================================================


class EntityAggregate(BaseModel):
    """One entity's metrics over one period."""
    entity_id: str
    display_name: str = ""
    requests: int = Field(default=0, ge=0)
    paid: int = Field(default=0, ge=0)
    revenue: float = Field(default=0.0, ge=0)
    avg_cpm: Optional[float] = Field(
        default=None,
        description="Arithmetic mean of per-row CPM values (unweighted)"
    )

    @property
    def fill_rate(self) -> float:
        """paid / requests, zero when there were no requests."""
        return self.paid / self.requests if self.requests > 0 else 0.0


class MetricDeltas(BaseModel):
    """
    Period-over-period change in percent.

    None is the new-spike sentinel: the baseline was zero and the current
    value is positive.
    """
    revenue_pct: Optional[float] = 0.0
    requests_pct: Optional[float] = 0.0
    cpm_pct: Optional[float] = 0.0
    fill_rate_pct: Optional[float] = 0.0


class ActionableWarning(BaseModel):
    """Highest-priority warning raised for a record."""
    severity: WarningSeverity = WarningSeverity.HEALTHY
    message: Optional[str] = None
    metrics: List[str] = Field(default_factory=list)


class ComparisonRecord(BaseModel):
    """
    Merged view of one entity across both periods.

    lifecycle_status must agree with which period aggregate is present.
    """
    entity_id: str
    display_name: str = ""
    period1: Optional[EntityAggregate] = None
    period2: Optional[EntityAggregate] = None
    lifecycle_status: LifecycleStatus
    deltas: MetricDeltas = Field(default_factory=MetricDeltas)
    tier: Optional[Tier] = None
    revenue_tier: Optional[RevenueTier] = None
    display_tier: Optional[DisplayTier] = None
    cumulative_revenue_pct: Optional[float] = None
    warning: ActionableWarning = Field(default_factory=ActionableWarning)

    @model_validator(mode='after')
    def _check_lifecycle(self) -> "ComparisonRecord":
        if self.period1 is None and self.period2 is None:
            raise ValueError(f"record {self.entity_id} has no period data")
        expected = (
            LifecycleStatus.NEW if self.period1 is None
            else LifecycleStatus.LOST if self.period2 is None
            else LifecycleStatus.EXISTING
        )
        if self.lifecycle_status != expected:
            raise ValueError(
                f"record {self.entity_id} is {self.lifecycle_status.value} "
                f"but its period data says {expected.value}"
            )
        return self

    @property
    def revenue_p1(self) -> float:
        return self.period1.revenue if self.period1 else 0.0

    @property
    def revenue_p2(self) -> float:
        return self.period2.revenue if self.period2 else 0.0

    @property
    def requests_p1(self) -> int:
        return self.period1.requests if self.period1 else 0

    @property
    def requests_p2(self) -> int:
        return self.period2.requests if self.period2 else 0

    @property
    def paid_p1(self) -> int:
        return self.period1.paid if self.period1 else 0

    @property
    def paid_p2(self) -> int:
        return self.period2.paid if self.period2 else 0


class ComparisonSummary(BaseModel):
    """Totals for a comparison, with counts and revenue per display tier."""
    total_items: int = 0
    total_revenue_p1: float = 0.0
    total_revenue_p2: float = 0.0
    revenue_change_pct: float = 0.0
    total_requests_p1: int = 0
    total_requests_p2: int = 0
    requests_change_pct: float = 0.0
    total_ecpm_p1: float = 0.0
    total_ecpm_p2: float = 0.0
    ecpm_change_pct: float = 0.0
    tier_counts: Dict[str, int] = Field(default_factory=dict)
    tier_revenue: Dict[str, float] = Field(default_factory=dict)


class ComparisonResult(BaseModel):
    """Classified records plus their summary."""
    records: List[ComparisonRecord] = Field(default_factory=list)
    summary: ComparisonSummary = Field(default_factory=ComparisonSummary)


class CacheEntry(BaseModel):
    """
    Cached comparison for one (perspective, filters, period1, period2) key.

    fetched_at is a reading of the cache clock (monotonic seconds).
    """
    key: str
    data: List[ComparisonRecord]
    summary: ComparisonSummary
    fetched_at: float


# =============================================================================
# Drill-down state
# =============================================================================


class BreadcrumbEntry(BaseModel):
    """
    One drill-down step.

    perspective is the level the entity was selected on (the parent of the
    level that was entered); filter_key is the scope filter it introduced.
    """
    perspective: PerspectiveId
    entity_id: str
    display_name: Optional[str] = None
    filter_key: str


class DrillDownPath(BaseModel):
    """Breadcrumbs from the root plus the scope filters they introduced."""
    entries: List[BreadcrumbEntry] = Field(default_factory=list)
    filters: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode='after')
    def _check_scope(self) -> "DrillDownPath":
        keys = [entry.filter_key for entry in self.entries]
        if len(set(keys)) != len(keys) or set(keys) != set(self.filters):
            raise ValueError("scope filters must match the breadcrumb levels exactly")
        return self

    @property
    def depth(self) -> int:
        return len(self.entries)

    @property
    def is_root(self) -> bool:
        return not self.entries


class SegmentResult(BaseModel):
    """Comparison for one selected entity in segmented mode."""
    entity_id: str
    filters: Dict[str, FilterValue] = Field(default_factory=dict)
    result: Optional[ComparisonResult] = None
    from_cache: bool = False


class DeepDiveView(BaseModel):
    """What the client renders after a transition."""
    mode: ViewMode = ViewMode.SINGLE
    perspective: PerspectiveId
    filters: Dict[str, FilterValue] = Field(default_factory=dict)
    period1: PeriodRange
    period2: PeriodRange
    path: DrillDownPath = Field(default_factory=DrillDownPath)
    result: Optional[ComparisonResult] = None
    segments: List[SegmentResult] = Field(default_factory=list)
    from_cache: bool = False
    loading: bool = False
    error: Optional[str] = None
    generation: int = 0


# =============================================================================
# API request/response models
# =============================================================================


class _PeriodPairRequest(BaseModel):
    period1: PeriodRange = Field(..., description="Baseline period")
    period2: PeriodRange = Field(..., description="Current period")

    @model_validator(mode='after')
    def _check_periods(self):
        for label, period in (("period1", self.period1), ("period2", self.period2)):
            if not period.is_ordered:
                raise ValueError(f"{label}.start must not be after {label}.end")
        return self


class AnalyzeRequest(_PeriodPairRequest):
    """Stateless deep-dive request."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "perspective": "pid",
                "period1": {"start": "2026-08-01", "end": "2026-08-31"},
                "period2": {"start": "2026-09-01", "end": "2026-09-30"},
                "filters": {"pic": "alice"},
                "tier_filter": "A",
            }
        }
    )

    perspective: PerspectiveId
    filters: Dict[str, Any] = Field(default_factory=dict)
    simplified_filter: Optional[SimplifiedFilter] = None
    tier_filter: Optional[DisplayTier] = None


class AnalyzeContext(BaseModel):
    perspective: PerspectiveId
    period1: PeriodRange
    period2: PeriodRange
    filters: Dict[str, FilterValue] = Field(default_factory=dict)
    tier_filter: Optional[DisplayTier] = None


class AnalyzeResponse(BaseModel):
    status: str = "ok"
    data: List[ComparisonRecord] = Field(default_factory=list)
    summary: ComparisonSummary
    context: AnalyzeContext


class SessionCreateRequest(_PeriodPairRequest):
    perspective: PerspectiveId = PerspectiveId.PID
    filters: Dict[str, Any] = Field(default_factory=dict)
    simplified_filter: Optional[SimplifiedFilter] = None


class DrillDownRequest(BaseModel):
    child_perspective: PerspectiveId
    entity_id: str = Field(..., min_length=1)
    display_name: Optional[str] = None

    @field_validator('entity_id', mode='before')
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class PerspectiveChangeRequest(BaseModel):
    perspective: PerspectiveId


class PeriodChangeRequest(_PeriodPairRequest):
    pass


class FilterChangeRequest(BaseModel):
    filters: Dict[str, Any] = Field(default_factory=dict)
    simplified_filter: Optional[SimplifiedFilter] = None


class SessionResponse(BaseModel):
    session_id: str
    view: DeepDiveView


# =============================================================================
# Saved filter presets
# =============================================================================


class FilterPresetCreate(BaseModel):
    """Payload for saving a deep-dive configuration."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    page: str = Field(default="deep-dive", min_length=1)
    perspective: Optional[PerspectiveId] = None
    filters: Dict[str, Any] = Field(default_factory=dict)
    simplified_filter: Optional[SimplifiedFilter] = None
    period1: Optional[PeriodRange] = None
    period2: Optional[PeriodRange] = None
    is_default: bool = False


class FilterPresetUpdate(BaseModel):
    """Partial update of a preset; fields left out keep their stored value."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    perspective: Optional[PerspectiveId] = None
    filters: Optional[Dict[str, Any]] = None
    simplified_filter: Optional[SimplifiedFilter] = None
    period1: Optional[PeriodRange] = None
    period2: Optional[PeriodRange] = None
    is_default: Optional[bool] = None


class FilterPresetResponse(FilterPresetCreate):
    id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FilterPresetListResponse(BaseModel):
    presets: List[FilterPresetResponse] = Field(default_factory=list)
