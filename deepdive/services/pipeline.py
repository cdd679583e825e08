"""
Comparison pipeline.

    aggregate period pair -> merge -> classify -> warnings -> summary

Shared by the stateless analyze endpoint and the drill-down controller.
"""

import logging
from typing import Any, List, Mapping, Optional, Union

from deepdive.core.config import Settings
from deepdive.core.warehouse import Warehouse
from deepdive.models.enums import DisplayTier, PerspectiveId
from deepdive.models.schemas import (
    ComparisonRecord,
    ComparisonResult,
    DimensionFilters,
    EntityAggregate,
    PeriodRange,
    SimplifiedFilter,
)
from deepdive.services.aggregator import PeriodAggregator
from deepdive.services.alerts import annotate_warnings
from deepdive.services.comparison import merge_periods
from deepdive.services.summary import calculate_summary
from deepdive.services.teams import TeamDirectory
from deepdive.services.tiering import (
    DEFAULT_TIER_A_THRESHOLD,
    DEFAULT_TIER_B_THRESHOLD,
    classify,
)

logger = logging.getLogger(__name__)


class ComparisonPipeline:
    """Runs one full comparison for a perspective and period pair."""

    def __init__(
        self,
        aggregator: PeriodAggregator,
        tier_a_threshold: float = DEFAULT_TIER_A_THRESHOLD,
        tier_b_threshold: float = DEFAULT_TIER_B_THRESHOLD,
    ):
        self.aggregator = aggregator
        self.tier_a_threshold = tier_a_threshold
        self.tier_b_threshold = tier_b_threshold

    def compare(
        self,
        period1: List[EntityAggregate],
        period2: List[EntityAggregate],
    ) -> ComparisonResult:
        """Merge, classify, warn and summarise already-fetched aggregates."""
        records = merge_periods(period1, period2)
        records = classify(records, self.tier_a_threshold, self.tier_b_threshold)
        records = annotate_warnings(records)
        return ComparisonResult(records=records, summary=calculate_summary(records))

    async def run(
        self,
        perspective: PerspectiveId,
        period1: PeriodRange,
        period2: PeriodRange,
        filters: Union[None, DimensionFilters, Mapping[str, Any]] = None,
        simplified_filter: Optional[SimplifiedFilter] = None,
    ) -> ComparisonResult:
        """
        Fetch both periods and compare them.

        Raises:
            InvariantViolation: For invalid periods or filters.
            DataSourceError: If either warehouse query fails.
        """
        p1, p2 = await self.aggregator.aggregate_pair(
            perspective, period1, period2, filters, simplified_filter
        )
        result = self.compare(p1, p2)
        logger.info(
            f"Compared {PerspectiveId(perspective).value}: {len(p1)} baseline, "
            f"{len(p2)} current, {len(result.records)} records"
        )
        return result


def apply_tier_filter(
    records: List[ComparisonRecord],
    tier_filter: Optional[DisplayTier],
) -> List[ComparisonRecord]:
    """Records of one display tier; all records when no filter is set."""
    if tier_filter is None:
        return records
    return [r for r in records if r.display_tier == tier_filter]


def build_pipeline(
    settings: Settings,
    warehouse: Warehouse,
    team_directory: Optional[TeamDirectory] = None,
) -> ComparisonPipeline:
    """Pipeline wired from settings: warehouse table and tier thresholds."""
    aggregator = PeriodAggregator(warehouse, settings.deep_dive_table, team_directory)
    return ComparisonPipeline(
        aggregator,
        tier_a_threshold=settings.tier_a_threshold,
        tier_b_threshold=settings.tier_b_threshold,
    )
