"""
Drill-Down Controller.

Holds one user's navigation state and turns UI events into comparison loads:

- perspective: the level currently shown
- path: breadcrumbs from the root plus the scope filters they introduced
  ({parent grouping key: selected entity id})
- base filters and simplified filter chosen by the user
- period pair
- view: what the client renders

Effective filters are the base filters overlaid with the scope filters.

Transitions:
    descend(child, entity_id)  only into the current perspective's child
    ascend()                   only below the root; restores the exact
                               perspective and filters from before the
                               matching descend
    change_perspective(p)      jumps to a new root, clearing the path
    change_periods(p1, p2)
    change_filters(filters)
    analyze()                  re-runs the current view, bypassing the cache

Every transition consults the result cache first and fetches on a miss;
successful fetches are cached, failed ones never are. A failure of any fetch
clears the loading flag, records the error on the view and is re-raised once
the sibling fetches have settled. Each load takes the next generation
number; a load that finishes after a newer one started is not applied to
the view.

Multi-select: when the effective filter for the current perspective's own
grouping key lists several ids, the view is segmented into one comparison
per id.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from deepdive.core.exceptions import DeepDiveError, InvariantViolation
from deepdive.models.enums import PerspectiveId, ViewMode
from deepdive.models.schemas import (
    BreadcrumbEntry,
    ComparisonResult,
    DeepDiveView,
    DimensionFilters,
    DrillDownPath,
    PeriodRange,
    SegmentResult,
    SimplifiedFilter,
)
from deepdive.services.aggregator import to_dimension_filters, validate_period
from deepdive.services.cache import ResultCache
from deepdive.services.perspectives import Perspective, get_perspective
from deepdive.services.pipeline import ComparisonPipeline

logger = logging.getLogger(__name__)


class DrillDownController:
    """
    Per-session drill-down state machine.

    Args:
        pipeline: Comparison pipeline used for fetches.
        cache: Result cache owned by this session.
        perspective: Root perspective.
        period1: Baseline period.
        period2: Current period.
        filters: Base dimension filters.
        simplified_filter: Optional clause filter.
    """

    def __init__(
        self,
        pipeline: ComparisonPipeline,
        cache: ResultCache,
        perspective: PerspectiveId,
        period1: PeriodRange,
        period2: PeriodRange,
        filters: Union[None, DimensionFilters, Mapping[str, Any]] = None,
        simplified_filter: Optional[SimplifiedFilter] = None,
    ):
        validate_period(period1, 'period1')
        validate_period(period2, 'period2')

        self.pipeline = pipeline
        self.cache = cache
        self.perspective = get_perspective(perspective).id
        self.period1 = period1
        self.period2 = period2
        self.base_filters = to_dimension_filters(filters)
        self.simplified_filter = simplified_filter
        self.path = DrillDownPath()
        self._generation = 0
        self.view = self._blank_view()

    # =========================================================================
    # State accessors
    # =========================================================================

    @property
    def current(self) -> Perspective:
        return get_perspective(self.perspective)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def scope_filters(self) -> Dict[str, str]:
        return dict(self.path.filters)

    @property
    def effective_filters(self) -> DimensionFilters:
        return self.base_filters.merged(DimensionFilters(**self.path.filters))

    def _blank_view(self) -> DeepDiveView:
        return DeepDiveView(
            perspective=self.perspective,
            filters=self.effective_filters.as_dict(),
            period1=self.period1,
            period2=self.period2,
            path=self.path.model_copy(deep=True),
            generation=self._generation,
        )

    def segment_ids(self, filters: Optional[DimensionFilters] = None) -> Optional[List[str]]:
        """Selected ids of the current perspective when more than one is selected."""
        filters = filters if filters is not None else self.effective_filters
        value = filters.get(self.current.grouping_key)
        if isinstance(value, list) and len(set(value)) > 1:
            return sorted(set(value))
        return None

    # =========================================================================
    # Transitions
    # =========================================================================

    async def load(self) -> DeepDiveView:
        """Initial load of the current state."""
        return await self._load(use_cache=True)

    async def descend(
        self,
        child: PerspectiveId,
        entity_id: str,
        display_name: Optional[str] = None,
    ) -> DeepDiveView:
        """
        Drill into one entity of the current perspective.

        Raises:
            InvariantViolation: If the current perspective is a leaf or child
                is not its child perspective.
        """
        current = self.current
        child = PerspectiveId(child)
        if current.is_leaf:
            raise InvariantViolation(f"cannot drill down from leaf perspective {current.id.value}")
        if child != current.child:
            raise InvariantViolation(
                f"{current.id.value} drills into {current.child.value}, not {child.value}"
            )
        if not entity_id:
            raise InvariantViolation("drill-down requires an entity id")

        entry = BreadcrumbEntry(
            perspective=current.id,
            entity_id=str(entity_id),
            display_name=display_name,
            filter_key=current.grouping_key,
        )
        scope = dict(self.path.filters)
        scope[current.grouping_key] = str(entity_id)
        self.path = DrillDownPath(entries=self.path.entries + [entry], filters=scope)
        self.perspective = child

        logger.info(f"Descend {current.id.value}={entity_id} -> {child.value} (depth {self.path.depth})")
        return await self._load(use_cache=True)

    async def ascend(self) -> DeepDiveView:
        """
        Go back one breadcrumb.

        Raises:
            InvariantViolation: At the root.
        """
        if self.path.is_root:
            raise InvariantViolation("cannot go back from the root")

        entry = self.path.entries[-1]
        scope = dict(self.path.filters)
        del scope[entry.filter_key]
        self.path = DrillDownPath(entries=self.path.entries[:-1], filters=scope)
        self.perspective = entry.perspective

        logger.info(f"Ascend -> {entry.perspective.value} (depth {self.path.depth})")
        return await self._load(use_cache=True)

    async def change_perspective(self, perspective: PerspectiveId) -> DeepDiveView:
        """Switch to another root perspective, clearing the drill-down path."""
        self.perspective = get_perspective(perspective).id
        self.path = DrillDownPath()
        return await self._load(use_cache=True)

    async def change_periods(self, period1: PeriodRange, period2: PeriodRange) -> DeepDiveView:
        validate_period(period1, 'period1')
        validate_period(period2, 'period2')
        self.period1 = period1
        self.period2 = period2
        return await self._load(use_cache=True)

    async def change_filters(
        self,
        filters: Union[None, DimensionFilters, Mapping[str, Any]],
        simplified_filter: Optional[SimplifiedFilter] = None,
    ) -> DeepDiveView:
        """Replace the base filters; the drill-down scope is kept."""
        self.base_filters = to_dimension_filters(filters)
        self.simplified_filter = simplified_filter
        return await self._load(use_cache=True)

    async def analyze(self) -> DeepDiveView:
        """Re-run the current view against the warehouse."""
        return await self._load(use_cache=False)

    # =========================================================================
    # Loading
    # =========================================================================

    async def _load(self, use_cache: bool) -> DeepDiveView:
        self._generation += 1
        generation = self._generation

        perspective = self.perspective
        period1, period2 = self.period1, self.period2
        simplified_filter = self.simplified_filter
        filters = self.effective_filters
        path = self.path.model_copy(deep=True)

        ids = self.segment_ids(filters)
        if ids:
            key_name = get_perspective(perspective).grouping_key
            jobs: List[Tuple[Optional[str], DimensionFilters]] = [
                (entity_id, filters.with_value(key_name, entity_id)) for entity_id in ids
            ]
        else:
            jobs = [(None, filters)]

        resolved: Dict[int, Tuple[ComparisonResult, bool]] = {}
        pending: List[Tuple[int, str, DimensionFilters]] = []
        for index, (_, job_filters) in enumerate(jobs):
            key = self.cache.key(perspective, job_filters.as_dict(), period1, period2, simplified_filter)
            entry = self.cache.get(key) if use_cache else None
            if entry is not None:
                resolved[index] = (ComparisonResult(records=entry.data, summary=entry.summary), True)
            else:
                pending.append((index, key, job_filters))

        if pending:
            self.view = self.view.model_copy(update={
                'perspective': perspective,
                'filters': filters.as_dict(),
                'period1': period1,
                'period2': period2,
                'path': path,
                'loading': True,
                'error': None,
                'generation': generation,
            })
            try:
                outcomes = await asyncio.gather(
                    *(
                        self.pipeline.run(perspective, period1, period2, job_filters, simplified_filter)
                        for _, _, job_filters in pending
                    ),
                    return_exceptions=True,
                )
            except asyncio.CancelledError:
                if generation == self._generation:
                    self.view = self.view.model_copy(update={'loading': False})
                raise

            failures = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
            for (index, key, _), outcome in zip(pending, outcomes):
                if not isinstance(outcome, BaseException):
                    self.cache.store(key, outcome)
                    resolved[index] = (outcome, False)

            if failures:
                error = failures[0]
                if generation == self._generation:
                    self.view = self.view.model_copy(update={'loading': False, 'error': str(error)})
                else:
                    logger.info(f"Stale load {generation} failed after load {self._generation} started: {error}")
                if not isinstance(error, DeepDiveError):
                    logger.error(f"Unexpected error in load {generation}: {error}", exc_info=error)
                raise error

        if generation != self._generation:
            logger.info(f"Discarding stale load {generation}; load {self._generation} is newer")
            return self.view

        if ids:
            segments = [
                SegmentResult(
                    entity_id=entity_id,
                    filters=job_filters.as_dict(),
                    result=resolved[index][0],
                    from_cache=resolved[index][1],
                )
                for index, (entity_id, job_filters) in enumerate(jobs)
            ]
            mode, result, segment_list = ViewMode.SEGMENTED, None, segments
        else:
            mode, result, segment_list = ViewMode.SINGLE, resolved[0][0], []

        self.view = DeepDiveView(
            mode=mode,
            perspective=perspective,
            filters=filters.as_dict(),
            period1=period1,
            period2=period2,
            path=path,
            result=result,
            segments=segment_list,
            from_cache=all(from_cache for _, from_cache in resolved.values()),
            generation=generation,
        )
        return self.view
