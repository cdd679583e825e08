"""
Drill-down controller tests.

Covers descend/ascend round trips, cache hits on back-navigation within the
TTL and refetches after it, transition validation, multi-select
segmentation, discarding stale loads and never caching failed fetches.
"""

import asyncio

import pytest

from deepdive.core.exceptions import DataSourceError, InvariantViolation
from deepdive.models.enums import PerspectiveId, ViewMode
from deepdive.models.schemas import PeriodRange
from deepdive.services.aggregator import PeriodAggregator
from deepdive.services.cache import ResultCache
from deepdive.services.drill_down import DrillDownController
from deepdive.services.pipeline import ComparisonPipeline
from deepdive.tests.conftest import TEST_TABLE, StubWarehouse


class GatedWarehouse(StubWarehouse):
    """Holds queries for one grouping key until the gate opens."""

    def __init__(self, rows_by_period, gated_key: str):
        super().__init__(rows_by_period)
        self.gated_key = gated_key
        self.gate = asyncio.Event()
        self.waiting = 0

    async def query_aggregates(self, table, grouping_key, name_expression, date_range, predicate=None):
        if grouping_key == self.gated_key:
            self.waiting += 1
            await self.gate.wait()
        return await super().query_aggregates(table, grouping_key, name_expression, date_range, predicate)


class FailingPredicateWarehouse(StubWarehouse):
    """Fails queries carrying one predicate; answers the rest."""

    def __init__(self, rows_by_period, failing_predicate: str):
        super().__init__(rows_by_period)
        self.failing_predicate = failing_predicate

    async def query_aggregates(self, table, grouping_key, name_expression, date_range, predicate=None):
        if predicate == self.failing_predicate:
            raise DataSourceError('timeout', query_context=predicate)
        return await super().query_aggregates(table, grouping_key, name_expression, date_range, predicate)


# =============================================================================
# Initial load and navigation
# =============================================================================


class TestNavigation:

    @pytest.mark.asyncio
    async def test_initial_load_fetches_both_periods(self, make_controller, stub_warehouse):
        controller = make_controller()

        view = await controller.load()

        assert stub_warehouse.call_count == 2
        assert view.mode == ViewMode.SINGLE
        assert view.perspective == PerspectiveId.PID
        assert view.from_cache is False
        assert view.loading is False
        assert {r.entity_id for r in view.result.records} == {'101', '102', '103', '104'}

    @pytest.mark.asyncio
    async def test_descend_scopes_child_to_parent_entity(self, make_controller, stub_warehouse):
        controller = make_controller()
        await controller.load()

        view = await controller.descend(PerspectiveId.MID, '101', 'Entity 101')

        assert view.perspective == PerspectiveId.MID
        assert view.filters == {'pid': '101'}
        assert view.path.depth == 1
        assert view.path.entries[0].perspective == PerspectiveId.PID
        assert view.path.entries[0].display_name == 'Entity 101'
        assert stub_warehouse.calls[-1]['grouping_key'] == 'mid'
        assert stub_warehouse.calls[-1]['predicate'] == 'pid = 101'

    @pytest.mark.asyncio
    async def test_ascend_within_ttl_is_served_from_cache(self, make_controller, stub_warehouse):
        controller = make_controller()
        before = await controller.load()
        await controller.descend(PerspectiveId.MID, '101')
        calls = stub_warehouse.call_count

        after = await controller.ascend()

        assert stub_warehouse.call_count == calls
        assert after.from_cache is True
        assert after.perspective == PerspectiveId.PID
        assert after.filters == {}
        assert after.path.is_root
        assert after.result.model_dump() == before.result.model_dump()

    @pytest.mark.asyncio
    async def test_ascend_after_ttl_refetches(self, make_controller, stub_warehouse, fake_clock):
        controller = make_controller()
        await controller.load()
        await controller.descend(PerspectiveId.MID, '101')
        calls = stub_warehouse.call_count

        fake_clock.advance(301)
        view = await controller.ascend()

        assert stub_warehouse.call_count == calls + 2
        assert view.from_cache is False

    @pytest.mark.asyncio
    async def test_multi_level_round_trip(self, make_controller):
        controller = make_controller(PerspectiveId.PID, filters={'pic': 'alice'})
        await controller.load()

        await controller.descend(PerspectiveId.MID, '101')
        view = await controller.descend(PerspectiveId.ZONE, '7')
        assert view.filters == {'pic': 'alice', 'pid': '101', 'mid': '7'}
        assert [e.filter_key for e in view.path.entries] == ['pid', 'mid']

        view = await controller.ascend()
        assert view.perspective == PerspectiveId.MID
        assert view.filters == {'pic': 'alice', 'pid': '101'}

        view = await controller.ascend()
        assert view.perspective == PerspectiveId.PID
        assert view.filters == {'pic': 'alice'}
        assert controller.path.is_root

    @pytest.mark.asyncio
    async def test_descend_accepts_numeric_like_ids(self, make_controller):
        controller = make_controller()
        await controller.load()

        await controller.descend(PerspectiveId.MID, 101)

        assert controller.scope_filters == {'pid': '101'}

    @pytest.mark.asyncio
    async def test_change_perspective_clears_path(self, make_controller):
        controller = make_controller()
        await controller.load()
        await controller.descend(PerspectiveId.MID, '101')

        view = await controller.change_perspective(PerspectiveId.PRODUCT)

        assert view.perspective == PerspectiveId.PRODUCT
        assert view.path.is_root
        assert view.filters == {}

    @pytest.mark.asyncio
    async def test_change_periods_refetches(self, make_controller, stub_warehouse, period2, period3):
        controller = make_controller()
        await controller.load()

        view = await controller.change_periods(period2, period3)

        assert stub_warehouse.call_count == 4
        assert view.period1 == period2
        assert view.period2 == period3

    @pytest.mark.asyncio
    async def test_change_filters_keeps_scope(self, make_controller, stub_warehouse):
        controller = make_controller()
        await controller.load()
        await controller.descend(PerspectiveId.MID, '101')

        view = await controller.change_filters({'pic': 'alice'})

        assert view.filters == {'pic': 'alice', 'pid': '101'}
        assert stub_warehouse.calls[-1]['predicate'] == "pic = 'alice' AND pid = 101"

    @pytest.mark.asyncio
    async def test_analyze_bypasses_cache(self, make_controller, stub_warehouse):
        controller = make_controller()
        await controller.load()

        view = await controller.analyze()

        assert stub_warehouse.call_count == 4
        assert view.from_cache is False

    @pytest.mark.asyncio
    async def test_generation_increases_per_load(self, make_controller):
        controller = make_controller()
        first = await controller.load()
        second = await controller.analyze()

        assert second.generation == first.generation + 1 == controller.generation


# =============================================================================
# Invalid transitions
# =============================================================================


class TestInvalidTransitions:

    @pytest.mark.asyncio
    async def test_descend_from_leaf(self, make_controller, stub_warehouse):
        controller = make_controller(PerspectiveId.ZONE)
        await controller.load()
        calls = stub_warehouse.call_count

        with pytest.raises(InvariantViolation):
            await controller.descend(PerspectiveId.PID, '1')

        assert controller.perspective == PerspectiveId.ZONE
        assert stub_warehouse.call_count == calls

    @pytest.mark.asyncio
    async def test_descend_into_wrong_child(self, make_controller):
        controller = make_controller(PerspectiveId.PID)
        await controller.load()

        with pytest.raises(InvariantViolation):
            await controller.descend(PerspectiveId.ZONE, '1')

        assert controller.path.is_root

    @pytest.mark.asyncio
    async def test_descend_without_entity_id(self, make_controller):
        controller = make_controller()
        await controller.load()

        with pytest.raises(InvariantViolation):
            await controller.descend(PerspectiveId.MID, '')

    @pytest.mark.asyncio
    async def test_ascend_at_root(self, make_controller):
        controller = make_controller()
        await controller.load()

        with pytest.raises(InvariantViolation):
            await controller.ascend()

    def test_inverted_period_rejected(self, pipeline, result_cache, period1):
        inverted = PeriodRange(start=period1.end, end=period1.start)

        with pytest.raises(InvariantViolation):
            DrillDownController(pipeline, result_cache, PerspectiveId.PID, inverted, period1)

    @pytest.mark.asyncio
    async def test_inverted_period_change_keeps_state(self, make_controller, period1, period2):
        controller = make_controller()
        await controller.load()

        with pytest.raises(InvariantViolation):
            await controller.change_periods(period2, PeriodRange(start=period2.end, end=period2.start))

        assert controller.period1 == period1
        assert controller.period2 == period2

    @pytest.mark.asyncio
    async def test_unknown_filter_key(self, make_controller):
        controller = make_controller()
        await controller.load()

        with pytest.raises(InvariantViolation):
            await controller.change_filters({'region': 'emea'})

        assert controller.base_filters.as_dict() == {}


# =============================================================================
# Multi-select
# =============================================================================


class TestSegmentation:

    @pytest.mark.asyncio
    async def test_multi_select_on_current_key_segments_view(self, make_controller, stub_warehouse):
        controller = make_controller(filters={'pid': ['102', '101']})

        view = await controller.load()

        assert view.mode == ViewMode.SEGMENTED
        assert view.result is None
        assert [s.entity_id for s in view.segments] == ['101', '102']
        assert [s.filters for s in view.segments] == [{'pid': '101'}, {'pid': '102'}]
        assert stub_warehouse.call_count == 4
        assert sorted({c['predicate'] for c in stub_warehouse.calls}) == ['pid = 101', 'pid = 102']

    @pytest.mark.asyncio
    async def test_multi_select_on_other_key_is_single(self, make_controller, stub_warehouse):
        controller = make_controller(PerspectiveId.MID, filters={'pid': ['101', '102']})

        view = await controller.load()

        assert view.mode == ViewMode.SINGLE
        assert stub_warehouse.calls[-1]['predicate'] == 'pid IN (101, 102)'

    @pytest.mark.asyncio
    async def test_segments_served_from_cache_on_return(self, make_controller, stub_warehouse):
        controller = make_controller(filters={'pid': ['101', '102']})
        await controller.load()

        view = await controller.descend(PerspectiveId.MID, '101')
        assert view.mode == ViewMode.SINGLE
        assert view.filters == {'pid': '101'}

        calls = stub_warehouse.call_count
        view = await controller.ascend()

        assert stub_warehouse.call_count == calls
        assert view.mode == ViewMode.SEGMENTED
        assert view.from_cache is True
        assert all(s.from_cache for s in view.segments)


# =============================================================================
# Concurrency and failures
# =============================================================================


class TestLoadOrdering:

    @pytest.mark.asyncio
    async def test_stale_load_is_not_applied(self, sample_rows, fake_clock, period1, period2):
        warehouse = GatedWarehouse(sample_rows, gated_key='mid')
        cache = ResultCache(ttl_seconds=300, clock=fake_clock)
        controller = DrillDownController(
            ComparisonPipeline(PeriodAggregator(warehouse, TEST_TABLE)),
            cache,
            PerspectiveId.PID,
            period1,
            period2,
        )
        await controller.load()

        slow = asyncio.create_task(controller.descend(PerspectiveId.MID, '101'))
        while warehouse.waiting < 2:
            await asyncio.sleep(0)

        latest = await controller.change_perspective(PerspectiveId.PIC)
        warehouse.gate.set()
        returned = await slow

        assert latest.perspective == PerspectiveId.PIC
        assert returned.perspective == PerspectiveId.PIC
        assert controller.view.generation == latest.generation
        # The stale result is still cached for its own key
        stale_key = cache.key(PerspectiveId.MID, {'pid': '101'}, period1, period2)
        assert stale_key in cache

    @pytest.mark.asyncio
    async def test_failed_load_is_not_cached(self, make_controller, stub_warehouse, result_cache):
        controller = make_controller()
        stub_warehouse.error = DataSourceError('quota exceeded', query_context='pid')

        with pytest.raises(DataSourceError):
            await controller.load()

        assert len(result_cache) == 0
        assert controller.view.error == 'pid: quota exceeded'
        assert controller.view.loading is False

    @pytest.mark.asyncio
    async def test_unexpected_error_clears_loading(self, make_controller, stub_warehouse, result_cache):
        controller = make_controller()
        stub_warehouse.error = RuntimeError('connection reset')

        with pytest.raises(RuntimeError, match='connection reset'):
            await controller.load()

        assert controller.view.loading is False
        assert controller.view.error == 'connection reset'
        assert len(result_cache) == 0

    @pytest.mark.asyncio
    async def test_failed_segment_does_not_abandon_siblings(
        self, sample_rows, fake_clock, period1, period2
    ):
        warehouse = FailingPredicateWarehouse(sample_rows, failing_predicate='pid = 102')
        cache = ResultCache(ttl_seconds=300, clock=fake_clock)
        controller = DrillDownController(
            ComparisonPipeline(PeriodAggregator(warehouse, TEST_TABLE)),
            cache,
            PerspectiveId.PID,
            period1,
            period2,
            filters={'pid': ['101', '102']},
        )

        with pytest.raises(DataSourceError):
            await controller.load()

        assert controller.view.loading is False
        assert controller.view.error == 'pid = 102: timeout'
        # The healthy segment finished and was cached; the failed one was not
        assert cache.key(PerspectiveId.PID, {'pid': '101'}, period1, period2) in cache
        assert cache.key(PerspectiveId.PID, {'pid': '102'}, period1, period2) not in cache

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, make_controller, stub_warehouse):
        controller = make_controller()
        stub_warehouse.error = DataSourceError('timeout')
        with pytest.raises(DataSourceError):
            await controller.load()

        stub_warehouse.error = None
        view = await controller.analyze()

        assert view.error is None
        assert view.result is not None

    @pytest.mark.asyncio
    async def test_failed_descend_keeps_new_position(self, make_controller, stub_warehouse):
        controller = make_controller()
        await controller.load()
        stub_warehouse.error = DataSourceError('timeout')

        with pytest.raises(DataSourceError):
            await controller.descend(PerspectiveId.MID, '101')

        assert controller.perspective == PerspectiveId.MID
        assert controller.view.error == 'timeout'
        # Back-navigation still works from the cache
        stub_warehouse.error = None
        view = await controller.ascend()
        assert view.from_cache is True
