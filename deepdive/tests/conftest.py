"""
Pytest configuration and shared fixtures for the deep-dive backend tests.

Provides:
- StubWarehouse: in-memory Warehouse returning canned rows per period and
  recording every query, so tests can assert on fetch counts and predicates
- FakeClock: injectable monotonic clock for cache TTL tests
- Period, aggregate and team fixtures
- Controller factory wiring stub warehouse, pipeline and cache together

Async tests run under pytest-asyncio.
"""

from datetime import date
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from deepdive.core.warehouse import Warehouse
from deepdive.models.enums import PerspectiveId
from deepdive.models.schemas import EntityAggregate, PeriodRange, TeamMapping
from deepdive.services.aggregator import PeriodAggregator
from deepdive.services.cache import ResultCache
from deepdive.services.drill_down import DrillDownController
from deepdive.services.pipeline import ComparisonPipeline
from deepdive.services.teams import StaticTeamDirectory


TEST_TABLE = 'project.dataset.publisher_daily'


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Custom markers:
    - slow: marks tests as slow (deselect with -m "not slow")
    - integration: marks tests requiring a live warehouse or database
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )
    config.addinivalue_line(
        'markers',
        'integration: marks tests requiring external service connectivity'
    )


# ============================================================
# TEST DOUBLES
# ============================================================

class StubWarehouse(Warehouse):
    """
    Warehouse double.

    Rows are keyed by the period start date. Every call is recorded with its
    arguments; `error` is raised instead of answering when set.
    """

    def __init__(self, rows_by_period: Optional[Dict[date, List[Dict[str, Any]]]] = None):
        self.rows_by_period = rows_by_period or {}
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    async def query_aggregates(self, table, grouping_key, name_expression, date_range, predicate=None):
        self.calls.append({
            'table': table,
            'grouping_key': grouping_key,
            'name_expression': name_expression,
            'date_range': date_range,
            'predicate': predicate,
        })
        if self.error is not None:
            raise self.error
        return [dict(row) for row in self.rows_by_period.get(date_range.start, [])]

    @property
    def call_count(self) -> int:
        return len(self.calls)


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def row(entity_id, revenue, requests=1000, paid=800, avg_cpm=1.5, name=None,
        cpm_sum=None, cpm_count=None) -> Dict[str, Any]:
    """Warehouse row in the aggregate query's output shape."""
    data = {
        'entity_id': entity_id,
        'display_name': name if name is not None else f"Entity {entity_id}",
        'requests': requests,
        'paid': paid,
        'revenue': revenue,
        'avg_cpm': avg_cpm,
    }
    if cpm_count is not None:
        data['cpm_sum'] = cpm_sum
        data['cpm_count'] = cpm_count
    return data


def aggregate(entity_id: str, revenue: float, requests: int = 1000, paid: int = 800,
              avg_cpm: Optional[float] = 1.5, name: Optional[str] = None) -> EntityAggregate:
    return EntityAggregate(
        entity_id=entity_id,
        display_name=name if name is not None else f"Entity {entity_id}",
        requests=requests,
        paid=paid,
        revenue=revenue,
        avg_cpm=avg_cpm,
    )


# ============================================================
# PERIOD FIXTURES
# ============================================================

@pytest.fixture
def period1() -> PeriodRange:
    """Baseline period: August 2026."""
    return PeriodRange(start=date(2026, 8, 1), end=date(2026, 8, 31))


@pytest.fixture
def period2() -> PeriodRange:
    """Current period: September 2026."""
    return PeriodRange(start=date(2026, 9, 1), end=date(2026, 9, 30))


@pytest.fixture
def period3() -> PeriodRange:
    return PeriodRange(start=date(2026, 10, 1), end=date(2026, 10, 15))


# ============================================================
# DATA FIXTURES
# ============================================================

@pytest.fixture
def sample_rows(period1, period2) -> Dict[date, List[Dict[str, Any]]]:
    """
    Baseline: 101, 102, 103 (lost after). Current: 101, 102, 104 (new).
    """
    return {
        period1.start: [
            row('101', 600.0),
            row('102', 300.0),
            row('103', 100.0),
        ],
        period2.start: [
            row('101', 700.0),
            row('102', 250.0, requests=500),
            row('104', 50.0),
        ],
    }


@pytest.fixture
def stub_warehouse(sample_rows) -> StubWarehouse:
    return StubWarehouse(sample_rows)


@pytest.fixture
def sample_teams() -> List[TeamMapping]:
    return [
        TeamMapping(team_id='T1', team_name='Team One', pics=['alice', 'bob']),
        TeamMapping(team_id='T2', team_name='Team Two', pics=['carol']),
        TeamMapping(team_id='T3', team_name='Empty Team', pics=[]),
    ]


@pytest.fixture
def team_directory(sample_teams) -> StaticTeamDirectory:
    return StaticTeamDirectory(sample_teams)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ============================================================
# SERVICE FIXTURES
# ============================================================

@pytest.fixture
def pipeline(stub_warehouse, team_directory) -> ComparisonPipeline:
    return ComparisonPipeline(PeriodAggregator(stub_warehouse, TEST_TABLE, team_directory))


@pytest.fixture
def result_cache(fake_clock) -> ResultCache:
    return ResultCache(ttl_seconds=300, max_entries=16, clock=fake_clock)


@pytest.fixture
def make_controller(pipeline, result_cache, period1, period2):
    """Factory for drill-down controllers sharing the stub warehouse and cache."""

    def _make(perspective: PerspectiveId = PerspectiveId.PID, filters=None, simplified_filter=None):
        return DrillDownController(
            pipeline=pipeline,
            cache=result_cache,
            perspective=perspective,
            period1=period1,
            period2=period2,
            filters=filters,
            simplified_filter=simplified_filter,
        )

    return _make


# ============================================================
# DATABASE MOCK FIXTURES
# ============================================================

@pytest.fixture
def mock_db_connection() -> MagicMock:
    """
    asyncpg connection double.

    fetch/fetchrow/execute are AsyncMocks; transaction() returns a MagicMock
    usable with `async with`.
    """
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value='DELETE 0')
    conn.transaction = MagicMock(return_value=MagicMock())
    return conn
