"""
Result cache tests: key determinism, TTL freshness and LRU eviction.
"""

from datetime import date

import pytest

from deepdive.models.enums import ClauseLogic, FilterOperator, PerspectiveId
from deepdive.models.schemas import (
    ComparisonResult,
    FilterClause,
    PeriodRange,
    SimplifiedFilter,
)
from deepdive.services.cache import ResultCache, canonical_filters, make_cache_key
from deepdive.services.comparison import merge_periods
from deepdive.tests.conftest import aggregate


def _result(revenue: float = 100.0) -> ComparisonResult:
    return ComparisonResult(records=merge_periods([aggregate('a', 50.0)], [aggregate('a', revenue)]))


# =============================================================================
# Keys
# =============================================================================


class TestCacheKey:

    def test_key_format(self, period1, period2):
        key = make_cache_key(PerspectiveId.PID, {'pic': 'alice'}, period1, period2)
        assert key == 'pid_{"pic":"alice"}_2026-08-01_2026-08-31_2026-09-01_2026-09-30'

    def test_key_ignores_insertion_order(self, period1, period2):
        a = make_cache_key(PerspectiveId.MID, {'pic': 'alice', 'pid': '7'}, period1, period2)
        b = make_cache_key(PerspectiveId.MID, {'pid': '7', 'pic': 'alice'}, period1, period2)
        assert a == b

    def test_key_normalises_lists(self, period1, period2):
        a = make_cache_key(PerspectiveId.PID, {'pid': ['3', '1', '3']}, period1, period2)
        b = make_cache_key(PerspectiveId.PID, {'pid': ['1', '3']}, period1, period2)
        assert a == b

    def test_single_item_list_equals_scalar(self, period1, period2):
        a = make_cache_key(PerspectiveId.PID, {'pid': ['5']}, period1, period2)
        b = make_cache_key(PerspectiveId.PID, {'pid': '5'}, period1, period2)
        assert a == b

    def test_empty_values_are_dropped(self):
        assert canonical_filters({'pic': '', 'pid': None, 'mid': [], 'zid': 9}) == {'zid': '9'}

    def test_distinct_inputs_give_distinct_keys(self, period1, period2, period3):
        keys = {
            make_cache_key(PerspectiveId.PID, {}, period1, period2),
            make_cache_key(PerspectiveId.MID, {}, period1, period2),
            make_cache_key(PerspectiveId.PID, {'pic': 'alice'}, period1, period2),
            make_cache_key(PerspectiveId.PID, {}, period2, period3),
        }
        assert len(keys) == 4

    def test_simplified_filter_changes_key(self, period1, period2):
        simplified = SimplifiedFilter(
            clauses=[FilterClause(field='product', operator=FilterOperator.EQUALS, value='video')],
            clause_logic=ClauseLogic.AND,
        )
        plain = make_cache_key(PerspectiveId.PID, {}, period1, period2)
        filtered = make_cache_key(PerspectiveId.PID, {}, period1, period2, simplified)

        assert plain != filtered
        assert '"clauses"' in filtered

    def test_empty_simplified_filter_does_not_change_key(self, period1, period2):
        plain = make_cache_key(PerspectiveId.PID, {}, period1, period2)
        empty = make_cache_key(PerspectiveId.PID, {}, period1, period2, SimplifiedFilter(name='x'))
        assert plain == empty


# =============================================================================
# Freshness and eviction
# =============================================================================


class TestResultCache:

    def test_store_and_get(self, result_cache):
        entry = result_cache.store('k', _result())

        assert result_cache.get('k') == entry
        assert 'k' in result_cache
        assert len(result_cache) == 1

    def test_miss(self, result_cache):
        assert result_cache.get('missing') is None

    def test_entry_expires_after_ttl(self, result_cache, fake_clock):
        result_cache.store('k', _result())

        fake_clock.advance(299.9)
        assert result_cache.get('k') is not None

        fake_clock.advance(0.1)
        assert result_cache.get('k') is None
        # Stale entries stay until replaced
        assert 'k' in result_cache

    def test_refresh_replaces_stale_entry(self, result_cache, fake_clock):
        result_cache.store('k', _result(100.0))
        fake_clock.advance(600)

        result_cache.store('k', _result(200.0))
        entry = result_cache.get('k')

        assert entry is not None
        assert entry.data[0].revenue_p2 == 200.0

    def test_lru_eviction(self, fake_clock):
        cache = ResultCache(ttl_seconds=300, max_entries=2, clock=fake_clock)
        cache.store('a', _result())
        cache.store('b', _result())

        cache.get('a')
        cache.store('c', _result())

        assert 'a' in cache
        assert 'b' not in cache
        assert 'c' in cache

    def test_invalidate_and_clear(self, result_cache):
        result_cache.store('a', _result())
        result_cache.store('b', _result())

        result_cache.invalidate('a')
        assert 'a' not in result_cache

        result_cache.clear()
        assert len(result_cache) == 0

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            ResultCache(max_entries=0)

    def test_key_is_available_on_instance(self, result_cache):
        p = PeriodRange(start=date(2026, 1, 1), end=date(2026, 1, 31))
        assert result_cache.key(PerspectiveId.TEAM, {}, p, p) == make_cache_key(PerspectiveId.TEAM, {}, p, p)
