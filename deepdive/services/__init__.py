"""
Business logic services for the deep-dive backend.

Modules:
    perspectives: Static perspective registry (grouping keys, hierarchy).
    aggregator: Period Aggregator over the warehouse, with team roll-up.
    comparison: Comparison Merger (outer join, lifecycle, deltas).
    tiering: Pareto ABC Tier Classifier (A/B/C, NEW-*, LOST-*).
    alerts: Actionable warnings on existing entities.
    summary: Totals and per-tier counts and revenue.
    pipeline: aggregate -> merge -> classify -> warn -> summarise.
    cache: TTL + LRU result cache with deterministic keys.
    drill_down: Drill-Down Controller state machine.
    sessions: In-memory registry of drill-down sessions.
    teams: Team directory (PostgreSQL team configuration).
    presets: Saved filter presets (PostgreSQL).

Usage:
    from deepdive.services import ComparisonPipeline, DrillDownController

    pipeline = ComparisonPipeline(PeriodAggregator(warehouse, table, teams))
    result = await pipeline.run(PerspectiveId.PID, period1, period2, {'pic': 'alice'})
"""

from deepdive.services.perspectives import (
    PERSPECTIVES,
    GROUPING_KEYS,
    Perspective,
    get_perspective,
    validate_registry,
)
from deepdive.services.aggregator import PeriodAggregator, to_dimension_filters
from deepdive.services.comparison import NEW_SPIKE, merge_periods
from deepdive.services.tiering import classify, rank_revenue_tiers
from deepdive.services.alerts import annotate_warnings, evaluate_warning
from deepdive.services.summary import calculate_summary
from deepdive.services.pipeline import ComparisonPipeline, apply_tier_filter
from deepdive.services.cache import ResultCache, make_cache_key
from deepdive.services.drill_down import DrillDownController
from deepdive.services.sessions import SessionStore
from deepdive.services.teams import TeamDirectory, PostgresTeamDirectory, StaticTeamDirectory

__all__ = [
    'PERSPECTIVES',
    'GROUPING_KEYS',
    'Perspective',
    'get_perspective',
    'validate_registry',
    'PeriodAggregator',
    'to_dimension_filters',
    'NEW_SPIKE',
    'merge_periods',
    'classify',
    'rank_revenue_tiers',
    'annotate_warnings',
    'evaluate_warning',
    'calculate_summary',
    'ComparisonPipeline',
    'apply_tier_filter',
    'ResultCache',
    'make_cache_key',
    'DrillDownController',
    'SessionStore',
    'TeamDirectory',
    'PostgresTeamDirectory',
    'StaticTeamDirectory',
]
