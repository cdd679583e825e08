"""
Period Aggregator.

Issues one warehouse query per period for a perspective and returns one
EntityAggregate per entity under the perspective's grouping key:

- requests, paid, revenue: non-negative sums over the matched daily rows
- avg_cpm: unweighted arithmetic mean of the per-row CPM values

The two periods of a comparison are independent reads and are fetched
concurrently with asyncio.gather; both must complete before merging.

Input validation fails fast with InvariantViolation (inverted period range,
filter keyed by an unknown grouping key). Warehouse failures propagate as
DataSourceError and are not retried here.

Team perspective:
    The warehouse has no team column. The query groups by pic and the
    resulting rows are rolled up into teams with the team directory; PICs
    without a team are dropped and a team's avg_cpm is the mean over all of
    its PICs' daily CPM rows. With a team filter only the selected teams take
    part, so a PIC shared between teams is credited to the filtered team.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
from pydantic import ValidationError

from deepdive.core.exceptions import InvariantViolation
from deepdive.core.warehouse import Warehouse
from deepdive.models.enums import PerspectiveId
from deepdive.models.schemas import (
    DimensionFilters,
    EntityAggregate,
    PeriodRange,
    SimplifiedFilter,
    TeamMapping,
)
from deepdive.services.perspectives import GROUPING_KEYS, Perspective, get_perspective
from deepdive.services.teams import TeamDirectory, pic_to_team
from deepdive.sql.predicates import build_predicate

logger = logging.getLogger(__name__)


AGGREGATE_COLUMNS: List[str] = [
    'entity_id',
    'display_name',
    'requests',
    'paid',
    'revenue',
    'avg_cpm',
]

SUM_COLUMNS: List[str] = ['requests', 'paid', 'revenue']

# Sum and count of the daily CPM values behind avg_cpm
CPM_COLUMNS: List[str] = ['cpm_sum', 'cpm_count']


# =============================================================================
# Input validation
# =============================================================================


def validate_period(date_range: PeriodRange, label: str = 'period') -> None:
    """Raise InvariantViolation unless start <= end."""
    if not date_range.is_ordered:
        raise InvariantViolation(
            f"{label} start {date_range.start.isoformat()} is after end {date_range.end.isoformat()}"
        )


def to_dimension_filters(
    filters: Union[None, DimensionFilters, Mapping[str, Any]],
) -> DimensionFilters:
    """
    Coerce a plain filter map into DimensionFilters.

    Raises:
        InvariantViolation: If a key is not a perspective grouping key or a
            value is not an id or list of ids.
    """
    if filters is None:
        return DimensionFilters()
    if isinstance(filters, DimensionFilters):
        return filters

    unknown = sorted(set(filters) - GROUPING_KEYS)
    if unknown:
        raise InvariantViolation(f"filters reference unknown grouping keys: {', '.join(unknown)}")

    try:
        return DimensionFilters(**filters)
    except ValidationError as e:
        raise InvariantViolation(f"invalid filter values: {e}") from e


# =============================================================================
# Row shaping (pandas)
# =============================================================================


def rows_to_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """
    Normalise warehouse rows: string ids, non-negative sums, numeric CPM.

    Rows without cpm_sum/cpm_count count their avg_cpm as a single CPM value.
    """
    frame = pd.DataFrame(rows, columns=AGGREGATE_COLUMNS + CPM_COLUMNS)
    frame = frame[frame['entity_id'].notna()].copy()

    frame['entity_id'] = frame['entity_id'].astype(str)
    frame['display_name'] = frame['display_name'].fillna('').astype(str)
    for column in SUM_COLUMNS:
        frame[column] = pd.to_numeric(frame[column], errors='coerce').fillna(0).clip(lower=0)
    frame['avg_cpm'] = pd.to_numeric(frame['avg_cpm'], errors='coerce')

    cpm_count = pd.to_numeric(frame['cpm_count'], errors='coerce')
    cpm_sum = pd.to_numeric(frame['cpm_sum'], errors='coerce')
    has_components = cpm_count.notna()
    frame['cpm_count'] = np.where(has_components, cpm_count, frame['avg_cpm'].notna().astype(int))
    frame['cpm_sum'] = np.where(has_components, cpm_sum.fillna(0), frame['avg_cpm'].fillna(0))

    return frame


def select_teams(teams: List[TeamMapping], filters: DimensionFilters) -> List[TeamMapping]:
    """Teams named by the team filter, or all teams when none is set."""
    if filters.team is None:
        return teams
    selected = set(filters.team) if isinstance(filters.team, list) else {filters.team}
    return [team for team in teams if team.team_id in selected]


def roll_up_teams(frame: pd.DataFrame, teams: List[TeamMapping]) -> pd.DataFrame:
    """
    Aggregate pic-level rows into team-level rows.

    A team's avg_cpm is the mean over all of its PICs' daily CPM values
    (sum of cpm_sum over sum of cpm_count).
    """
    assignments = pic_to_team(teams)
    team_ids = frame['entity_id'].map(lambda pic: assignments[pic].team_id if pic in assignments else None)

    unassigned = int(team_ids.isna().sum())
    if unassigned:
        logger.info(f"Dropped {unassigned} PICs without a team from team roll-up")

    assigned = frame.assign(team_id=team_ids).dropna(subset=['team_id'])
    if assigned.empty:
        return pd.DataFrame(columns=AGGREGATE_COLUMNS)

    grouped = assigned.groupby('team_id', sort=True).agg(
        requests=('requests', 'sum'),
        paid=('paid', 'sum'),
        revenue=('revenue', 'sum'),
        cpm_sum=('cpm_sum', 'sum'),
        cpm_count=('cpm_count', 'sum'),
    ).reset_index().rename(columns={'team_id': 'entity_id'})

    grouped['avg_cpm'] = grouped['cpm_sum'] / grouped['cpm_count'].where(grouped['cpm_count'] > 0)

    team_names = {team.team_id: team.team_name for team in teams}
    grouped['display_name'] = grouped['entity_id'].map(team_names).fillna(grouped['entity_id'])

    return grouped[AGGREGATE_COLUMNS]


def frame_to_aggregates(frame: pd.DataFrame) -> List[EntityAggregate]:
    aggregates = []
    for row in frame.to_dict('records'):
        avg_cpm = row['avg_cpm']
        aggregates.append(EntityAggregate(
            entity_id=row['entity_id'],
            display_name=row['display_name'],
            requests=int(round(row['requests'])),
            paid=int(round(row['paid'])),
            revenue=float(row['revenue']),
            avg_cpm=None if pd.isna(avg_cpm) else float(avg_cpm),
        ))
    return aggregates


# =============================================================================
# Aggregator
# =============================================================================


class PeriodAggregator:
    """
    Runs per-period aggregate queries against a Warehouse.

    Args:
        warehouse: Warehouse implementation (BigQuery in production).
        table: Fully qualified warehouse table.
        team_directory: Needed for the team perspective and team filters.
    """

    def __init__(
        self,
        warehouse: Warehouse,
        table: str,
        team_directory: Optional[TeamDirectory] = None,
    ):
        self.warehouse = warehouse
        self.table = table
        self.team_directory = team_directory

    @staticmethod
    def _needs_teams(
        perspective: Perspective,
        filters: DimensionFilters,
        simplified_filter: Optional[SimplifiedFilter],
    ) -> bool:
        if perspective.is_rolled_up or filters.team is not None:
            return True
        if simplified_filter is not None:
            return any(c.enabled and c.field == 'team' for c in simplified_filter.clauses)
        return False

    async def _load_teams(self) -> List[TeamMapping]:
        if self.team_directory is None:
            raise InvariantViolation("team directory is not configured")
        return await self.team_directory.get_teams()

    async def aggregate(
        self,
        perspective_id: PerspectiveId,
        date_range: PeriodRange,
        filters: Union[None, DimensionFilters, Mapping[str, Any]] = None,
        simplified_filter: Optional[SimplifiedFilter] = None,
        teams: Optional[List[TeamMapping]] = None,
    ) -> List[EntityAggregate]:
        """
        Aggregate one period.

        Raises:
            InvariantViolation: For an inverted range or unknown filter keys.
            DataSourceError: If the warehouse query fails.
        """
        perspective = get_perspective(perspective_id)
        validate_period(date_range)
        dimension_filters = to_dimension_filters(filters)

        if teams is None and self._needs_teams(perspective, dimension_filters, simplified_filter):
            teams = await self._load_teams()
        team_pics = {t.team_id: sorted(t.pics) for t in teams} if teams is not None else None

        predicate = build_predicate(dimension_filters, simplified_filter, team_pics, self.table)
        rows = await self.warehouse.query_aggregates(
            self.table,
            perspective.query_key,
            perspective.query_name_expression,
            date_range,
            predicate or None,
        )

        frame = rows_to_frame(rows)
        if perspective.is_rolled_up:
            frame = roll_up_teams(frame, select_teams(teams or [], dimension_filters))

        aggregates = frame_to_aggregates(frame)
        logger.debug(
            f"Aggregated {len(aggregates)} {perspective.id.value} entities "
            f"for {date_range.start}..{date_range.end}"
        )
        return aggregates

    async def aggregate_pair(
        self,
        perspective_id: PerspectiveId,
        period1: PeriodRange,
        period2: PeriodRange,
        filters: Union[None, DimensionFilters, Mapping[str, Any]] = None,
        simplified_filter: Optional[SimplifiedFilter] = None,
    ) -> Tuple[List[EntityAggregate], List[EntityAggregate]]:
        """Aggregate baseline and current periods concurrently."""
        perspective = get_perspective(perspective_id)
        validate_period(period1, 'period1')
        validate_period(period2, 'period2')
        dimension_filters = to_dimension_filters(filters)

        teams = None
        if self._needs_teams(perspective, dimension_filters, simplified_filter):
            teams = await self._load_teams()

        p1, p2 = await asyncio.gather(
            self.aggregate(perspective.id, period1, dimension_filters, simplified_filter, teams),
            self.aggregate(perspective.id, period2, dimension_filters, simplified_filter, teams),
        )
        return p1, p2
