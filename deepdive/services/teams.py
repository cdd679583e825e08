"""
Team directory for the team perspective.

Teams are not a warehouse column: they are configured in PostgreSQL
(team_configurations + team_pic_mappings) and assign PICs to teams. The
directory is read when a query filters by team or groups by team.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List

import asyncpg

from deepdive.core.database import execute_query
from deepdive.core.exceptions import DataSourceError
from deepdive.models.schemas import TeamMapping
from deepdive.sql.deep_dive_queries import SELECT_TEAM_MAPPINGS

logger = logging.getLogger(__name__)


class TeamDirectory(ABC):
    """Source of team -> PIC assignments."""

    @abstractmethod
    async def get_teams(self) -> List[TeamMapping]:
        """All configured teams with their PICs."""


class PostgresTeamDirectory(TeamDirectory):
    """Team directory read through the asyncpg pool."""

    async def get_teams(self) -> List[TeamMapping]:
        try:
            rows = await execute_query(SELECT_TEAM_MAPPINGS)
        except (asyncpg.PostgresError, OSError, RuntimeError) as e:
            logger.error(f"Failed to load team directory: {e}")
            raise DataSourceError(str(e), query_context="team directory") from e

        teams: Dict[str, TeamMapping] = {}
        for row in rows:
            team = teams.get(row['team_id'])
            if team is None:
                team = TeamMapping(team_id=row['team_id'], team_name=row['team_name'])
                teams[row['team_id']] = team
            if row['pic_name']:
                team.pics.append(row['pic_name'])

        logger.info(f"Loaded {len(teams)} teams from team directory")
        return list(teams.values())


class StaticTeamDirectory(TeamDirectory):
    """In-memory directory, for fixed configurations and tests."""

    def __init__(self, teams: List[TeamMapping]):
        self._teams = list(teams)

    async def get_teams(self) -> List[TeamMapping]:
        return list(self._teams)


def pic_to_team(teams: List[TeamMapping]) -> Dict[str, TeamMapping]:
    """
    Invert team assignments.

    A PIC listed under several teams belongs to the first by team_id.
    """
    assignments: Dict[str, TeamMapping] = {}
    for team in sorted(teams, key=lambda t: t.team_id):
        for pic in team.pics:
            if pic in assignments:
                logger.warning(
                    f"PIC '{pic}' is assigned to both {assignments[pic].team_id} "
                    f"and {team.team_id}; keeping {assignments[pic].team_id}"
                )
                continue
            assignments[pic] = team
    return assignments
