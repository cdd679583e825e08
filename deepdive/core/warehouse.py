"""
BigQuery warehouse client for the deep-dive engine.

The engine reads per-entity aggregates through the Warehouse interface so
services can be tested against a stub. BigQueryWarehouse is the production
implementation: the blocking google-cloud-bigquery client runs in a worker
thread via asyncio.to_thread, so two period queries can be awaited together
with asyncio.gather without blocking the event loop.

Any client failure (auth, quota, SQL error, timeout) is re-raised as
DataSourceError carrying the original diagnostic. Queries are never retried.

Usage:
    warehouse = get_warehouse()
    rows = await warehouse.query_aggregates(
        table, 'pid', 'MAX(pubname)', PeriodRange(start=..., end=...), "pic = 'alice'"
    )
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Dict, List, Optional

from google.cloud import bigquery
from google.oauth2 import service_account

from deepdive.core.config import get_settings
from deepdive.core.exceptions import DataSourceError
from deepdive.models.schemas import PeriodRange
from deepdive.sql.deep_dive_queries import build_aggregate_query

logger = logging.getLogger(__name__)

BIGQUERY_SCOPES = ['https://www.googleapis.com/auth/bigquery']


class Warehouse(ABC):
    """Read-only source of per-entity aggregates."""

    @abstractmethod
    async def query_aggregates(
        self,
        table: str,
        grouping_key: str,
        name_expression: str,
        date_range: PeriodRange,
        predicate: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Return one row per entity with keys entity_id, display_name,
        requests, paid, revenue, avg_cpm.

        Raises:
            DataSourceError: If the query fails or times out.
        """


class BigQueryWarehouse(Warehouse):
    """
    Warehouse backed by google-cloud-bigquery.

    The client is created lazily on first use so the application can start
    without credentials (e.g. for preset management only).
    """

    def __init__(
        self,
        project: Optional[str] = None,
        location: str = 'US',
        credentials_path: Optional[str] = None,
        timeout_seconds: float = 60.0,
        client: Optional[bigquery.Client] = None,
    ):
        self.project = project
        self.location = location
        self.credentials_path = credentials_path
        self.timeout_seconds = timeout_seconds
        self._client = client

    def _get_client(self) -> bigquery.Client:
        if self._client is None:
            credentials = None
            if self.credentials_path:
                credentials = service_account.Credentials.from_service_account_file(
                    self.credentials_path, scopes=BIGQUERY_SCOPES
                )
            self._client = bigquery.Client(
                project=self.project,
                credentials=credentials,
                location=self.location,
            )
        return self._client

    def _run_query(self, sql: str, date_range: PeriodRange) -> List[Dict[str, Any]]:
        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter('start_date', 'DATE', date_range.start),
                bigquery.ScalarQueryParameter('end_date', 'DATE', date_range.end),
            ]
        )
        query_job = self._get_client().query(sql, job_config=job_config)
        return [dict(row.items()) for row in query_job.result(timeout=self.timeout_seconds)]

    async def query_aggregates(
        self,
        table: str,
        grouping_key: str,
        name_expression: str,
        date_range: PeriodRange,
        predicate: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        sql = build_aggregate_query(table, grouping_key, name_expression, predicate)
        context = f"{grouping_key} {date_range.start.isoformat()}..{date_range.end.isoformat()}"

        try:
            rows = await asyncio.to_thread(self._run_query, sql, date_range)
        except Exception as e:
            logger.error(f"BigQuery query failed ({context}): {e}")
            raise DataSourceError(str(e), query_context=context) from e

        logger.info(f"BigQuery returned {len(rows)} rows ({context})")
        return rows


@lru_cache()
def get_warehouse() -> BigQueryWarehouse:
    """Warehouse singleton configured from settings."""
    settings = get_settings()
    return BigQueryWarehouse(
        project=settings.bigquery_project,
        location=settings.bigquery_location,
        credentials_path=settings.google_application_credentials,
        timeout_seconds=settings.query_timeout_seconds,
    )
