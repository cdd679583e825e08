"""
Error taxonomy for the deep-dive engine.

- DataSourceError: the warehouse query failed or timed out. Carries the
  upstream diagnostic message. Never retried by the engine.
- InvariantViolation: a programming or configuration error such as a
  drill-down against a leaf perspective, an unknown grouping key in a filter
  map or an inverted period range. Raised immediately, never coerced.

Empty datasets and zero baselines are not errors and have no exception type.
"""

from typing import Optional


class DeepDiveError(Exception):
    """Base class for engine errors."""


class DataSourceError(DeepDiveError):
    """
    Warehouse query failure.

    Attributes:
        message: Original diagnostic from the data source.
        query_context: Short description of the query that failed
            (perspective and period), used in logs and API responses.
    """

    def __init__(self, message: str, query_context: Optional[str] = None):
        self.message = message
        self.query_context = query_context
        super().__init__(message)

    def __str__(self) -> str:
        if self.query_context:
            return f"{self.query_context}: {self.message}"
        return self.message


class InvariantViolation(DeepDiveError):
    """Invalid transition, filter, or configuration."""
