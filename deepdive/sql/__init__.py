"""
SQL layer for the deep-dive backend.

Submodules:
    deep_dive_queries: BigQuery per-entity aggregate query, team directory
                       and filter preset statements.
    predicates: Filter predicate builder turning dimension filters and
                simplified filters into a BigQuery boolean expression.

Example usage:
    from deepdive.sql import build_aggregate_query, build_predicate

    predicate = build_predicate(filters, simplified_filter, team_pics, table)
    sql = build_aggregate_query(table, 'pid', 'MAX(pubname)', predicate)
"""

from deepdive.sql.deep_dive_queries import (
    build_aggregate_query,
    SELECT_TEAM_MAPPINGS,
    CREATE_FILTER_PRESETS_TABLE,
    SELECT_PRESETS_BY_PAGE,
    SELECT_PRESET_BY_ID,
    CLEAR_DEFAULT_PRESET,
    INSERT_PRESET,
    DELETE_PRESET,
    SELECT_PRESET_FOR_UPDATE,
    CLEAR_OTHER_DEFAULT_PRESETS,
    UPDATE_PRESET,
)
from deepdive.sql.predicates import (
    FIELD_DATA_TYPES,
    build_predicate,
    escape_like_pattern,
    escape_sql_value,
)

__all__ = [
    'build_aggregate_query',
    'SELECT_TEAM_MAPPINGS',
    'CREATE_FILTER_PRESETS_TABLE',
    'SELECT_PRESETS_BY_PAGE',
    'SELECT_PRESET_BY_ID',
    'CLEAR_DEFAULT_PRESET',
    'INSERT_PRESET',
    'DELETE_PRESET',
    'SELECT_PRESET_FOR_UPDATE',
    'CLEAR_OTHER_DEFAULT_PRESETS',
    'UPDATE_PRESET',
    'FIELD_DATA_TYPES',
    'build_predicate',
    'escape_like_pattern',
    'escape_sql_value',
]
