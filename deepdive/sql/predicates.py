"""
Filter predicate builder for warehouse queries.

Turns structured filters into a BigQuery boolean expression that is appended
to the aggregate query's WHERE clause. Two inputs are combined with AND:

- Dimension filters (DimensionFilters): `field = v` for a single id and
  `field IN (...)` for a multi-select. A `team` filter is expanded into the
  team's PICs, since the warehouse table has no team column.
- Simplified filter (Looker Studio-style): a flat list of clauses joined by
  AND or OR, wrapped in `(...)` for INCLUDE or `NOT (...)` for EXCLUDE.

Direct operators compare a column with a value. Entity operators (has,
does_not_have, only_has, has_all, has_any) select the entities whose rows
carry an attribute, through a sub-select over the same table:

    zid has product equals 'video'
    -> zid IN (SELECT DISTINCT zid FROM `table` WHERE product = 'video')

Only columns listed in FIELD_DATA_TYPES may appear in a predicate, and the
value type always comes from that map. Strings are quoted with backslashes
and single quotes backslash-escaped (BigQuery string literal rules); numbers
are parsed and rendered bare. Output is deterministic: equal filters always
produce the same predicate text.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from deepdive.core.exceptions import InvariantViolation
from deepdive.models.enums import (
    ClauseLogic,
    FieldDataType,
    FilterOperator,
    IncludeExclude,
)
from deepdive.models.schemas import DimensionFilters, FilterClause, SimplifiedFilter

logger = logging.getLogger(__name__)


# Column types of the publisher warehouse table
FIELD_DATA_TYPES: Dict[str, FieldDataType] = {
    'pid': FieldDataType.NUMBER,
    'mid': FieldDataType.NUMBER,
    'zid': FieldDataType.NUMBER,
    'month': FieldDataType.NUMBER,
    'year': FieldDataType.NUMBER,
    'team': FieldDataType.STRING,
    'pic': FieldDataType.STRING,
    'product': FieldDataType.STRING,
    'h5': FieldDataType.STRING,
    'pubname': FieldDataType.STRING,
    'medianame': FieldDataType.STRING,
    'zonename': FieldDataType.STRING,
    'revenue_tier': FieldDataType.STRING,
    'rev_flag': FieldDataType.STRING,
    'daterange': FieldDataType.DATE,
}

# Matches nothing; used for a team without assigned PICs
MATCH_NOTHING = '1=0'


# =============================================================================
# Value escaping
# =============================================================================


def escape_sql_value(value: Any, data_type: FieldDataType) -> str:
    """
    Render a literal for the given column type.

    Raises:
        InvariantViolation: If a number column receives a non-numeric value.
    """
    if value is None:
        return 'NULL'

    if data_type == FieldDataType.NUMBER:
        try:
            num = float(value)
        except (TypeError, ValueError):
            raise InvariantViolation(f"Invalid number value: {value!r}")
        if math.isnan(num) or math.isinf(num):
            raise InvariantViolation(f"Invalid number value: {value!r}")
        return str(int(num)) if num.is_integer() else repr(num)

    if data_type == FieldDataType.BOOLEAN:
        if isinstance(value, str):
            return 'TRUE' if value.strip().lower() in ('true', '1', 'yes') else 'FALSE'
        return 'TRUE' if value else 'FALSE'

    # string and date
    escaped = str(value).replace('\\', '\\\\').replace("'", "\\'")
    return f"'{escaped}'"


def escape_like_pattern(value: Any) -> str:
    """Escape LIKE wildcards so the value matches literally."""
    return str(value).replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def field_data_type(field: str) -> FieldDataType:
    """
    Type of a warehouse column.

    Raises:
        InvariantViolation: If the column is not a known warehouse column.
    """
    data_type = FIELD_DATA_TYPES.get(field)
    if data_type is None:
        logger.warning(f"Rejected filter on unknown field {field!r}")
        raise InvariantViolation(f"Unknown filter field: {field!r}")
    return data_type


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _value_list(values: Sequence[Any], data_type: FieldDataType) -> str:
    return ', '.join(escape_sql_value(v, data_type) for v in values)


# =============================================================================
# Dimension filters
# =============================================================================


def build_team_condition(
    team_ids: Sequence[str],
    team_pics: Optional[Dict[str, List[str]]],
) -> str:
    """
    Expand team ids into a PIC condition.

    One team renders `pic IN (...)`; several teams are OR-ed together. A team
    without PICs matches nothing.

    Raises:
        InvariantViolation: If no team directory is available.
    """
    if team_pics is None:
        raise InvariantViolation("team filter requires a team directory")

    conditions = []
    for team_id in team_ids:
        pics = sorted(team_pics.get(str(team_id), []))
        if not pics:
            conditions.append(MATCH_NOTHING)
        else:
            conditions.append(f"pic IN ({_value_list(pics, FieldDataType.STRING)})")

    if len(conditions) == 1:
        return conditions[0]
    return '(' + ' OR '.join(conditions) + ')'


def build_dimension_conditions(
    filters: DimensionFilters,
    team_pics: Optional[Dict[str, List[str]]] = None,
) -> List[str]:
    """One condition per set dimension filter, in key order."""
    conditions: List[str] = []

    for field, value in sorted(filters.as_dict().items()):
        if field == 'team':
            team_ids = sorted(set(_as_list(value)))
            conditions.append(build_team_condition(team_ids, team_pics))
            continue

        data_type = field_data_type(field)
        if isinstance(value, list):
            literals = {escape_sql_value(v, data_type) for v in value}
            if data_type == FieldDataType.NUMBER:
                ordered = sorted(literals, key=float)
            else:
                ordered = sorted(literals)
            conditions.append(f"{field} IN ({', '.join(ordered)})")
        else:
            conditions.append(f"{field} = {escape_sql_value(value, data_type)}")

    return conditions


# =============================================================================
# Simplified filter clauses
# =============================================================================


def build_simple_condition(
    field: str,
    operator: FilterOperator,
    value: Any,
    data_type: FieldDataType,
) -> Optional[str]:
    """
    Render a direct operator.

    Returns None for a clause that constrains nothing (an empty IN list).

    Raises:
        InvariantViolation: For an unknown field, malformed values or an
            entity operator.
    """
    field_data_type(field)

    if operator == FilterOperator.EQUALS:
        return f"{field} = {escape_sql_value(value, data_type)}"

    if operator == FilterOperator.NOT_EQUALS:
        return f"{field} != {escape_sql_value(value, data_type)}"

    if operator in (FilterOperator.IN, FilterOperator.NOT_IN):
        values = _as_list(value)
        if not values:
            return None
        keyword = 'IN' if operator == FilterOperator.IN else 'NOT IN'
        return f"{field} {keyword} ({_value_list(values, data_type)})"

    comparisons = {
        FilterOperator.GREATER_THAN: '>',
        FilterOperator.GREATER_THAN_OR_EQUAL: '>=',
        FilterOperator.LESS_THAN: '<',
        FilterOperator.LESS_THAN_OR_EQUAL: '<=',
    }
    if operator in comparisons:
        return f"{field} {comparisons[operator]} {escape_sql_value(value, data_type)}"

    if operator == FilterOperator.BETWEEN:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise InvariantViolation("between operator requires a list of 2 values")
        low, high = value
        return (
            f"{field} BETWEEN {escape_sql_value(low, data_type)} "
            f"AND {escape_sql_value(high, data_type)}"
        )

    like_patterns = {
        FilterOperator.CONTAINS: '%{}%',
        FilterOperator.STARTS_WITH: '{}%',
        FilterOperator.ENDS_WITH: '%{}',
    }
    if operator in like_patterns:
        pattern = like_patterns[operator].format(escape_like_pattern(value))
        return f"{field} LIKE {escape_sql_value(pattern, FieldDataType.STRING)}"

    if operator == FilterOperator.REGEX_MATCH:
        return f"REGEXP_CONTAINS({field}, {escape_sql_value(value, FieldDataType.STRING)})"

    if operator == FilterOperator.IS_NULL:
        return f"{field} IS NULL"

    if operator == FilterOperator.IS_NOT_NULL:
        return f"{field} IS NOT NULL"

    raise InvariantViolation(f"operator {operator.value} is not a direct operator")


def build_entity_condition(clause: FilterClause, table: str) -> Optional[str]:
    """
    Render an entity operator as a sub-select over the warehouse table.

    has and does_not_have apply `condition` to the attribute; only_has,
    has_all and has_any match the attribute against the value list.

    Raises:
        InvariantViolation: If the clause lacks attribute_field, has/
            does_not_have lacks condition, or a field is unknown.
    """
    field = clause.field
    attribute = clause.attribute_field
    if not attribute:
        raise InvariantViolation(
            f"entity operator {clause.operator.value} requires attribute_field"
        )
    field_data_type(field)
    attribute_type = field_data_type(attribute)
    source = f"`{table}`"

    if clause.operator in (FilterOperator.HAS, FilterOperator.DOES_NOT_HAVE):
        if clause.condition is None:
            raise InvariantViolation(
                f"entity operator {clause.operator.value} requires a condition"
            )
        condition = build_simple_condition(attribute, clause.condition, clause.value, attribute_type)
        if condition is None:
            return None
        keyword = 'IN' if clause.operator == FilterOperator.HAS else 'NOT IN'
        return f"{field} {keyword} (SELECT DISTINCT {field} FROM {source} WHERE {condition})"

    values = _as_list(clause.value)
    if not values:
        return None
    value_list = _value_list(values, attribute_type)

    if clause.operator == FilterOperator.ONLY_HAS:
        return (
            f"{field} IN (SELECT {field} FROM {source} "
            f"WHERE {attribute} IS NOT NULL "
            f"GROUP BY {field} "
            f"HAVING COUNT(DISTINCT {attribute}) = {len(values)} "
            f"AND SUM(CASE WHEN {attribute} IN ({value_list}) THEN 1 ELSE 0 END) "
            f"= COUNT(DISTINCT {attribute}))"
        )

    if clause.operator == FilterOperator.HAS_ALL:
        return (
            f"{field} IN (SELECT {field} FROM {source} "
            f"WHERE {attribute} IN ({value_list}) "
            f"GROUP BY {field} "
            f"HAVING COUNT(DISTINCT {attribute}) = {len(values)})"
        )

    # has_any
    return f"{field} IN (SELECT DISTINCT {field} FROM {source} WHERE {attribute} IN ({value_list}))"


def build_clause_condition(
    clause: FilterClause,
    table: str,
    team_pics: Optional[Dict[str, List[str]]] = None,
) -> Optional[str]:
    """Render one clause, or None when it is disabled or empty."""
    if not clause.enabled:
        return None

    if clause.operator.is_entity_operator:
        return build_entity_condition(clause, table)

    if clause.field == 'team' and clause.operator in (FilterOperator.EQUALS, FilterOperator.IN):
        team_ids = [str(v) for v in _as_list(clause.value)]
        if not team_ids:
            return None
        return build_team_condition(team_ids, team_pics)

    return build_simple_condition(
        clause.field, clause.operator, clause.value, field_data_type(clause.field)
    )


def build_simplified_condition(
    simplified_filter: SimplifiedFilter,
    table: str,
    team_pics: Optional[Dict[str, List[str]]] = None,
) -> str:
    """Combine the clauses of a simplified filter; empty string when none apply."""
    conditions = []
    for clause in simplified_filter.clauses:
        condition = build_clause_condition(clause, table, team_pics)
        if condition:
            conditions.append(condition)

    if not conditions:
        return ''

    logic = ClauseLogic(simplified_filter.clause_logic).value
    combined = f" {logic} ".join(conditions)
    if simplified_filter.include_exclude == IncludeExclude.EXCLUDE:
        return f"NOT ({combined})"
    return f"({combined})"


# =============================================================================
# Public entry point
# =============================================================================


def build_predicate(
    filters: Optional[DimensionFilters] = None,
    simplified_filter: Optional[SimplifiedFilter] = None,
    team_pics: Optional[Dict[str, List[str]]] = None,
    table: str = '',
) -> str:
    """
    Build the boolean expression for a warehouse query.

    Args:
        filters: Dimension filters (scope plus user selections).
        simplified_filter: Optional Looker Studio-style clause list.
        team_pics: team_id -> PIC names, needed when a team is filtered.
        table: Warehouse table referenced by entity sub-selects.

    Returns:
        str: Conditions joined by AND, or '' when nothing is filtered.

    Raises:
        InvariantViolation: For malformed values or a team filter without
            a team directory.
    """
    conditions: List[str] = []

    if simplified_filter is not None:
        simplified = build_simplified_condition(simplified_filter, table, team_pics)
        if simplified:
            conditions.append(simplified)

    if filters is not None:
        conditions.extend(build_dimension_conditions(filters, team_pics))

    return ' AND '.join(conditions)
