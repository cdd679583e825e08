"""
Filter predicate and warehouse SQL tests.
"""

import pytest

from deepdive.core.exceptions import InvariantViolation
from deepdive.models.enums import ClauseLogic, FieldDataType, FilterOperator, IncludeExclude
from deepdive.models.schemas import DimensionFilters, FilterClause, SimplifiedFilter
from deepdive.sql.deep_dive_queries import build_aggregate_query
from deepdive.sql.predicates import (
    MATCH_NOTHING,
    build_clause_condition,
    build_dimension_conditions,
    build_predicate,
    build_simple_condition,
    build_team_condition,
    escape_sql_value,
)

TABLE = 'project.dataset.publisher_daily'
TEAM_PICS = {'T1': ['bob', 'alice'], 'T2': ['carol'], 'T3': []}


class TestEscaping:

    def test_string_quotes_are_escaped(self):
        assert escape_sql_value("O'Brien", FieldDataType.STRING) == "'O\\'Brien'"

    def test_trailing_backslash_cannot_close_literal(self):
        assert escape_sql_value('a\\', FieldDataType.STRING) == "'a\\\\'"
        assert build_dimension_conditions(DimensionFilters(pic=['a\\', "') OR 1=1 --"])) == [
            "pic IN ('\\') OR 1=1 --', 'a\\\\')"
        ]

    def test_numbers_render_bare(self):
        assert escape_sql_value('42', FieldDataType.NUMBER) == '42'
        assert escape_sql_value(2.5, FieldDataType.NUMBER) == '2.5'

    @pytest.mark.parametrize('value', ['abc', 'nan', 'inf', "1; DROP TABLE x"])
    def test_invalid_numbers_are_rejected(self, value):
        with pytest.raises(InvariantViolation):
            escape_sql_value(value, FieldDataType.NUMBER)

    def test_null_and_boolean(self):
        assert escape_sql_value(None, FieldDataType.STRING) == 'NULL'
        assert escape_sql_value('yes', FieldDataType.BOOLEAN) == 'TRUE'
        assert escape_sql_value(0, FieldDataType.BOOLEAN) == 'FALSE'


class TestDimensionConditions:

    def test_scalar_and_list(self):
        filters = DimensionFilters(pic='alice', pid=['20', '3', '20'])

        assert build_dimension_conditions(filters) == ["pic = 'alice'", 'pid IN (3, 20)']

    def test_team_expands_to_pics(self):
        assert build_team_condition(['T1'], TEAM_PICS) == "pic IN ('alice', 'bob')"

    def test_several_teams_are_or_ed(self):
        condition = build_team_condition(['T1', 'T2'], TEAM_PICS)
        assert condition == "(pic IN ('alice', 'bob') OR pic IN ('carol'))"

    def test_team_without_pics_matches_nothing(self):
        assert build_team_condition(['T3'], TEAM_PICS) == MATCH_NOTHING
        assert build_team_condition(['unknown'], TEAM_PICS) == MATCH_NOTHING

    def test_team_filter_needs_directory(self):
        with pytest.raises(InvariantViolation):
            build_dimension_conditions(DimensionFilters(team='T1'))

    def test_deterministic_output(self):
        a = build_predicate(DimensionFilters(zid=['9', '1'], pic='x'))
        b = build_predicate(DimensionFilters(pic='x', zid=['1', '9']))
        assert a == b == "pic = 'x' AND zid IN (1, 9)"


class TestSimpleConditions:

    @pytest.mark.parametrize('operator,value,expected', [
        (FilterOperator.EQUALS, 'video', "product = 'video'"),
        (FilterOperator.NOT_EQUALS, 'video', "product != 'video'"),
        (FilterOperator.IN, ['a', 'b'], "product IN ('a', 'b')"),
        (FilterOperator.NOT_IN, ['a'], "product NOT IN ('a')"),
        (FilterOperator.CONTAINS, 'vid', "product LIKE '%vid%'"),
        (FilterOperator.STARTS_WITH, 'vid', "product LIKE 'vid%'"),
        (FilterOperator.ENDS_WITH, 'eo', "product LIKE '%eo'"),
        (FilterOperator.IS_NULL, None, 'product IS NULL'),
        (FilterOperator.IS_NOT_NULL, None, 'product IS NOT NULL'),
        (FilterOperator.REGEX_MATCH, "^v.*o'", "REGEXP_CONTAINS(product, '^v.*o\\'')"),
        (FilterOperator.REGEX_MATCH, '\\d+$', "REGEXP_CONTAINS(product, '\\\\d+$')"),
    ])
    def test_string_operators(self, operator, value, expected):
        assert build_simple_condition('product', operator, value, FieldDataType.STRING) == expected

    @pytest.mark.parametrize('operator,expected', [
        (FilterOperator.CONTAINS, "pubname LIKE '%100\\\\%\\\\_off%'"),
        (FilterOperator.STARTS_WITH, "pubname LIKE '100\\\\%\\\\_off%'"),
        (FilterOperator.ENDS_WITH, "pubname LIKE '%100\\\\%\\\\_off'"),
    ])
    def test_like_wildcards_in_value_match_literally(self, operator, expected):
        assert build_simple_condition('pubname', operator, '100%_off', FieldDataType.STRING) == expected

    def test_unknown_field_is_rejected(self):
        with pytest.raises(InvariantViolation, match='Unknown filter field'):
            build_simple_condition('1=1 OR pic', FilterOperator.EQUALS, 'x', FieldDataType.STRING)

    def test_comparisons_and_between(self):
        assert build_simple_condition('pid', FilterOperator.GREATER_THAN, '10', FieldDataType.NUMBER) == 'pid > 10'
        assert build_simple_condition('pid', FilterOperator.LESS_THAN_OR_EQUAL, 5, FieldDataType.NUMBER) == 'pid <= 5'
        assert (
            build_simple_condition('pid', FilterOperator.BETWEEN, [1, 9], FieldDataType.NUMBER)
            == 'pid BETWEEN 1 AND 9'
        )

    def test_between_needs_two_values(self):
        with pytest.raises(InvariantViolation):
            build_simple_condition('pid', FilterOperator.BETWEEN, [1], FieldDataType.NUMBER)

    def test_empty_in_list_constrains_nothing(self):
        assert build_simple_condition('pid', FilterOperator.IN, [], FieldDataType.NUMBER) is None


class TestClauses:

    def test_entity_has(self):
        clause = FilterClause(
            field='zid',
            operator=FilterOperator.HAS,
            attribute_field='product',
            condition=FilterOperator.EQUALS,
            value='video',
        )
        assert build_clause_condition(clause, TABLE) == (
            f"zid IN (SELECT DISTINCT zid FROM `{TABLE}` WHERE product = 'video')"
        )

    def test_entity_has_all(self):
        clause = FilterClause(
            field='pid',
            operator=FilterOperator.HAS_ALL,
            attribute_field='product',
            value=['video', 'banner'],
        )
        condition = build_clause_condition(clause, TABLE)

        assert "product IN ('video', 'banner')" in condition
        assert 'HAVING COUNT(DISTINCT product) = 2' in condition

    def test_entity_has_any_and_only_has_need_no_condition(self):
        has_any = FilterClause(
            field='zid', operator=FilterOperator.HAS_ANY, attribute_field='product', value=['video'],
        )
        only_has = FilterClause(
            field='zid', operator=FilterOperator.ONLY_HAS, attribute_field='product', value=['video'],
        )

        assert build_clause_condition(has_any, TABLE) == (
            f"zid IN (SELECT DISTINCT zid FROM `{TABLE}` WHERE product IN ('video'))"
        )
        assert 'HAVING COUNT(DISTINCT product) = 1' in build_clause_condition(only_has, TABLE)

    def test_entity_operator_needs_attribute(self):
        clause = FilterClause(field='zid', operator=FilterOperator.HAS, value='video')
        with pytest.raises(InvariantViolation):
            build_clause_condition(clause, TABLE)

    def test_entity_has_needs_condition(self):
        clause = FilterClause(
            field='zid', operator=FilterOperator.HAS, attribute_field='product', value='video',
        )
        with pytest.raises(InvariantViolation, match='requires a condition'):
            build_clause_condition(clause, TABLE)

    def test_field_expression_is_rejected(self):
        simplified = SimplifiedFilter(clauses=[
            FilterClause(field='1=1 OR pic', operator=FilterOperator.EQUALS, value='x'),
        ])
        with pytest.raises(InvariantViolation, match='Unknown filter field'):
            build_predicate(DimensionFilters(pic='alice'), simplified, None, TABLE)

    @pytest.mark.parametrize('field,attribute', [
        ('zid) OR (1=1', 'product'),
        ('zid', 'product) OR (1=1'),
    ])
    def test_entity_fields_are_validated(self, field, attribute):
        clause = FilterClause(
            field=field, operator=FilterOperator.HAS_ANY, attribute_field=attribute, value=['video'],
        )
        with pytest.raises(InvariantViolation, match='Unknown filter field'):
            build_clause_condition(clause, TABLE)

    def test_column_type_overrides_client_data_type(self):
        numeric = FilterClause(field='pid', data_type=FieldDataType.STRING,
                               operator=FilterOperator.EQUALS, value='7')
        injected = FilterClause(field='pid', data_type=FieldDataType.STRING,
                                operator=FilterOperator.EQUALS, value='7 OR 1=1')

        assert build_clause_condition(numeric, TABLE) == 'pid = 7'
        with pytest.raises(InvariantViolation):
            build_clause_condition(injected, TABLE)

    def test_disabled_clause_is_skipped(self):
        clause = FilterClause(field='pic', operator=FilterOperator.EQUALS, value='x', enabled=False)
        assert build_clause_condition(clause, TABLE) is None

    def test_team_clause_uses_directory(self):
        clause = FilterClause(field='team', operator=FilterOperator.IN, value=['T2'])
        assert build_clause_condition(clause, TABLE, TEAM_PICS) == "pic IN ('carol')"

    def test_exclude_or(self):
        simplified = SimplifiedFilter(
            include_exclude=IncludeExclude.EXCLUDE,
            clause_logic=ClauseLogic.OR,
            clauses=[
                FilterClause(field='pic', operator=FilterOperator.EQUALS, value='a'),
                FilterClause(field='pid', data_type=FieldDataType.NUMBER,
                             operator=FilterOperator.EQUALS, value='7'),
            ],
        )
        assert build_predicate(simplified_filter=simplified, table=TABLE) == "NOT (pic = 'a' OR pid = 7)"

    def test_simplified_and_dimension_filters_combine(self):
        simplified = SimplifiedFilter(
            clauses=[FilterClause(field='product', operator=FilterOperator.EQUALS, value='video')],
        )
        predicate = build_predicate(DimensionFilters(pid='1'), simplified, table=TABLE)
        assert predicate == "(product = 'video') AND pid = 1"

    def test_nothing_to_filter(self):
        assert build_predicate() == ''
        assert build_predicate(DimensionFilters(), SimplifiedFilter()) == ''


class TestAggregateQuery:

    def test_query_shape(self):
        sql = build_aggregate_query(TABLE, 'pid', 'MAX(pubname)', "pic = 'alice'")

        assert f"FROM `{TABLE}`" in sql
        assert 'CAST(pid AS STRING) AS entity_id' in sql
        assert 'CAST(MAX(pubname) AS STRING) AS display_name' in sql
        assert 'DATE >= @start_date' in sql
        assert 'DATE <= @end_date' in sql
        assert "(pic = 'alice')" in sql
        assert 'GROUP BY pid' in sql

    def test_no_predicate(self):
        sql = build_aggregate_query(TABLE, 'zid', 'MAX(zonename)')
        assert 'AND (' not in sql
