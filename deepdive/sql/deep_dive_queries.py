"""
SQL for the deep-dive engine.

Warehouse (BigQuery):
    build_aggregate_query() groups the daily publisher table by one
    perspective's grouping key over an inclusive date range. The range is
    bound with @start_date / @end_date query parameters; the filter predicate
    is pre-rendered by deepdive.sql.predicates.

    Output columns:
        - entity_id: grouping key cast to STRING
        - display_name: perspective name expression
        - requests = SUM(req), paid = SUM(paid), revenue = SUM(rev)
        - avg_cpm = AVG(request_CPM), the unweighted mean of daily CPM rows
        - cpm_sum, cpm_count: SUM and COUNT of request_CPM, so groups of
          entities (teams) can be re-averaged over their rows

PostgreSQL (asyncpg, $n placeholders):
    Team directory reads and the filter_presets table.
"""

from typing import Optional


# =============================================================================
# Warehouse aggregates
# =============================================================================


def build_aggregate_query(
    table: str,
    grouping_key: str,
    name_expression: str,
    predicate: Optional[str] = None,
) -> str:
    """
    Generate the per-entity aggregate query for one period.

    Args:
        table: Fully qualified BigQuery table, e.g. 'project.dataset.table'.
        grouping_key: Column to group by (pic, pid, mid, product, zid).
        name_expression: Expression producing the display name, e.g.
            'MAX(pubname)'; a bare column when the key is its own name.
        predicate: Extra boolean condition; None or '' for no filter.

    Returns:
        str: BigQuery standard SQL expecting DATE parameters @start_date and
        @end_date.

    Example:
        >>> sql = build_aggregate_query(
        ...     'gcpp-check.GI_publisher.agg_monthly_with_pic_table',
        ...     'pid', 'MAX(pubname)', "pic = 'alice'")
    """
    where_conditions = [
        "DATE >= @start_date",
        "DATE <= @end_date",
        f"{grouping_key} IS NOT NULL",
    ]
    if predicate:
        where_conditions.append(f"({predicate})")

    where_clause = "\n        AND ".join(where_conditions)

    return f"""
    SELECT
        CAST({grouping_key} AS STRING) AS entity_id,
        CAST({name_expression} AS STRING) AS display_name,
        SUM(COALESCE(req, 0)) AS requests,
        SUM(COALESCE(paid, 0)) AS paid,
        SUM(COALESCE(rev, 0)) AS revenue,
        AVG(CAST(request_CPM AS FLOAT64)) AS avg_cpm,
        SUM(CAST(request_CPM AS FLOAT64)) AS cpm_sum,
        COUNT(request_CPM) AS cpm_count
    FROM `{table}`
    WHERE {where_clause}
    GROUP BY {grouping_key}
    ORDER BY revenue DESC
    """


# =============================================================================
# Team directory
# =============================================================================

# One row per (team, pic); teams without PICs come back with pic_name NULL
SELECT_TEAM_MAPPINGS = """
    SELECT
        t.team_id,
        COALESCE(t.team_name, t.team_id) AS team_name,
        m.pic_name
    FROM team_configurations t
    LEFT JOIN team_pic_mappings m ON m.team_id = t.team_id
    ORDER BY t.team_id, m.pic_name
"""


# =============================================================================
# Filter presets
# =============================================================================

CREATE_FILTER_PRESETS_TABLE = """
    CREATE TABLE IF NOT EXISTS filter_presets (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name TEXT NOT NULL,
        description TEXT,
        page TEXT NOT NULL,
        filters JSONB NOT NULL DEFAULT '{}',
        is_default BOOLEAN DEFAULT FALSE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW(),
        CONSTRAINT unique_page_name UNIQUE (page, name),
        CONSTRAINT name_length CHECK (char_length(name) > 0 AND char_length(name) <= 100),
        CONSTRAINT valid_page CHECK (char_length(page) > 0)
    )
"""

PRESET_COLUMNS = "id::text AS id, name, description, page, filters, is_default, created_at, updated_at"

SELECT_PRESETS_BY_PAGE = f"""
    SELECT {PRESET_COLUMNS}
    FROM filter_presets
    WHERE page = $1
    ORDER BY is_default DESC, name
"""

SELECT_PRESET_BY_ID = f"""
    SELECT {PRESET_COLUMNS}
    FROM filter_presets
    WHERE id = $1::uuid
"""

CLEAR_DEFAULT_PRESET = """
    UPDATE filter_presets
    SET is_default = FALSE, updated_at = NOW()
    WHERE page = $1 AND is_default = TRUE
"""

INSERT_PRESET = f"""
    INSERT INTO filter_presets (name, description, page, filters, is_default)
    VALUES ($1, $2, $3, $4::jsonb, $5)
    RETURNING {PRESET_COLUMNS}
"""

DELETE_PRESET = """
    DELETE FROM filter_presets
    WHERE id = $1::uuid
"""

SELECT_PRESET_FOR_UPDATE = f"""
    SELECT {PRESET_COLUMNS}
    FROM filter_presets
    WHERE id = $1::uuid
    FOR UPDATE
"""

CLEAR_OTHER_DEFAULT_PRESETS = """
    UPDATE filter_presets
    SET is_default = FALSE, updated_at = NOW()
    WHERE page = $1 AND is_default = TRUE AND id <> $2::uuid
"""

UPDATE_PRESET = f"""
    UPDATE filter_presets
    SET name = $2,
        description = $3,
        filters = $4::jsonb,
        is_default = $5,
        updated_at = NOW()
    WHERE id = $1::uuid
    RETURNING {PRESET_COLUMNS}
"""
