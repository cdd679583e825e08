"""
Comparison Merger.

Full outer join of period-1 (baseline) and period-2 (current) aggregates on
entity_id, producing one ComparisonRecord per entity:

    both periods  -> existing
    period 2 only -> new
    period 1 only -> lost

Lifecycle follows row presence, not revenue: an entity with a zero-revenue
row in a period is still present in that period.

Deltas are percentage changes (v2 - v1) / v1 * 100. A zero baseline with a
positive current value is a "new spike" and is reported as NEW_SPIKE (None);
both zero is 0.0. Missing period values count as zero. Fill rate is
paid / requests (zero without requests). inf and nan never leave this module.

Output ordering is by entity_id; the tier classifier sorts downstream.
"""

import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from deepdive.models.enums import LifecycleStatus
from deepdive.models.schemas import ComparisonRecord, EntityAggregate, MetricDeltas

logger = logging.getLogger(__name__)

# Sentinel for a change from a zero baseline to a positive value
NEW_SPIKE = None

_STATUS_BY_INDICATOR: Dict[str, LifecycleStatus] = {
    'both': LifecycleStatus.EXISTING,
    'right_only': LifecycleStatus.NEW,
    'left_only': LifecycleStatus.LOST,
}


def pct_change(v1: float, v2: float) -> Optional[float]:
    """Percentage change from v1 to v2 with the zero-baseline rules."""
    if v1 != 0:
        return float((v2 - v1) / v1 * 100)
    if v2 > 0:
        return NEW_SPIKE
    return 0.0


def pct_change_series(v1: pd.Series, v2: pd.Series) -> List[Optional[float]]:
    """Element-wise pct_change over aligned series."""
    base = v1.to_numpy(dtype=float)
    current = v2.to_numpy(dtype=float)
    return [pct_change(a, b) for a, b in zip(base, current)]


def _fill_rate(paid: pd.Series, requests: pd.Series) -> pd.Series:
    req = requests.to_numpy(dtype=float)
    rate = np.divide(paid.to_numpy(dtype=float), req, out=np.zeros_like(req), where=req > 0)
    return pd.Series(rate, index=paid.index)


def _to_frame(aggregates: List[EntityAggregate]) -> pd.DataFrame:
    frame = pd.DataFrame(
        [a.model_dump() for a in aggregates],
        columns=['entity_id', 'display_name', 'requests', 'paid', 'revenue', 'avg_cpm'],
    )
    duplicated = frame['entity_id'].duplicated(keep='last')
    if duplicated.any():
        logger.warning(f"Dropping {int(duplicated.sum())} duplicate entity rows before merge")
        frame = frame[~duplicated]
    return frame


def merge_periods(
    period1: List[EntityAggregate],
    period2: List[EntityAggregate],
) -> List[ComparisonRecord]:
    """
    Outer-join two periods of aggregates into comparison records.

    Args:
        period1: Baseline aggregates.
        period2: Current aggregates.

    Returns:
        List[ComparisonRecord]: One record per entity, untiered.
    """
    by_id_p1 = {a.entity_id: a for a in period1}
    by_id_p2 = {a.entity_id: a for a in period2}

    merged = pd.merge(
        _to_frame(period1),
        _to_frame(period2),
        on='entity_id',
        how='outer',
        suffixes=('_p1', '_p2'),
        indicator='presence',
    ).sort_values('entity_id', kind='mergesort').reset_index(drop=True)

    if merged.empty:
        return []

    values = {}
    for column in ('requests', 'paid', 'revenue', 'avg_cpm'):
        for suffix in ('_p1', '_p2'):
            values[column + suffix] = pd.to_numeric(merged[column + suffix], errors='coerce').fillna(0)

    revenue_pct = pct_change_series(values['revenue_p1'], values['revenue_p2'])
    requests_pct = pct_change_series(values['requests_p1'], values['requests_p2'])
    cpm_pct = pct_change_series(values['avg_cpm_p1'], values['avg_cpm_p2'])
    fill_rate_pct = pct_change_series(
        _fill_rate(values['paid_p1'], values['requests_p1']),
        _fill_rate(values['paid_p2'], values['requests_p2']),
    )

    records = []
    for i, row in enumerate(merged.itertuples(index=False)):
        entity_id = row.entity_id
        status = _STATUS_BY_INDICATOR[str(row.presence)]
        p1 = by_id_p1.get(entity_id) if status != LifecycleStatus.NEW else None
        p2 = by_id_p2.get(entity_id) if status != LifecycleStatus.LOST else None

        name = (p2.display_name if p2 else '') or (p1.display_name if p1 else '') or entity_id

        records.append(ComparisonRecord(
            entity_id=entity_id,
            display_name=name,
            period1=p1,
            period2=p2,
            lifecycle_status=status,
            deltas=MetricDeltas(
                revenue_pct=revenue_pct[i],
                requests_pct=requests_pct[i],
                cpm_pct=cpm_pct[i],
                fill_rate_pct=fill_rate_pct[i],
            ),
        ))

    logger.debug(
        f"Merged {len(period1)} baseline and {len(period2)} current aggregates "
        f"into {len(records)} records"
    )
    return records
