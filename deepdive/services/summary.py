"""
Comparison summary.

Totals per period with change percentages (0 when the baseline is 0),
portfolio eCPM from the totals (revenue / requests * 1000), and record
counts and period-2 revenue per display tier (A, B, C, NEW, LOST).
"""

from typing import List

import pandas as pd

from deepdive.models.enums import DisplayTier
from deepdive.models.schemas import ComparisonRecord, ComparisonSummary


def _change_pct(v1: float, v2: float) -> float:
    return float((v2 - v1) / v1 * 100) if v1 > 0 else 0.0


def calculate_summary(records: List[ComparisonRecord]) -> ComparisonSummary:
    """Summarise classified records; untiered records only count in totals."""
    tiers = [tier.value for tier in DisplayTier]

    frame = pd.DataFrame(
        [{
            'display_tier': r.display_tier.value if r.display_tier else None,
            'revenue_p1': r.revenue_p1,
            'revenue_p2': r.revenue_p2,
            'requests_p1': r.requests_p1,
            'requests_p2': r.requests_p2,
        } for r in records],
        columns=['display_tier', 'revenue_p1', 'revenue_p2', 'requests_p1', 'requests_p2'],
    )

    revenue_p1 = float(frame['revenue_p1'].sum())
    revenue_p2 = float(frame['revenue_p2'].sum())
    requests_p1 = int(frame['requests_p1'].sum())
    requests_p2 = int(frame['requests_p2'].sum())

    ecpm_p1 = revenue_p1 / requests_p1 * 1000 if requests_p1 > 0 else 0.0
    ecpm_p2 = revenue_p2 / requests_p2 * 1000 if requests_p2 > 0 else 0.0

    by_tier = frame.groupby('display_tier')
    counts = by_tier.size().reindex(tiers, fill_value=0)
    revenue = by_tier['revenue_p2'].sum().reindex(tiers, fill_value=0.0)

    return ComparisonSummary(
        total_items=len(records),
        total_revenue_p1=revenue_p1,
        total_revenue_p2=revenue_p2,
        revenue_change_pct=_change_pct(revenue_p1, revenue_p2),
        total_requests_p1=requests_p1,
        total_requests_p2=requests_p2,
        requests_change_pct=_change_pct(requests_p1, requests_p2),
        total_ecpm_p1=ecpm_p1,
        total_ecpm_p2=ecpm_p2,
        ecpm_change_pct=_change_pct(ecpm_p1, ecpm_p2),
        tier_counts={tier: int(counts[tier]) for tier in tiers},
        tier_revenue={tier: float(revenue[tier]) for tier in tiers},
    )
