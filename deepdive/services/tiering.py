"""
Tier Classifier (Pareto ABC).

Records are split into two ranking groups:

- existing + new, ranked by period-2 (current) revenue
- lost, ranked by period-1 (baseline) revenue

Within a group entities are sorted by revenue descending, ties by entity_id
ascending. The cumulative revenue share is taken AFTER including the entity,
so the entity that completes 80% is the last of tier A:

    share <= 0.80        -> A
    0.80 < share <= 0.95 -> B
    share > 0.95         -> C

When exactly one entity of a group has positive revenue, that entity is A
although its share is 100%. Otherwise rank 1 follows the share rule like
every other entity, so a leader holding 90% of revenue is B. A group whose
total revenue is zero is entirely C. New entities are tiered NEW-A/B/C, lost
entities LOST-A/B/C.

Example (800, 150, 50 -> shares 0.80, 0.95, 1.00):
    >>> [t.value for t in rank_revenue_tiers([('a', 800), ('b', 150), ('c', 50)]).values()]
    ['A', 'B', 'C']
"""

import logging
from typing import Dict, List, Sequence, Tuple

import numpy as np

from deepdive.models.enums import DisplayTier, LifecycleStatus, RevenueTier, Tier
from deepdive.models.schemas import ComparisonRecord

logger = logging.getLogger(__name__)

DEFAULT_TIER_A_THRESHOLD = 0.80
DEFAULT_TIER_B_THRESHOLD = 0.95

# Tolerance on revenue sums so exact boundaries stay inclusive
_EPSILON = 1e-9


def rank_revenue_tiers(
    items: Sequence[Tuple[str, float]],
    tier_a_threshold: float = DEFAULT_TIER_A_THRESHOLD,
    tier_b_threshold: float = DEFAULT_TIER_B_THRESHOLD,
) -> Dict[str, RevenueTier]:
    """
    Assign A/B/C to (entity_id, revenue) pairs of one ranking group.

    Returns:
        Dict[str, RevenueTier]: entity_id -> tier, in rank order.
    """
    return {
        entity_id: tier
        for entity_id, tier, _ in rank_with_shares(items, tier_a_threshold, tier_b_threshold)
    }


def rank_with_shares(
    items: Sequence[Tuple[str, float]],
    tier_a_threshold: float = DEFAULT_TIER_A_THRESHOLD,
    tier_b_threshold: float = DEFAULT_TIER_B_THRESHOLD,
) -> List[Tuple[str, RevenueTier, float]]:
    """Ranked (entity_id, tier, cumulative share) triples."""
    if not items:
        return []

    ordered = sorted(items, key=lambda item: (-item[1], str(item[0])))
    revenues = np.array([max(float(revenue), 0.0) for _, revenue in ordered])
    total = float(revenues.sum())

    if total <= 0:
        return [(entity_id, RevenueTier.C, 0.0) for entity_id, _ in ordered]

    cumulative = np.cumsum(revenues)
    sole_earner = int(np.count_nonzero(revenues > 0)) == 1
    a_limit = tier_a_threshold * total + _EPSILON
    b_limit = tier_b_threshold * total + _EPSILON

    ranked = []
    for rank, (entity_id, _) in enumerate(ordered):
        running = float(cumulative[rank])
        if (rank == 0 and sole_earner) or running <= a_limit:
            tier = RevenueTier.A
        elif running <= b_limit:
            tier = RevenueTier.B
        else:
            tier = RevenueTier.C
        ranked.append((entity_id, tier, min(running / total, 1.0)))
    return ranked


def _ranking_revenue(record: ComparisonRecord) -> float:
    if record.lifecycle_status == LifecycleStatus.LOST:
        return record.revenue_p1
    return record.revenue_p2


def _display_tier(status: LifecycleStatus, rank: RevenueTier) -> DisplayTier:
    if status == LifecycleStatus.NEW:
        return DisplayTier.NEW
    if status == LifecycleStatus.LOST:
        return DisplayTier.LOST
    return DisplayTier(rank.value)


def classify(
    records: List[ComparisonRecord],
    tier_a_threshold: float = DEFAULT_TIER_A_THRESHOLD,
    tier_b_threshold: float = DEFAULT_TIER_B_THRESHOLD,
) -> List[ComparisonRecord]:
    """
    Annotate every record with its tier.

    Returns new record objects ordered by group (existing+new first, then
    lost) and by rank inside each group. Empty groups produce nothing.
    """
    current = [r for r in records if r.lifecycle_status != LifecycleStatus.LOST]
    lost = [r for r in records if r.lifecycle_status == LifecycleStatus.LOST]

    classified: List[ComparisonRecord] = []
    for group in (current, lost):
        by_id = {r.entity_id: r for r in group}
        ranked = rank_with_shares(
            [(r.entity_id, _ranking_revenue(r)) for r in group],
            tier_a_threshold,
            tier_b_threshold,
        )
        for entity_id, rank, share in ranked:
            record = by_id[entity_id]
            classified.append(record.model_copy(update={
                'tier': Tier.for_status(record.lifecycle_status, rank),
                'revenue_tier': rank,
                'display_tier': _display_tier(record.lifecycle_status, rank),
                'cumulative_revenue_pct': round(share * 100, 4),
            }))

    logger.debug(f"Classified {len(current)} current and {len(lost)} lost records")
    return classified
