"""
Actionable warnings for comparison records.

Each existing record is checked against request, eCPM and fill-rate movement
bands taken from ad-tech operating practice. Every matching rule produces a
candidate; the first candidate of the highest priority wins. New and lost
records are always healthy.

Derived metrics per period:
    - eCPM = revenue / requests * 1000
    - fill rate = paid / requests * 100 (percentage points)

Changes use a zero baseline as "no change" (0%), unlike record deltas which
report a new spike.

Priority 1 (critical):
    - requests <= -40%
    - eCPM <= -40%
    - requests <= -25% and eCPM <= -25%
    - fill rate below 50% after a drop of 15pp or more

Priority 2 (warning):
    - requests in (-40%, -25%]
    - eCPM in (-40%, -25%]
    - revenue in (-40%, -25%] explained by traffic (requests <= -15%,
      eCPM > -10%) or by eCPM (eCPM <= -15%, requests > -10%)
    - fill rate drop in (-30pp, -15pp] with fill rate still >= 50%

Priority 3 (info):
    - requests in (-25%, -15%]
    - eCPM in (-25%, -15%]
    - fill rate drop in (-15pp, -10pp]
"""

from dataclasses import dataclass
from typing import List, Optional

from deepdive.models.enums import LifecycleStatus, WarningSeverity
from deepdive.models.schemas import ActionableWarning, ComparisonRecord


CRITICAL_DROP_PCT = -40.0
WARNING_DROP_PCT = -25.0
INFO_DROP_PCT = -15.0
CAUSE_STABLE_PCT = -10.0

FILL_RATE_FLOOR = 50.0
FILL_RATE_CRITICAL_DROP_PP = -15.0
FILL_RATE_WARNING_LIMIT_PP = -30.0
FILL_RATE_INFO_DROP_PP = -10.0


@dataclass
class _Candidate:
    priority: int
    severity: WarningSeverity
    message: str
    metrics: List[str]


def _change_pct(v1: float, v2: float) -> float:
    return (v2 - v1) / v1 * 100 if v1 > 0 else 0.0


def _ecpm(revenue: float, requests: float) -> float:
    return revenue / requests * 1000 if requests > 0 else 0.0


def _fill_rate_pct(paid: float, requests: float) -> float:
    return paid / requests * 100 if requests > 0 else 0.0


def evaluate_warning(record: ComparisonRecord) -> ActionableWarning:
    """Highest-priority warning for one record, or healthy."""
    if record.lifecycle_status != LifecycleStatus.EXISTING:
        return ActionableWarning()

    req_p1, req_p2 = record.requests_p1, record.requests_p2
    rev_p1, rev_p2 = record.revenue_p1, record.revenue_p2

    req_change = _change_pct(req_p1, req_p2)
    rev_change = _change_pct(rev_p1, rev_p2)
    ecpm_change = _change_pct(_ecpm(rev_p1, req_p1), _ecpm(rev_p2, req_p2))

    fill_p1 = _fill_rate_pct(record.paid_p1, req_p1)
    fill_p2 = _fill_rate_pct(record.paid_p2, req_p2)
    fill_change = fill_p2 - fill_p1

    candidates: List[_Candidate] = []

    def add(priority: int, severity: WarningSeverity, message: str, metrics: List[str]) -> None:
        candidates.append(_Candidate(priority, severity, message, metrics))

    # Priority 1
    if req_change <= CRITICAL_DROP_PCT:
        add(1, WarningSeverity.CRITICAL,
            f"Request volume dropped {abs(req_change):.1f}% - Contact publisher immediately to check integration",
            ['requests'])
    if ecpm_change <= CRITICAL_DROP_PCT:
        add(1, WarningSeverity.CRITICAL,
            f"eCPM dropped {abs(ecpm_change):.1f}% - Urgent floor price review or demand partner check needed",
            ['ecpm'])
    if req_change <= WARNING_DROP_PCT and ecpm_change <= WARNING_DROP_PCT:
        add(1, WarningSeverity.CRITICAL,
            f"Revenue crisis: Requests down {abs(req_change):.1f}%, eCPM down {abs(ecpm_change):.1f}% "
            f"- Immediate investigation required",
            ['requests', 'ecpm', 'revenue'])
    if fill_p2 < FILL_RATE_FLOOR and fill_change <= FILL_RATE_CRITICAL_DROP_PP:
        add(1, WarningSeverity.CRITICAL,
            f"Fill rate critically low at {fill_p2:.1f}% - Check demand partner health immediately",
            ['fill_rate'])

    # Priority 2
    if CRITICAL_DROP_PCT < req_change <= WARNING_DROP_PCT:
        add(2, WarningSeverity.WARNING,
            f"Traffic dropped {abs(req_change):.1f}% - Verify publisher ad tag implementation",
            ['requests'])
    if CRITICAL_DROP_PCT < ecpm_change <= WARNING_DROP_PCT:
        add(2, WarningSeverity.WARNING,
            f"eCPM declining {abs(ecpm_change):.1f}% - Consider floor price optimization",
            ['ecpm'])
    if CRITICAL_DROP_PCT < rev_change <= WARNING_DROP_PCT:
        if req_change <= INFO_DROP_PCT and ecpm_change > CAUSE_STABLE_PCT:
            add(2, WarningSeverity.WARNING,
                f"Revenue down {abs(rev_change):.1f}% due to traffic drop - Contact publisher about ad inventory",
                ['revenue', 'requests'])
        elif ecpm_change <= INFO_DROP_PCT and req_change > CAUSE_STABLE_PCT:
            add(2, WarningSeverity.WARNING,
                f"Revenue down {abs(rev_change):.1f}% due to eCPM decline - Review pricing strategy",
                ['revenue', 'ecpm'])
    if FILL_RATE_WARNING_LIMIT_PP < fill_change <= FILL_RATE_CRITICAL_DROP_PP and fill_p2 >= FILL_RATE_FLOOR:
        add(2, WarningSeverity.WARNING,
            f"Fill rate dropped {abs(fill_change):.1f}pp - Monitor demand partner performance",
            ['fill_rate'])

    # Priority 3
    if WARNING_DROP_PCT < req_change <= INFO_DROP_PCT:
        add(3, WarningSeverity.INFO,
            f"Requests declining {abs(req_change):.1f}% - Monitor for continued trend",
            ['requests'])
    if WARNING_DROP_PCT < ecpm_change <= INFO_DROP_PCT:
        add(3, WarningSeverity.INFO,
            f"eCPM slightly down {abs(ecpm_change):.1f}% - Within normal market fluctuation range",
            ['ecpm'])
    if FILL_RATE_CRITICAL_DROP_PP < fill_change <= FILL_RATE_INFO_DROP_PP:
        add(3, WarningSeverity.INFO,
            f"Fill rate decreased {abs(fill_change):.1f}pp - Continue monitoring",
            ['fill_rate'])

    top: Optional[_Candidate] = min(candidates, key=lambda c: c.priority, default=None)
    if top is None:
        return ActionableWarning()
    return ActionableWarning(severity=top.severity, message=top.message, metrics=top.metrics)


def annotate_warnings(records: List[ComparisonRecord]) -> List[ComparisonRecord]:
    """Copies of the records with their warning set."""
    return [r.model_copy(update={'warning': evaluate_warning(r)}) for r in records]
