"""
Perspective registry.

A perspective is one dimension of analysis. Each has a grouping key (the
warehouse column the aggregate query groups by), a display-name expression
and at most one child it drills into:

    team -> pic -> pid -> mid -> zone
    product -> zone

Zone is the only leaf. The registry is static and validated at import time:
every child must be registered and following children must never revisit a
perspective.

The warehouse table has no team column, so the team perspective reads the
pic level (warehouse_key / warehouse_name_expression) and the aggregator rolls
PICs up into teams.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from deepdive.core.exceptions import InvariantViolation
from deepdive.models.enums import PerspectiveId


@dataclass(frozen=True)
class Perspective:
    """One level of the drill-down hierarchy."""
    id: PerspectiveId
    grouping_key: str
    name_expression: str
    child: Optional[PerspectiveId]
    label: str
    warehouse_key: Optional[str] = None
    warehouse_name_expression: Optional[str] = None

    @property
    def is_leaf(self) -> bool:
        return self.child is None

    @property
    def query_key(self) -> str:
        """Column grouped by in the warehouse query."""
        return self.warehouse_key or self.grouping_key

    @property
    def query_name_expression(self) -> str:
        return self.warehouse_name_expression or self.name_expression

    @property
    def is_rolled_up(self) -> bool:
        return self.warehouse_key is not None


PERSPECTIVES: Dict[PerspectiveId, Perspective] = {
    PerspectiveId.TEAM: Perspective(
        id=PerspectiveId.TEAM,
        grouping_key='team',
        name_expression='team',
        child=PerspectiveId.PIC,
        label='Team',
        warehouse_key='pic',
        warehouse_name_expression='pic',
    ),
    PerspectiveId.PIC: Perspective(
        id=PerspectiveId.PIC,
        grouping_key='pic',
        name_expression='pic',
        child=PerspectiveId.PID,
        label='PIC',
    ),
    PerspectiveId.PID: Perspective(
        id=PerspectiveId.PID,
        grouping_key='pid',
        name_expression='MAX(pubname)',
        child=PerspectiveId.MID,
        label='Publisher',
    ),
    PerspectiveId.MID: Perspective(
        id=PerspectiveId.MID,
        grouping_key='mid',
        name_expression='MAX(medianame)',
        child=PerspectiveId.ZONE,
        label='Media',
    ),
    PerspectiveId.PRODUCT: Perspective(
        id=PerspectiveId.PRODUCT,
        grouping_key='product',
        name_expression='product',
        child=PerspectiveId.ZONE,
        label='Product',
    ),
    PerspectiveId.ZONE: Perspective(
        id=PerspectiveId.ZONE,
        grouping_key='zid',
        name_expression='MAX(zonename)',
        child=None,
        label='Zone',
    ),
}

GROUPING_KEYS = frozenset(p.grouping_key for p in PERSPECTIVES.values())


def validate_registry(registry: Dict[PerspectiveId, Perspective]) -> None:
    """
    Check that the registry forms a finite hierarchy.

    Raises:
        InvariantViolation: On an unregistered child, a cycle, a duplicate
            grouping key or a registry without a leaf.
    """
    keys = [p.grouping_key for p in registry.values()]
    if len(set(keys)) != len(keys):
        raise InvariantViolation("perspective grouping keys must be unique")

    for perspective_id, perspective in registry.items():
        if perspective.id != perspective_id:
            raise InvariantViolation(f"perspective {perspective_id.value} registered under the wrong id")
        seen = {perspective_id}
        current = perspective
        while current.child is not None:
            if current.child not in registry:
                raise InvariantViolation(
                    f"perspective {current.id.value} has unregistered child {current.child.value}"
                )
            if current.child in seen:
                raise InvariantViolation(f"perspective hierarchy has a cycle at {current.child.value}")
            seen.add(current.child)
            current = registry[current.child]

    if not any(p.is_leaf for p in registry.values()):
        raise InvariantViolation("perspective hierarchy has no leaf")


validate_registry(PERSPECTIVES)


def get_perspective(perspective_id: PerspectiveId) -> Perspective:
    try:
        return PERSPECTIVES[PerspectiveId(perspective_id)]
    except (KeyError, ValueError):
        raise InvariantViolation(f"unknown perspective: {perspective_id}")
