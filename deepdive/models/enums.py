"""
Enumeration definitions for the Deep Dive backend.

All enums inherit from both `str` and `Enum` so they serialize as plain
strings in Pydantic models and API responses.
"""

from enum import Enum


class PerspectiveId(str, Enum):
    """
    Dimensions of analysis.

    The drill-down hierarchy is team -> pic -> pid -> mid -> zone, with
    product -> zone as a second root. Zone is the only leaf.
    """
    TEAM = "team"
    PIC = "pic"
    PID = "pid"
    MID = "mid"
    PRODUCT = "product"
    ZONE = "zone"


class LifecycleStatus(str, Enum):
    """
    Presence of an entity across the two compared periods.

    - existing: present in both periods
    - new: present only in period 2 (current)
    - lost: present only in period 1 (baseline)
    """
    EXISTING = "existing"
    NEW = "new"
    LOST = "lost"


class RevenueTier(str, Enum):
    """Pareto rank inside a ranking group: A = first 80%, B = next 15%, C = last 5%."""
    A = "A"
    B = "B"
    C = "C"


class Tier(str, Enum):
    """
    Tier assigned to a comparison record.

    Existing entities carry the plain A/B/C rank; new entities are ranked
    among existing+new by period-2 revenue and prefixed NEW-; lost entities
    are ranked among themselves by period-1 revenue and prefixed LOST-.
    """
    A = "A"
    B = "B"
    C = "C"
    NEW_A = "NEW-A"
    NEW_B = "NEW-B"
    NEW_C = "NEW-C"
    LOST_A = "LOST-A"
    LOST_B = "LOST-B"
    LOST_C = "LOST-C"

    @classmethod
    def for_status(cls, status: "LifecycleStatus", rank: RevenueTier) -> "Tier":
        if status == LifecycleStatus.NEW:
            return cls(f"NEW-{rank.value}")
        if status == LifecycleStatus.LOST:
            return cls(f"LOST-{rank.value}")
        return cls(rank.value)


class DisplayTier(str, Enum):
    """Bucket used for summary counts: A/B/C for existing, NEW and LOST otherwise."""
    A = "A"
    B = "B"
    C = "C"
    NEW = "NEW"
    LOST = "LOST"


class WarningSeverity(str, Enum):
    """
    Severity of an actionable warning on an existing entity.

    - healthy: no movement worth flagging
    - info: mild decline, keep monitoring
    - warning: decline needing follow-up with the publisher
    - critical: sharp drop needing immediate investigation
    """
    HEALTHY = "healthy"
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class FieldDataType(str, Enum):
    """Warehouse column type used to escape filter values."""
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class FilterOperator(str, Enum):
    """
    Operators accepted in a simplified filter clause.

    Direct operators compare a field with a value. Entity operators
    (has, does_not_have, only_has, has_all, has_any) test an attribute of
    the entity through a sub-select over the warehouse table.
    """
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    BETWEEN = "between"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX_MATCH = "regex_match"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    HAS = "has"
    DOES_NOT_HAVE = "does_not_have"
    ONLY_HAS = "only_has"
    HAS_ALL = "has_all"
    HAS_ANY = "has_any"

    @property
    def is_entity_operator(self) -> bool:
        return self in ENTITY_OPERATORS


ENTITY_OPERATORS = frozenset({
    FilterOperator.HAS,
    FilterOperator.DOES_NOT_HAVE,
    FilterOperator.ONLY_HAS,
    FilterOperator.HAS_ALL,
    FilterOperator.HAS_ANY,
})


class ClauseLogic(str, Enum):
    """How clauses of a simplified filter are combined."""
    AND = "AND"
    OR = "OR"


class IncludeExclude(str, Enum):
    """INCLUDE renders `(...)`, EXCLUDE renders `NOT (...)`."""
    INCLUDE = "INCLUDE"
    EXCLUDE = "EXCLUDE"


class ViewMode(str, Enum):
    """
    Rendering mode of the drill-down view.

    - single: one tiered comparison table
    - segmented: one comparison per selected entity of the current perspective
    """
    SINGLE = "single"
    SEGMENTED = "segmented"
