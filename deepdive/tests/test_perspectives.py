"""
Perspective registry tests.
"""

import pytest

from deepdive.core.exceptions import InvariantViolation
from deepdive.models.enums import PerspectiveId
from deepdive.services.perspectives import (
    GROUPING_KEYS,
    PERSPECTIVES,
    Perspective,
    get_perspective,
    validate_registry,
)


def test_hierarchy():
    chain = []
    current = get_perspective(PerspectiveId.TEAM)
    while current is not None:
        chain.append(current.id)
        current = get_perspective(current.child) if current.child else None

    assert chain == [
        PerspectiveId.TEAM,
        PerspectiveId.PIC,
        PerspectiveId.PID,
        PerspectiveId.MID,
        PerspectiveId.ZONE,
    ]
    assert get_perspective(PerspectiveId.PRODUCT).child == PerspectiveId.ZONE


def test_zone_is_the_only_leaf():
    assert [p.id for p in PERSPECTIVES.values() if p.is_leaf] == [PerspectiveId.ZONE]


def test_grouping_keys():
    assert GROUPING_KEYS == {'team', 'pic', 'pid', 'mid', 'product', 'zid'}


def test_team_reads_pic_level():
    team = get_perspective(PerspectiveId.TEAM)

    assert team.is_rolled_up
    assert team.query_key == 'pic'
    assert get_perspective(PerspectiveId.PID).query_name_expression == 'MAX(pubname)'


def test_lookup_by_value():
    assert get_perspective('zone').grouping_key == 'zid'


def test_unknown_perspective():
    with pytest.raises(InvariantViolation):
        get_perspective('country')


def test_cycle_is_rejected():
    registry = {
        PerspectiveId.PID: Perspective(PerspectiveId.PID, 'pid', 'pid', PerspectiveId.MID, 'Publisher'),
        PerspectiveId.MID: Perspective(PerspectiveId.MID, 'mid', 'mid', PerspectiveId.PID, 'Media'),
    }
    with pytest.raises(InvariantViolation):
        validate_registry(registry)


def test_unregistered_child_is_rejected():
    registry = {
        PerspectiveId.PID: Perspective(PerspectiveId.PID, 'pid', 'pid', PerspectiveId.MID, 'Publisher'),
    }
    with pytest.raises(InvariantViolation):
        validate_registry(registry)
