import math

import numpy as np
import pytest

from trik.constraint import Hinge
from trik.ik_chain import Joint, Target, bone_lengths, chain_from, copy_chain_state, detached_copy, validate_chain
from trik.utils import X_AXIS, Z_AXIS, axis_rot2q, q_equal


def test_world_pose(make_chain):
    chain = make_chain(3, 50, rotation=axis_rot2q(Z_AXIS, math.pi / 2))
    np.testing.assert_allclose(chain[1].position, [0, 50, 0], atol=1e-9)
    np.testing.assert_allclose(chain[2].position, [0, 100, 0], atol=1e-9)
    np.testing.assert_allclose(chain[2].location([0, 150, 0]), [50, 0, 0], atol=1e-9)
    np.testing.assert_allclose(chain[1].world_location([50, 0, 0]), [0, 100, 0], atol=1e-9)


def test_scaling_propagates():
    root = Joint(scaling=2.0)
    child = Joint(root, (10, 0, 0))
    np.testing.assert_allclose(child.position, [20, 0, 0])
    assert child.magnitude == 2.0
    np.testing.assert_allclose(child.location([30, 0, 0]), [5, 0, 0])


def test_children_are_registered(chain):
    assert chain[0].children == [chain[1]]
    assert chain[-1].children == []


def test_rotate_uses_constraint():
    joint = Joint(constraint=Hinge(math.radians(10), math.radians(10)))
    joint.rotate(axis_rot2q(Z_AXIS, math.radians(50)))
    assert q_equal(joint.rotation, axis_rot2q(Z_AXIS, math.radians(10)))
    with joint.unconstrained():
        joint.rotate(axis_rot2q(X_AXIS, math.radians(50)))
    assert joint.constraint is not None


def test_invalid_constraint():
    with pytest.raises(TypeError):
        Joint(constraint=object())


def test_set_position_and_orientation(chain):
    chain[1].set_position([0, 10, 0])
    np.testing.assert_allclose(chain[1].position, [0, 10, 0], atol=1e-9)
    q = axis_rot2q(Z_AXIS, 0.5)
    chain[2].set_orientation(q)
    assert q_equal(chain[2].orientation, q)


def test_target_matches(chain):
    target = Target.from_pose(chain[-1])
    assert target.matches(chain[-1])
    target.position = target.position + 1
    assert not target.matches(chain[-1])


def test_validate_chain(chain):
    validate_chain(chain)
    with pytest.raises(ValueError):
        validate_chain([])
    with pytest.raises(ValueError):
        validate_chain([chain[0], chain[2]])


def test_chain_from(chain):
    assert chain_from(chain[0], chain[-1]) == chain
    assert chain_from(chain[1], chain[2]) == chain[1:3]
    with pytest.raises(ValueError):
        chain_from(chain[2], chain[1])


def test_bone_lengths(chain):
    assert bone_lengths(chain) == pytest.approx([50, 50, 50])


def test_detached_copy_keeps_world_pose(chain):
    chain[0].rotate(axis_rot2q(Z_AXIS, 0.3))
    sub = chain[1:]
    copy = detached_copy(sub)
    assert copy[0].parent is not None and copy[0].parent.parent is None
    for original, duplicate in zip(sub, copy):
        np.testing.assert_allclose(duplicate.position, original.position, atol=1e-9)
        assert q_equal(duplicate.orientation, original.orientation)
    assert detached_copy(sub, copy_constraints=False)[0].constraint is None


def test_copy_chain_state(chain):
    copy = detached_copy(chain)
    chain[1].rotate(axis_rot2q(Z_AXIS, 0.7))
    chain[2].translate([0, 5, 0])
    copy_chain_state(chain, copy)
    for original, duplicate in zip(chain, copy):
        np.testing.assert_allclose(duplicate.position, original.position, atol=1e-9)
