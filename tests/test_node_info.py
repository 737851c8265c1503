import math

import numpy as np
import pytest

from trik.constraint import Hinge
from trik.node_info import JointState, create_information_list, preserved, update_cache_from_joints
from trik.utils import X_AXIS, Y_AXIS, Z_AXIS, axis_rot2q, q_equal


def assert_cache_matches_joints(info_list):
    for info in info_list:
        np.testing.assert_allclose(info.position_cache(), info.joint.position, atol=1e-9)
        assert q_equal(info.orientation_cache(), info.joint.orientation)


def test_create_information_list(chain):
    info_list = create_information_list(chain)
    assert info_list[0].reference is None
    assert info_list[2].reference is info_list[1]
    assert_cache_matches_joints(info_list)


def test_incremental_update_matches_full_recompute(chain):
    info_list = create_information_list(chain)
    info_list[1].rotate_and_update_cache(axis_rot2q(Z_AXIS, 0.6), False, info_list[-1])
    # the effector cache is moved rigidly
    np.testing.assert_allclose(info_list[-1].position_cache(), chain[-1].position, atol=1e-9)
    for info in info_list[2:]:
        info.update_cache_using_reference()
    assert_cache_matches_joints(info_list)


def test_rotate_through_constraint(make_chain):
    chain = make_chain(3, 1.0, constraint=lambda: Hinge(math.radians(10), math.radians(10)))
    info_list = create_information_list(chain)
    info_list[0].rotate_and_update_cache(axis_rot2q(Z_AXIS, 1.0), True, info_list[-1])
    assert q_equal(chain[0].rotation, axis_rot2q(Z_AXIS, math.radians(10)))
    np.testing.assert_allclose(info_list[-1].position_cache(), chain[-1].position, atol=1e-9)


def test_translate_and_update_cache(chain):
    chain[0].rotate(axis_rot2q(Z_AXIS, math.pi / 2))
    info_list = create_information_list(chain)
    info_list[1].translate_and_update_cache(np.array([0.0, 10.0, 0.0]), False, info_list[-1])
    np.testing.assert_allclose(chain[1].translation, [50, 10, 0])
    np.testing.assert_allclose(info_list[1].position_cache(), chain[1].position, atol=1e-9)
    np.testing.assert_allclose(info_list[-1].position_cache(), chain[-1].position, atol=1e-9)


def test_location_with_cache(chain):
    info_list = create_information_list(chain)
    np.testing.assert_allclose(info_list[1].location_with_cache(info_list[3]), [100, 0, 0], atol=1e-9)
    np.testing.assert_allclose(info_list[1].location_with_cache([50, 20, 0]), [0, 20, 0], atol=1e-9)


def test_snapshot_restore_is_exact(chain):
    info_list = create_information_list(chain)
    state = info_list[1].snapshot()
    assert isinstance(state, JointState)
    info_list[1].rotate_and_update_cache(axis_rot2q(Y_AXIS, 0.3), False)
    info_list[1].restore(state)
    np.testing.assert_array_equal(chain[1].rotation, state.rotation)
    np.testing.assert_array_equal(info_list[1].position_cache(), state.position)
    np.testing.assert_array_equal(info_list[1].orientation_cache(), state.orientation)


def test_applied_restores_on_exit(chain):
    info_list = create_information_list(chain)
    before = [(info.joint.rotation.copy(), info.position_cache().copy()) for info in info_list]
    with info_list[1].applied(axis_rot2q(X_AXIS, 0.8), info_list, 1):
        np.testing.assert_allclose(info_list[-1].position_cache(), chain[-1].position, atol=1e-9)
        np.testing.assert_allclose(info_list[2].position_cache(), chain[2].position, atol=1e-9)
    for info, (rotation, position) in zip(info_list, before):
        np.testing.assert_array_equal(info.joint.rotation, rotation)
        np.testing.assert_array_equal(info.position_cache(), position)


def test_preserved_restores_after_error(chain):
    info_list = create_information_list(chain)
    rotation = chain[2].rotation.copy()
    with pytest.raises(RuntimeError):
        with preserved(info_list[2:]):
            info_list[2].rotate_and_update_cache(axis_rot2q(Z_AXIS, 0.5), False)
            raise RuntimeError
    np.testing.assert_array_equal(chain[2].rotation, rotation)


def test_update_cache_from_joints(chain):
    info_list = create_information_list(chain, update_cache=False)
    update_cache_from_joints(info_list)
    assert_cache_matches_joints(info_list)
