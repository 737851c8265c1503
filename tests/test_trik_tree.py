import math

import numpy as np
import pytest

from trik.events import EventRecorder
from trik.ik_chain import Joint, Target
from trik.trik_tree import TreeSolver
from trik.utils import Z_AXIS, axis_rot2q, q_angle, q_equal, rot_point


@pytest.fixture
def skeleton():
    root = Joint(name="root")
    a = Joint(root, (0, 10, 0), name="a")
    b = Joint(a, (0, 10, 0), name="b")
    c1 = Joint(b, (5, 5, 0), name="c1")
    c1e = Joint(c1, (5, 5, 0), name="c1e")
    c2 = Joint(b, (-5, 5, 0), name="c2")
    c2e = Joint(c2, (-5, 5, 0), name="c2e")
    return dict(root=root, a=a, b=b, c1=c1, c1e=c1e, c2=c2, c2e=c2e)


def rotated_targets(skeleton, degrees=20):
    q = axis_rot2q(Z_AXIS, math.radians(degrees))
    return {name: Target(rot_point(q, skeleton[name].position)) for name in ("c1e", "c2e")}


def test_decomposition(skeleton):
    solver = TreeSolver(skeleton["root"])
    chains = solver.chains()
    assert len(chains) == 3
    assert [j.name for j in chains[0].original] == ["root", "a", "b"]
    assert [j.name for j in chains[1].original] == ["c1", "c1e"]
    assert [j.name for j in chains[2].original] == ["c2", "c2e"]
    assert solver.head() is skeleton["root"]
    assert solver.root.parent is None
    assert not solver.root.is_leaf()


def test_add_target(skeleton):
    solver = TreeSolver(skeleton["root"])
    targets = rotated_targets(skeleton)
    assert solver.add_target(skeleton["c1e"], targets["c1e"])
    assert solver.set_target(skeleton["c2e"], targets["c2e"])
    assert set(solver.end_effector_map) == {skeleton["c1e"], skeleton["c2e"]}
    assert not solver.add_target(Joint(), Target())
    assert len(solver.end_effector_map) == 2


def test_no_target_does_nothing(skeleton):
    solver = TreeSolver(skeleton["root"])
    positions = {name: joint.position for name, joint in skeleton.items()}
    solver.solve()
    assert solver.error() == 0.0
    for name, joint in skeleton.items():
        np.testing.assert_array_equal(joint.position, positions[name])


def test_solve_reduces_error(skeleton):
    recorder = EventRecorder()
    solver = TreeSolver(skeleton["root"], max_iter=10, times_per_frame=1, listeners=[recorder])
    targets = rotated_targets(skeleton)
    for name, target in targets.items():
        solver.add_target(skeleton[name], target)
    initial = solver.error()
    # the leaves alone can only point their bone at the target
    leaves_alone = sum(np.linalg.norm(targets[eff].position - skeleton[root].position)
                       - np.linalg.norm(skeleton[eff].position - skeleton[root].position)
                       for root, eff in (("c1", "c1e"), ("c2", "c2e")))
    assert leaves_alone > 1.0
    solver.solve()
    # the branch tip turns towards the displaced leaf targets
    assert q_angle(skeleton["b"].rotation) > 1e-3
    solver.solve_until_done()
    assert solver.error() < initial
    assert solver.error() < leaves_alone
    assert recorder.of("iteration")
    # the skeleton stays connected
    np.testing.assert_allclose(np.linalg.norm(skeleton["c1"].position - skeleton["b"].position),
                               math.sqrt(50), atol=1e-6)


@pytest.fixture
def fork():
    root = Joint(name="root")
    a = Joint(root, (0, 10, 0), name="a")
    b = Joint(a, (0, 10, 0), name="b")
    c1 = Joint(b, (5, 5, 0), name="c1")
    c2 = Joint(b, (-5, 5, 0), name="c2")
    return dict(root=root, a=a, b=b, c1=c1, c2=c2)


def test_tip_fit_and_parent_target(fork):
    # single joint leaves do not move, their whole displacement goes to the tip fit
    solver = TreeSolver(fork["root"], max_iter=1)
    shift = np.array([3.0, 0.0, 0.0])
    for name in ("c1", "c2"):
        solver.add_target(fork[name], Target(fork[name].position + shift))
    tip = fork["b"].position
    current = np.array([[5.0, 5.0, 0.0], [-5.0, 5.0, 0.0]])
    desired = current + shift

    solver.solve()

    # planar least squares rotation about z
    cross = sum(c[0] * d[1] - c[1] * d[0] for c, d in zip(current, desired))
    dot = sum(np.dot(c, d) for c, d in zip(current, desired))
    angle = math.atan2(cross, dot)
    assert angle < 0
    assert q_equal(fork["b"].rotation, axis_rot2q(Z_AXIS, angle))
    q = axis_rot2q(Z_AXIS, angle)
    residual = np.mean([d - rot_point(q, c) for c, d in zip(current, desired)], axis=0)
    parent = solver.root.solver
    np.testing.assert_allclose(parent.target.position, tip + residual, atol=1e-6)
    assert parent.position_error() < np.linalg.norm(residual)


def test_tip_stays_when_children_do_not_move(fork):
    solver = TreeSolver(fork["root"], max_iter=1)
    solver.add_target(fork["c1"], Target(fork["c1"].position))
    solver.add_target(fork["c2"], Target(fork["c2"].position))
    tip = fork["b"].position
    solver.solve()
    assert q_equal(fork["b"].rotation, [1, 0, 0, 0])
    np.testing.assert_allclose(solver.root.solver.target.position, tip, atol=1e-9)
    assert solver.converged


def test_internal_node_without_moved_children(skeleton):
    solver = TreeSolver(skeleton["root"])
    assert not solver._solve(solver.root)
    assert solver.root.solver.target is None


def test_leaf_target_change_is_detected(skeleton):
    solver = TreeSolver(skeleton["root"])
    target = Target(skeleton["c1e"].position)
    solver.add_target(skeleton["c1e"], target)
    assert solver.changed()
    solver.solve()
    assert not solver.changed()
    target.position = target.position + np.array([1.0, 0.0, 0.0])
    assert solver.changed()


def test_setters_propagate(skeleton):
    solver = TreeSolver(skeleton["root"], enable_twist=False)
    solver.set_direction(True)
    solver.set_max_error(0.5)
    solver.set_chain_max_iterations(7)
    solver.set_chain_times_per_frame(2)
    root_chain, *leaves = solver.chains()
    assert not root_chain.direction
    assert all(leaf.direction for leaf in leaves)
    assert solver.tolerance == 0.5
    for chain in solver.chains():
        assert chain.tolerance == 0.5
        assert chain.max_iter == 7
        assert chain.times_per_frame == 2
        assert not chain.enable_twist
