from contextlib import contextmanager
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from trik.ik_chain import Joint
from trik.utils import IDENTITY, compose, inv_q, inv_rot_point, rot_point


@dataclass(frozen=True)
class JointState:
    """
    value snapshot of a joint local rotation plus its cached world pose
    """
    rotation: np.ndarray
    position: np.ndarray
    orientation: np.ndarray


class NodeInformation:
    """
    World position / orientation cache of a chain joint. The cache of a joint is only updated by the
    actions performed through it, if a parent changes the cache must be refreshed explicitly
    (update_cache_using_reference or update_cache).
    """

    def __init__(self, reference: Optional["NodeInformation"], joint: Joint):
        self.reference = reference
        self.joint = joint
        self._position_cache = np.zeros(3)
        self._orientation_cache = IDENTITY.copy()

    def __repr__(self):
        return f"NodeInformation({self.joint!r})"

    def position_cache(self) -> np.ndarray:
        return self._position_cache

    def orientation_cache(self) -> np.ndarray:
        return self._orientation_cache

    def set_cache(self, position, orientation):
        self._position_cache = np.array(position, dtype=np.float64)
        self._orientation_cache = np.array(orientation, dtype=np.float64)

    def snapshot(self) -> JointState:
        return JointState(self.joint.rotation.copy(), self._position_cache.copy(), self._orientation_cache.copy())

    def restore(self, state: JointState):
        # raw assignment, the snapshot is restored bit for bit
        self.joint.rotation = state.rotation.copy()
        self.set_cache(state.position, state.orientation)

    def reference_pose(self):
        if self.reference is not None:
            return self.reference._position_cache, self.reference._orientation_cache, self.reference.joint.magnitude
        parent = self.joint.parent
        if parent is None:
            return np.zeros(3), IDENTITY, 1.0
        return parent.position, parent.orientation, parent.magnitude

    def location_with_cache(self, point) -> np.ndarray:
        """
        world point expressed w.r.t this joint using the cached pose
        """
        if isinstance(point, NodeInformation):
            point = point.position_cache()
        return inv_rot_point(self._orientation_cache, np.asarray(point) - self._position_cache) / self.joint.magnitude

    def translate_and_update_cache(self, delta, use_constraint: bool, *others: "NodeInformation"):
        """
        translate the joint by delta (w.r.t its parent frame) and shift the cache of the given descendants
        """
        constraint = self.joint.constraint
        if use_constraint and constraint is not None:
            delta = constraint.constrain_translation(delta, self.joint)
        _, reference_orientation, reference_magnitude = self.reference_pose()
        t = rot_point(reference_orientation, np.asarray(delta) * reference_magnitude)
        with self.joint.unconstrained():
            self.joint.translate(delta)
        self._position_cache = self._position_cache + t
        for other in others:
            other._position_cache = other._position_cache + t

    def rotate_and_update_cache(self, delta, use_constraint: bool, *others: "NodeInformation"):
        """
        rotate the joint by delta (w.r.t its own frame) and rigidly move the cache of the given descendants
        """
        constraint = self.joint.constraint
        if use_constraint and constraint is not None:
            delta = constraint.constrain_rotation(delta, self.joint)
        orientation = compose(self._orientation_cache, delta)
        if others:
            q = compose(orientation, inv_q(self._orientation_cache))
            for other in others:
                other._orientation_cache = compose(q, other._orientation_cache)
                offset = other._position_cache - self._position_cache
                other._position_cache = self._position_cache + rot_point(q, offset)
        with self.joint.unconstrained():
            self.joint.rotate(delta)
        self._orientation_cache = orientation

    def update_cache_using_reference(self):
        position, orientation, magnitude = self.reference_pose()
        self._orientation_cache = compose(orientation, self.joint.rotation)
        self._position_cache = position + rot_point(orientation, self.joint.translation * magnitude)

    @contextmanager
    def applied(self, delta, chain: List["NodeInformation"], index: int):
        """
        rotate the joint (no constraint) while the block runs, every cache from index onward is restored on exit
        """
        with preserved(chain[index:]):
            self.rotate_and_update_cache(delta, False, chain[-1])
            if index + 1 < len(chain):
                chain[index + 1].update_cache_using_reference()
            yield self


@contextmanager
def preserved(infos: List[NodeInformation]):
    """
    restore joint rotation and cache of every entry when the block exits
    """
    saved = [info.snapshot() for info in infos]
    try:
        yield
    finally:
        for info, state in zip(infos, saved):
            info.restore(state)


def create_information_list(joints: List[Joint], update_cache: bool = True) -> List[NodeInformation]:
    info_list = []
    reference = None
    for joint in joints:
        reference = NodeInformation(reference, joint)
        info_list.append(reference)
    if update_cache:
        update_cache_from_joints(info_list)
    return info_list


def update_cache_from_joints(info_list: List[NodeInformation]):
    for info in info_list:
        info.update_cache_using_reference()


def copy_cache(origin: List[NodeInformation], dest: List[NodeInformation]):
    for source, target in zip(origin, dest):
        target.set_cache(source.position_cache(), source.orientation_cache())

