from contextlib import contextmanager
from typing import List, Optional

import numpy as np

from trik.utils import IDENTITY, compose, inv_q, inv_rot_point, normalize_q, rot_point, vec


class Joint:
    """
    Oriented point of a skeleton. rotation and translation are expressed w.r.t the parent joint,
    world position / orientation are obtained composing the parents transformations.
    """

    def __init__(self, parent: "Joint" = None, translation=(0, 0, 0), rotation=IDENTITY, scaling: float = 1.0,
                 constraint=None, name: str = ""):
        self.parent = parent
        self.children: List["Joint"] = []
        self.name = name
        self.translation = vec(translation)
        self.rotation = normalize_q(rotation)
        self.scaling = float(scaling)
        self._constraint = None
        if parent is not None:
            parent.children.append(self)
        self.set_constraint(constraint)

    def __repr__(self):
        return f"Joint({self.name or id(self)})"

    @property
    def constraint(self):
        return self._constraint

    def set_constraint(self, constraint):
        if constraint is not None and not callable(getattr(constraint, "constrain_rotation", None)):
            raise TypeError(f"{type(constraint).__name__} does not implement constrain_rotation")
        self._constraint = constraint

    @contextmanager
    def unconstrained(self):
        constraint = self._constraint
        self._constraint = None
        try:
            yield self
        finally:
            self._constraint = constraint

    @property
    def magnitude(self) -> float:
        if self.parent is None:
            return self.scaling
        return self.parent.magnitude * self.scaling

    @property
    def orientation(self) -> np.ndarray:
        if self.parent is None:
            return self.rotation.copy()
        return compose(self.parent.orientation, self.rotation)

    @property
    def position(self) -> np.ndarray:
        if self.parent is None:
            return self.translation.copy()
        return self.parent.world_location(self.translation)

    def world_location(self, vector) -> np.ndarray:
        """
        local point -> world point
        """
        return self.position + rot_point(self.orientation, vec(vector) * self.magnitude)

    def location(self, point) -> np.ndarray:
        """
        world point -> local point
        """
        return inv_rot_point(self.orientation, vec(point) - self.position) / self.magnitude

    def rotate(self, q):
        if self._constraint is not None:
            q = self._constraint.constrain_rotation(normalize_q(q), self)
        self.rotation = compose(self.rotation, q)

    def set_rotation(self, q):
        if self._constraint is not None:
            self.rotate(compose(inv_q(self.rotation), q))
        else:
            self.rotation = normalize_q(q)

    def translate(self, t):
        constrain = getattr(self._constraint, "constrain_translation", None)
        if constrain is not None:
            t = constrain(vec(t), self)
        self.translation = self.translation + vec(t)

    def set_translation(self, t):
        self.translate(vec(t) - self.translation)

    def set_position(self, position):
        if self.parent is None:
            self.set_translation(position)
        else:
            self.set_translation(self.parent.location(position))

    def set_orientation(self, orientation):
        if self.parent is None:
            self.set_rotation(orientation)
        else:
            self.set_rotation(compose(inv_q(self.parent.orientation), orientation))


class Target:
    """
    World pose an end effector must reach. Any object exposing position and orientation works as a target.
    """

    def __init__(self, position=(0, 0, 0), orientation=IDENTITY):
        self.position = vec(position)
        self.orientation = normalize_q(orientation)

    def __repr__(self):
        return f"Target({self.position.tolist()})"

    @classmethod
    def from_pose(cls, other) -> "Target":
        return cls(np.array(other.position), np.array(other.orientation))

    def matches(self, other, atol=1e-6) -> bool:
        return (np.allclose(self.position, other.position, atol=atol)
                and np.allclose(self.orientation, other.orientation, atol=atol))


def validate_chain(chain: List[Joint]):
    if len(chain) == 0:
        raise ValueError("a chain requires at least one joint")
    for i in range(1, len(chain)):
        if chain[i].parent is not chain[i - 1]:
            raise ValueError(f"{chain[i]} is not a child of {chain[i - 1]}")


def chain_from(root: Joint, effector: Joint) -> List[Joint]:
    chain = []
    node = effector
    while node is not None:
        chain.append(node)
        if node is root:
            chain.reverse()
            return chain
        node = node.parent
    raise ValueError(f"{root} is not an ancestor of {effector}")


def bone_lengths(chain: List[Joint]) -> List[float]:
    return [float(np.linalg.norm(chain[i + 1].position - chain[i].position)) for i in range(len(chain) - 1)]


def detached_copy(chain: List[Joint], copy_constraints: bool = True) -> List[Joint]:
    """
    structurally identical copy of chain, its root hangs from a detached joint that keeps
    the world pose of the original root parent
    """
    validate_chain(chain)
    reference = None
    if chain[0].parent is not None:
        ref = chain[0].parent
        reference = Joint(translation=ref.position, rotation=ref.orientation, scaling=ref.magnitude,
                          name=f"{ref.name}_ref")
    copy = []
    for node in chain:
        constraint = node.constraint if copy_constraints else None
        reference = Joint(reference, node.translation, node.rotation, node.scaling, constraint, node.name)
        copy.append(reference)
    return copy


def copy_chain_state(origin: List[Joint], dest: List[Joint]):
    ref_origin, ref_dest = origin[0].parent, dest[0].parent
    if ref_dest is not None:
        with ref_dest.unconstrained():
            if ref_origin is None:
                ref_dest.set_rotation(IDENTITY)
                ref_dest.set_translation(np.zeros(3))
            elif ref_dest.parent is None:
                ref_dest.set_rotation(ref_origin.orientation)
                ref_dest.set_translation(ref_origin.position)
                ref_dest.scaling = ref_origin.magnitude
    for source, target in zip(origin, dest):
        with target.unconstrained():
            target.set_rotation(source.rotation)
            target.set_translation(source.translation)
            target.scaling = source.scaling
