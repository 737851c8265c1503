import logging
import math
from enum import Enum
from typing import List, Optional

import numpy as np

from trik import events
from trik.actions import (TWIST_MAX_ANGLE, apply_swing_twist, find_ccd_twist, find_local_rotation,
                          find_local_rotation_direction, local_rotation)
from trik.constraint import Hinge
from trik.error import (WEIGHT_RATIO, error as pose_error, orientation_error as pose_orientation_error,
                         position_error as pose_position_error)
from trik.ik_chain import Joint, Target, copy_chain_state, detached_copy, validate_chain
from trik.ik_solver import IKSolver
from trik.node_info import (NodeInformation, copy_cache, create_information_list, preserved,
                            update_cache_from_joints)
from trik.utils import (EPS, X_AXIS, Y_AXIS, Z_AXIS, axis_rot2q, clamp_q, inv_q, inv_rot_point,
                        orthogonal_vector)

logger = logging.getLogger(__name__)

ALIGN_MAX_ANGLE = math.radians(20)
PERTURBATION_ANGLE = math.radians(45)
CCD_PERTURBATION_ANGLE = math.radians(40)
SWING_TWIST_PROBABILITY = 0.8
EXPLORE_SAMPLES = 15


class LookAheadMode(Enum):
    CHOOSE = "choose"  # every candidate at the first joint, greedy afterwards
    CHOOSE_ALL = "choose_all"  # every candidate at every joint


class ChainSolver(IKSolver):
    """
    Triangulation-like iterative solver for a single chain.

    Each iteration a shadow copy of the working chain is moved rigidly so that its effector lies on the
    target, then the working chain is walked from the root and every joint is swung (and twisted) towards
    its shadow counterpart. The best pose found so far is written back to the original chain.
    """

    def __init__(self, chain, target=None, max_iter: int = 50, tolerance: float = 0.01,
                 max_orientation_error: float = 1.0, times_per_frame: float = 5, look_ahead: int = 0,
                 direction: bool = False, enable_weight: bool = False, enable_twist: bool = True,
                 smooth: bool = False, smooth_angle: float = math.radians(10), lock_criteria: int = 4,
                 mode: LookAheadMode = LookAheadMode.CHOOSE, seed: Optional[int] = 0, listeners=()):
        super().__init__(max_iter, tolerance, times_per_frame, listeners)
        chain = list(chain)
        validate_chain(chain)
        self.original: List[Joint] = chain
        self.chain = detached_copy(chain)
        self.auxiliary_chain = detached_copy(chain, copy_constraints=False)
        self.original_info = create_information_list(self.original)
        self.chain_info = create_information_list(self.chain)
        self.auxiliary_info = create_information_list(self.auxiliary_chain)

        self.max_orientation_error = max_orientation_error  # degrees
        self.look_ahead = max(int(look_ahead), 0)
        self.direction = direction
        self.enable_weight = enable_weight
        self.enable_twist = enable_twist
        self.smooth = smooth
        self.smooth_angle = smooth_angle
        self.lock_criteria = lock_criteria
        self.mode = mode
        self.rng = np.random.default_rng(seed)

        self.target = target
        self._previous_target: Optional[Target] = None
        self._world_target = Target() if target is None else Target.from_pose(target)
        self.best = math.inf
        self._current = math.inf
        self.lock_times = 0
        self._explore = False
        self.max_length = 0.0
        self.avg_bone_length = 1.0
        self._measure_bones()

    def __repr__(self):
        return f"ChainSolver({self.original[0]!r} -> {self.original[-1]!r})"

    # configuration

    def enable_direction(self, direction: bool):
        self.direction = direction

    def enable_weight_heuristic(self, enable: bool):
        self.enable_weight = enable

    def enable_twist_heuristics(self, enable: bool):
        self.enable_twist = enable

    def set_smooth(self, smooth: bool, smooth_angle: float = None):
        self.smooth = smooth
        if smooth_angle is not None:
            self.smooth_angle = smooth_angle

    def set_look_ahead(self, n: int):
        self.look_ahead = max(int(n), 0)

    def set_target(self, target):
        self.target = target

    def effector(self) -> Joint:
        return self.original[-1]

    # queries

    def _error(self, eff: NodeInformation, target, w_pos: float = None, w_orient: float = 1.0) -> float:
        return pose_error(eff.position_cache(), target.position, eff.orientation_cache(), target.orientation,
                          w_pos, w_orient, self.direction, self.avg_bone_length)

    def error(self) -> float:
        if self.target is None:
            return 0.0
        return self._error(self.original_info[-1], self.target)

    def position_error(self) -> float:
        if self.target is None:
            return 0.0
        return pose_position_error(self.original[-1].position, self.target.position)

    def orientation_error(self) -> float:
        if self.target is None:
            return 0.0
        return pose_orientation_error(self.original[-1].orientation, self.target.orientation, degrees=True)

    # solver

    def _measure_bones(self):
        positions = [info.position_cache() for info in self.original_info]
        lengths = [float(np.linalg.norm(positions[i + 1] - positions[i])) for i in range(len(positions) - 1)]
        for i, length in enumerate(lengths):
            if length < EPS:
                logger.warning("zero length bone between %r and %r", self.original[i], self.original[i + 1])
        self.max_length = sum(lengths)
        self.avg_bone_length = self.max_length / len(lengths) if self.max_length > EPS else 1.0

    def _changed(self) -> bool:
        if self.target is None:
            self._previous_target = None
            return False
        if self._previous_target is None:
            return True
        return not self._previous_target.matches(self.target)

    def _reset(self):
        self._previous_target = None if self.target is None else Target.from_pose(self.target)
        copy_chain_state(self.original, self.chain)
        update_cache_from_joints(self.original_info)
        copy_cache(self.original_info, self.chain_info)
        self._measure_bones()
        if self.target is not None:
            self._world_target = Target.from_pose(self.target)
            self.best = self._error(self.original_info[-1], self._world_target)
        else:
            self.best = math.inf
        self._current = math.inf
        self.lock_times = 0
        self._explore = False
        logger.debug("reset %r, initial error %.6f", self, self.best)
        self._emit(events.RESET, best=self.best, target=self._world_target.position.copy())

    def _iterate(self) -> bool:
        if self.target is None:
            return True
        last = len(self.chain) - 1
        self._explore = False
        if self.lock_times > self.lock_criteria:
            logger.info("%r locked for %d iterations with error %.6f, exploring", self, self.lock_times, self.best)
            self._emit(events.LOCKED, iteration=self.iterations, lock_times=self.lock_times, best=self.best)
            self._explore = True
            self.lock_times = 0

        # move a copy of the chain so that its effector lies on the target
        copy_chain_state(self.chain, self.auxiliary_chain)
        self.auxiliary_info[0].set_cache(self.chain_info[0].position_cache(), self.chain_info[0].orientation_cache())
        self.auxiliary_info[last].set_cache(self.chain_info[last].position_cache(),
                                            self.chain_info[last].orientation_cache())
        self._align_to_target(self.auxiliary_info[0], self.auxiliary_info[last], self._world_target)
        update_cache_from_joints(self.auxiliary_info)
        self._emit(events.ALIGN, positions=[info.position_cache().copy() for info in self.auxiliary_info])

        # walk the chain towards the aligned copy
        depth = self.look_ahead if self.look_ahead > 0 else int(self._explore)
        for i in range(1, len(self.chain)):
            if depth > 0 and i < last:
                rotations = self.look_ahead_search(i - 1, min(depth, len(self.chain) - i - 1), self._explore)
                self.chain_info[i - 1].rotate_and_update_cache(rotations[0], False, self.chain_info[last])
            else:
                apply_swing_twist(self.chain_info[i - 1], self.chain_info[i], self.auxiliary_info[i],
                                  self.chain_info[last], self._world_target, TWIST_MAX_ANGLE, TWIST_MAX_ANGLE,
                                  self.enable_weight, self.direction, self.enable_twist, self.smooth,
                                  self.smooth_angle)
            self.chain_info[i].update_cache_using_reference()

        self._current = self._error(self.chain_info[last], self._world_target)
        logger.debug("iteration %d: error %.6f best %.6f", self.iterations, self._current, self.best)
        if self._current >= self.best:
            self.lock_times += 1
        else:
            self.lock_times = 0
        self._update()
        self._emit(events.ITERATION, iteration=self.iterations, error=self._current, best=self.best,
                   lock_times=self.lock_times)
        return self._reached()

    def _update(self):
        if self._current < self.best:
            # the working chain already satisfies the constraints
            for source, dest in zip(self.chain, self.original):
                dest.rotation = source.rotation.copy()
            copy_cache(self.chain_info, self.original_info)
            self.best = self._current
            self._emit(events.UPDATE, iteration=self.iterations, best=self.best,
                       rotations=[joint.rotation.copy() for joint in self.original])

    def _reached(self) -> bool:
        eff = self.original_info[-1]
        if pose_position_error(eff.position_cache(), self._world_target.position) >= self.tolerance:
            return False
        if self.direction:
            return pose_orientation_error(eff.orientation_cache(), self._world_target.orientation,
                                          degrees=True) < self.max_orientation_error
        return True

    def _align_to_target(self, root: NodeInformation, eff: NodeInformation, target):
        if self.direction:
            delta = find_local_rotation_direction(root, eff, target.orientation)
            root.rotate_and_update_cache(clamp_q(delta, ALIGN_MAX_ANGLE), False, eff)
        self._translate_to_target(root, eff, target)

    def _translate_to_target(self, root: NodeInformation, eff: NodeInformation, target):
        # the root translation is expressed w.r.t its parent
        _, orientation, magnitude = root.reference_pose()
        diff = inv_rot_point(orientation, target.position - eff.position_cache()) / magnitude
        root.translate_and_update_cache(diff, False, eff)

    # look ahead

    def look_ahead_search(self, start: int, times: int, explore: bool = False) -> list:
        """
        search a rotation sequence for the joints start .. start + times - 1 of the working chain
        leaving the chain untouched

        :param start: first joint to rotate
        :param times: search depth
        :param explore: add random candidates to the first joint
        :return: best sequence, the caller commits its first rotation
        """
        if times <= 0:
            return []
        results = []
        self._look_ahead(start, times, 0, [], results, explore)
        sequence, best = min(results, key=lambda result: result[1])
        logger.debug("look ahead on joint %d: %d sequences, best %.6f", start, len(results), best)
        self._emit(events.LOOK_AHEAD, joint=start, candidates=len(results), error=best,
                   rotation=sequence[0].copy())
        return sequence

    def _jittered_error(self, index: int) -> float:
        # small random position weight so that ties do not always favour the same branch
        w = self.rng.random() * index / (len(self.chain_info) - 1) * 0.5
        return self._error(self.chain_info[-1], self._world_target, w * WEIGHT_RATIO, 1.0)

    def _look_ahead(self, start: int, times: int, depth: int, sequence: list, results: list, explore: bool):
        if depth == times:
            results.append((sequence, self._jittered_error(start + depth)))
            return
        index = start + depth
        info = self.chain_info[index]
        constraint = info.joint.constraint
        candidates = self._find_actions(index, choose=True, explore=explore and depth == 0)
        if constraint is not None:
            candidates = [constraint.constrain_rotation(q, info.joint) for q in candidates]

        if depth == 0 or self.mode is LookAheadMode.CHOOSE_ALL:
            for rotation in candidates:
                with info.applied(rotation, self.chain_info, index):
                    self._look_ahead(start, times, depth + 1, sequence + [rotation], results, explore)
            return

        best, best_error = candidates[0], math.inf
        for rotation in candidates:
            with info.applied(rotation, self.chain_info, index):
                e = self._jittered_error(index)
            if e < best_error:
                best, best_error = rotation, e
        with info.applied(best, self.chain_info, index):
            self._look_ahead(start, times, depth + 1, sequence + [best], results, explore)

    def _random_angle(self, limit: float = PERTURBATION_ANGLE) -> float:
        return float(self.rng.uniform(-limit, limit))

    def _find_actions(self, index: int, choose: bool = True, explore: bool = False) -> list:
        """
        candidate local rotations of the joint at index
        """
        j_i, j_i1 = self.chain_info[index], self.chain_info[index + 1]
        j_i1_hat, eff = self.auxiliary_info[index + 1], self.chain_info[-1]
        target = self._world_target
        actions = []

        if self.rng.random() < SWING_TWIST_PROBABILITY:
            with preserved([j_i, eff]):
                before = j_i.joint.rotation.copy()
                apply_swing_twist(j_i, j_i1, j_i1_hat, eff, target, TWIST_MAX_ANGLE, TWIST_MAX_ANGLE,
                                  self.enable_weight, self.direction, self.enable_twist, self.smooth,
                                  self.smooth_angle)
                q1 = local_rotation(before, j_i.joint.rotation)
        else:
            q1 = find_local_rotation(j_i1, j_i1_hat, self.enable_weight)
            if self.smooth:
                q1 = clamp_q(q1, self.smooth_angle)
        actions.append(q1)

        if self.direction:
            q = find_local_rotation_direction(j_i, eff, target.orientation)
            if self.smooth:
                q = clamp_q(q, self.smooth_angle)
            actions.append(q)

        if choose:
            bone = j_i1.joint.translation
            basis1 = orthogonal_vector(bone)
            basis2 = np.cross(bone, basis1)
            perturbations = [axis_rot2q(basis1, self._random_angle()), axis_rot2q(basis2, self._random_angle())]
            if self.enable_twist:
                perturbations.append(find_ccd_twist(j_i, j_i1, eff, target.position, CCD_PERTURBATION_ANGLE))
                perturbations.append(axis_rot2q(bone, self._random_angle()))
            if self.smooth:
                perturbations = [clamp_q(q, self.smooth_angle) for q in perturbations]
            actions.extend(perturbations)
            actions.extend(inv_q(q) for q in perturbations)

        if explore:
            actions.extend(self._explore_actions(j_i))
        return actions

    def _explore_actions(self, info: NodeInformation) -> list:
        constraint = info.joint.constraint
        if isinstance(constraint, Hinge):
            axis = constraint.axis(info.joint)
            lower = min(constraint.min_angle, PERTURBATION_ANGLE)
            upper = min(constraint.max_angle, PERTURBATION_ANGLE)
            return [axis_rot2q(axis, float(self.rng.uniform(-lower, upper))) for _ in range(EXPLORE_SAMPLES)]
        axes = (X_AXIS, Y_AXIS, Z_AXIS)
        return [axis_rot2q(axes[c % 3], self._random_angle()) for c in range(EXPLORE_SAMPLES)]
