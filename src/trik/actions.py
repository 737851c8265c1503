import math

import numpy as np

from trik.node_info import NodeInformation
from trik.utils import (EPS, angle_between, axis_rot2q, clamp_q, compose, inv_q, project_on_plane,
                        q_angle, q_axis, signed_angle, twist_q, vector_rot_q)

# Every action below reads the cached pose of the joints involved, caches must be up to date.

TWIST_MAX_ANGLE = math.radians(15)
TWIST_NOISE_ANGLE = math.radians(5)
CCD_MIN_PROJECTION = 0.1


def bone_weight(bone_length: float, desired_distance: float) -> float:
    """
    1.5^(-|deviation| / bone_length), 1 for a null bone
    """
    if bone_length < EPS:
        return 1.0
    return 1.5 ** (-abs(desired_distance - bone_length) / bone_length)


def find_local_rotation(j_i1: NodeInformation, j_i1_hat: NodeInformation, enable_weight: bool = False):
    """
    swing of the parent of j_i1 that takes j_i1 towards j_i1_hat, w.r.t the parent frame
    """
    j_i = j_i1.reference
    p = j_i1.joint.translation
    q = j_i.location_with_cache(j_i1_hat)
    delta = vector_rot_q(p, q)
    if enable_weight:
        weight = bone_weight(float(np.linalg.norm(p)), float(np.linalg.norm(q)))
        delta = axis_rot2q(q_axis(delta), q_angle(delta) * weight)
    return delta


def find_local_rotation_direction(j_i: NodeInformation, eff: NodeInformation, target_orientation):
    # O_i^-1 * O_t * O_eff^-1 * O_i
    return compose(inv_q(j_i.orientation_cache()), target_orientation, inv_q(eff.orientation_cache()),
                   j_i.orientation_cache())


def _twisting_angle(j_i, j_i1, eff, target_orientation, max_angle) -> float:
    delta = find_local_rotation_direction(j_i, eff, target_orientation)
    if q_angle(delta) < TWIST_NOISE_ANGLE:
        return 0.0
    tw = j_i1.joint.translation
    angle = signed_angle(twist_q(delta, tw), tw)
    return max(-max_angle, min(max_angle, angle))


def _ccd_twist_angle(j_i, j_i1, eff, target_position, max_angle) -> float:
    tw = j_i1.joint.translation
    if np.linalg.norm(tw) < EPS:
        return 0.0
    to_target = j_i.location_with_cache(target_position)
    to_eff = j_i.location_with_cache(eff)
    to_target_proj = project_on_plane(to_target, tw)
    to_eff_proj = project_on_plane(to_eff, tw)
    if (np.linalg.norm(to_target_proj) < CCD_MIN_PROJECTION * np.linalg.norm(to_target)
            or np.linalg.norm(to_eff_proj) < CCD_MIN_PROJECTION * np.linalg.norm(to_eff)):
        return 0.0
    angle = min(angle_between(to_eff_proj, to_target_proj), max_angle)
    if np.dot(np.cross(to_eff_proj, to_target_proj), tw) < 0:
        angle = -angle
    return angle


def find_twisting(j_i: NodeInformation, j_i1: NodeInformation, eff: NodeInformation, target_orientation,
                  max_angle: float = TWIST_MAX_ANGLE):
    """
    twist of j_i about the bone j_i -> j_i1 that brings the effector orientation closer to the target one,
    rotations below 5 degrees are ignored
    """
    return axis_rot2q(j_i1.joint.translation, _twisting_angle(j_i, j_i1, eff, target_orientation, max_angle))


def find_ccd_twist(j_i: NodeInformation, j_i1: NodeInformation, eff: NodeInformation, target_position,
                   max_angle: float = TWIST_MAX_ANGLE):
    """
    twist of j_i about the bone j_i -> j_i1 that moves the effector towards the target position
    (CCD step restricted to the plane orthogonal to the bone)
    """
    return axis_rot2q(j_i1.joint.translation, _ccd_twist_angle(j_i, j_i1, eff, target_position, max_angle))


def find_twist(j_i: NodeInformation, j_i1: NodeInformation, eff: NodeInformation, target,
               max_t1: float = TWIST_MAX_ANGLE, max_t2: float = TWIST_MAX_ANGLE, direction: bool = False):
    angle = _ccd_twist_angle(j_i, j_i1, eff, target.position, max_t1)
    if direction:
        # both angles are signed about the same axis, opposite twists cancel out
        angle = 0.5 * angle + 0.5 * _twisting_angle(j_i, j_i1, eff, target.orientation, max_t2)
    return axis_rot2q(j_i1.joint.translation, angle)


def apply_swing_twist(j_i: NodeInformation, j_i1: NodeInformation, j_i1_hat: NodeInformation,
                      eff: NodeInformation, target, max_t1: float = TWIST_MAX_ANGLE,
                      max_t2: float = TWIST_MAX_ANGLE, enable_weight: bool = False, direction: bool = False,
                      enable_twist: bool = True, smooth: bool = False, smooth_angle: float = math.radians(10)):
    """
    swing j_i so that j_i1 points to j_i1_hat, then twist it, both through the joint constraint.
    Caches of j_i and eff are kept up to date, j_i1 must be refreshed by the caller.
    """
    q1 = find_local_rotation(j_i1, j_i1_hat, enable_weight)
    if smooth:
        q1 = clamp_q(q1, smooth_angle)
    j_i.rotate_and_update_cache(q1, True, eff)
    if enable_twist:
        if smooth:
            max_t1 = max_t2 = smooth_angle
        q2 = find_twist(j_i, j_i1, eff, target, max_t1, max_t2, direction)
        j_i.rotate_and_update_cache(q2, True, eff)


def local_rotation(before, after):
    # rotation that takes the local rotation before onto after
    return compose(inv_q(before), after)
