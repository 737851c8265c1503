import math

import numpy as np

from trik.utils import compose, inv_q, q_angle, q_dot

# position is WEIGHT_RATIO times more important than orientation, WEIGHT_RATIO_NEAR once the
# effector is closer than WEIGHT_THRESHOLD average bones to the target
WEIGHT_RATIO = 3.0
WEIGHT_RATIO_NEAR = 1.2
WEIGHT_THRESHOLD = 0.1


def position_error(eff_position, target_position) -> float:
    return float(np.linalg.norm(np.asarray(target_position) - np.asarray(eff_position)))


def orientation_error(eff_orientation, target_orientation, degrees: bool = False) -> float:
    """
    1 - dot^2 in [0, 1], the same quantity expressed as an angle when degrees is set
    """
    if degrees:
        return math.degrees(q_angle(compose(inv_q(eff_orientation), target_orientation)))
    return 1.0 - q_dot(eff_orientation, target_orientation) ** 2


def weight_ratio(distance: float, avg_bone_length: float) -> float:
    if distance / avg_bone_length < WEIGHT_THRESHOLD:
        return WEIGHT_RATIO_NEAR
    return WEIGHT_RATIO


def error(eff_position, target_position, eff_orientation, target_orientation, w_pos: float = None,
          w_orient: float = 1.0, direction: bool = False, avg_bone_length: float = 1.0) -> float:
    """
    discrepancy between an end effector and its target

    :param w_pos: weight of the position term, chosen from the distance when None
    :param direction: without direction the raw distance is returned
    :param avg_bone_length: normalizes the position term
    :return:
    """
    distance = position_error(eff_position, target_position)
    if not direction:
        return distance
    if avg_bone_length <= 0:
        avg_bone_length = 1.0
    if w_pos is None:
        w_pos = weight_ratio(distance, avg_bone_length)
    position_term = (distance / avg_bone_length) ** 2
    return w_pos * position_term + w_orient * orientation_error(eff_orientation, target_orientation)
