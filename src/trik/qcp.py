from typing import Sequence

import numpy as np

from trik.utils import IDENTITY, matrix2q, rot_point, vector_rot_q

# points this close to the origin carry no rotational information
MIN_NORM = 0.1


def fit_rotation(desired: Sequence, current: Sequence) -> np.ndarray:
    """
    Rotation R (quaternion) minimizing sum |desired_i - R current_i|^2 (Kabsch).

    Both point sets are expressed in a common frame and are not centered, the rotation is about
    the origin of that frame.

    :param desired: points that stay fixed
    :param current: points to be rotated
    :return: identity when no usable correspondence is left
    """
    pairs = [(np.asarray(d, dtype=np.float64), np.asarray(c, dtype=np.float64)) for d, c in zip(desired, current)]
    pairs = [(d, c) for d, c in pairs if np.linalg.norm(d) >= MIN_NORM and np.linalg.norm(c) >= MIN_NORM]
    if not pairs:
        return IDENTITY.copy()
    if len(pairs) == 1:
        return vector_rot_q(pairs[0][1], pairs[0][0])

    reference = np.array([c for _, c in pairs])
    measured = np.array([d for d, _ in pairs])

    # cross-covariance matrix
    H = reference.T @ measured
    U, S, Vt = np.linalg.svd(H)
    # handle reflection case
    d = np.sign(np.linalg.det(Vt.T @ U.T))
    if d == 0:
        d = 1.0
    D = np.diag([1.0, 1.0, d])
    R = Vt.T @ D @ U.T
    return matrix2q(R)


def rmsd(desired: Sequence, current: Sequence, rotation) -> float:
    """
    root mean square distance between desired and the rotated current points
    """
    if len(desired) == 0:
        return 0.0
    desired = np.asarray(desired, dtype=np.float64)
    rotated = np.array([rot_point(rotation, c) for c in current])
    return float(np.sqrt(np.mean(np.sum((desired - rotated) ** 2, axis=1))))
