import math

import numpy as np
import transformations

IDENTITY = np.array([1.0, 0.0, 0.0, 0.0])
X_AXIS = np.array([1.0, 0.0, 0.0])
Y_AXIS = np.array([0.0, 1.0, 0.0])
Z_AXIS = np.array([0.0, 0.0, 1.0])

EPS = 1e-7


def vec(v) -> np.ndarray:
    return np.array(v, dtype=np.float64).reshape(3)


def vector_norm(vector: np.ndarray):
    return vector / (np.linalg.norm(vector) + EPS)


def angle_between(a: np.ndarray, b: np.ndarray) -> float:
    """
    angle in [0, pi] between two vectors, 0 when one of them is null
    """
    cross = np.linalg.norm(np.cross(a, b))
    dot = float(np.dot(a, b))
    if cross == 0 and dot == 0:
        return 0.0
    return math.atan2(cross, dot)


def orthogonal_vector(vector: np.ndarray) -> np.ndarray:
    # pick the two largest components so that the result is never null for a non null vector
    x, y, z = np.abs(vector)
    if y >= 0.9 * x and z >= 0.9 * x:
        return np.array([0.0, -vector[2], vector[1]])
    if x >= 0.9 * y and z >= 0.9 * y:
        return np.array([-vector[2], 0.0, vector[0]])
    return np.array([-vector[1], vector[0], 0.0])


def project_on_axis(vector: np.ndarray, axis: np.ndarray) -> np.ndarray:
    sq = float(np.dot(axis, axis))
    if sq < EPS:
        return np.zeros(3)
    return axis * (np.dot(vector, axis) / sq)


def project_on_plane(vector: np.ndarray, normal: np.ndarray) -> np.ndarray:
    return vector - project_on_axis(vector, normal)


def normalize_q(q):
    q = np.asarray(q, dtype=np.float64)
    norm = np.linalg.norm(q)
    if norm == 0:
        return IDENTITY.copy()
    return q / norm


def axis_rot2q(vector, theta):
    """
    quaternion of a rotation of theta radians about vector, identity when vector is null
    """
    vector = np.asarray(vector, dtype=np.float64)
    if np.linalg.norm(vector) < EPS or theta == 0:
        return IDENTITY.copy()
    return transformations.quaternion_about_axis(theta, vector)


def vector_rot_q(initial, target):
    """
    shortest rotation that takes the direction of initial onto the direction of target
    """
    initial = np.asarray(initial, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64)
    if np.dot(initial, initial) < EPS or np.dot(target, target) < EPS:
        return IDENTITY.copy()
    axis = np.cross(initial, target)
    theta = angle_between(initial, target)
    if np.linalg.norm(axis) < EPS:
        if theta < math.pi / 2:
            return IDENTITY.copy()
        axis = orthogonal_vector(initial)
    return axis_rot2q(axis, theta)


def compose(*qs):
    result = IDENTITY.copy()
    for q in qs:
        result = transformations.quaternion_multiply(result, q)
    return normalize_q(result)


def inv_q(q):
    return transformations.quaternion_conjugate(normalize_q(q))


def rot_point(q, p):
    p = np.append(p, 1)
    return np.dot(transformations.quaternion_matrix(q), p)[:-1]


def inv_rot_point(q, p):
    return rot_point(inv_q(q), p)


def q_angle(q) -> float:
    """
    rotation angle in [0, pi]
    """
    q = np.asarray(q, dtype=np.float64)
    # atan2 keeps small angles exact
    return 2.0 * math.atan2(float(np.linalg.norm(q[1:])), abs(float(q[0])))


def q_axis(q) -> np.ndarray:
    """
    rotation axis matching q_angle, null vector for the identity
    """
    q = normalize_q(q)
    axis = q[1:] if q[0] >= 0 else -q[1:]
    sinus = np.linalg.norm(axis)
    if sinus < 1e-12:
        return np.zeros(3)
    return axis / sinus


def signed_angle(q, axis) -> float:
    """
    angle of q measured about axis, negative when q turns the other way
    """
    angle = q_angle(q)
    if np.dot(q_axis(q), axis) < 0:
        return -angle
    return angle


def twist_q(q, axis):
    """
    twist component of q about axis (swing-twist decomposition)
    """
    q = normalize_q(q)
    proj = project_on_axis(q[1:], np.asarray(axis, dtype=np.float64))
    twist = np.array([q[0], proj[0], proj[1], proj[2]])
    if np.linalg.norm(twist) < 1e-12:
        return IDENTITY.copy()
    return normalize_q(twist)


def clamp_q(q, max_angle):
    angle = q_angle(q)
    if angle > max_angle:
        return axis_rot2q(q_axis(q), max_angle)
    return normalize_q(q)


def q_dot(q0, q1) -> float:
    return float(np.dot(normalize_q(q0), normalize_q(q1)))


def q_equal(q0, q1, atol=1e-6) -> bool:
    return abs(abs(q_dot(q0, q1)) - 1.0) < atol


def q2r(q, axes="sxyz"):
    return transformations.euler_from_quaternion(q, axes)


def r2q(rad, axes="sxyz"):
    return transformations.quaternion_from_euler(*rad, axes)


def matrix2q(matrix):
    m = np.eye(4)
    m[:3, :3] = np.asarray(matrix)[:3, :3]
    return normalize_q(transformations.quaternion_from_matrix(m))
