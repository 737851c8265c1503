import math

import numpy as np

from trik.utils import (IDENTITY, X_AXIS, Y_AXIS, Z_AXIS, angle_between, axis_rot2q, compose, inv_q, inv_rot_point,
                        normalize_q, q2r, r2q, rot_point, signed_angle, twist_q, vec, vector_norm, vector_rot_q)


class Constraint:
    """
    A joint constraint receives the rotation a solver wants to apply (w.r.t the joint local frame)
    and returns the closest rotation the joint is allowed to perform.
    """

    def constrain_rotation(self, rotation, joint):
        raise NotImplementedError

    def constrain_translation(self, translation, joint):
        return translation


def _clamp_angle(angle, min_angle, max_angle):
    # bounds are [-min_angle, max_angle], out of range values snap to the closest bound on the circle
    if -min_angle <= angle <= max_angle:
        return angle
    angle = angle + 2 * math.pi if angle < 0 else angle
    return max_angle if angle - max_angle < (2 * math.pi - min_angle) - angle else -min_angle


def _rest_rotation(up, twist):
    # rest rotation aligns z with twist and y with up
    delta = vector_rot_q(Z_AXIS, twist)
    tw = inv_rot_point(delta, up)
    angle = angle_between(tw, Y_AXIS)
    if np.dot(np.cross(Y_AXIS, tw), Z_AXIS) < 0:
        angle = -angle
    return compose(delta, axis_rot2q(Z_AXIS, angle))


class Hinge(Constraint):
    """
    1-DOF rotational constraint about the twist axis.

    idle rotation: joint rotation against which any further rotation is compared
    rest rotation: takes the z / y axes of the idle frame onto twist / up
    Rotations are accepted while the angle about twist stays in [-min_angle, max_angle].
    """

    def __init__(self, min_angle: float, max_angle: float, reference=None, up=None, twist=None):
        if not (0 <= min_angle <= math.pi and 0 <= max_angle <= math.pi):
            raise ValueError("hinge bounds must lie in [0, pi]")
        self.min_angle = float(min_angle)
        self.max_angle = float(max_angle)
        self.idle_rotation = IDENTITY.copy()
        self.rest_rotation = IDENTITY.copy()
        self.orientation = IDENTITY.copy()
        if reference is not None or up is not None or twist is not None:
            self.set_rest_rotation(IDENTITY if reference is None else reference,
                                   Y_AXIS if up is None else up, Z_AXIS if twist is None else twist)

    def set_rest_rotation(self, reference, up, twist):
        self.idle_rotation = normalize_q(reference)
        self.rest_rotation = _rest_rotation(vec(up), vec(twist))
        self.orientation = compose(self.idle_rotation, self.rest_rotation)

    def axis(self, joint) -> np.ndarray:
        """
        hinge axis expressed in the joint local frame
        """
        return vector_norm(rot_point(compose(inv_q(joint.rotation), self.orientation), Z_AXIS))

    def constrain_rotation(self, rotation, joint):
        desired = compose(inv_q(self.orientation), joint.rotation, rotation, self.rest_rotation)
        change = signed_angle(twist_q(desired, Z_AXIS), Z_AXIS)
        change = _clamp_angle(change, self.min_angle, self.max_angle)
        return compose(inv_q(joint.rotation), self.orientation, axis_rot2q(Z_AXIS, change),
                       inv_q(self.rest_rotation))


class BallAndSocket(Constraint):
    """
    Swing limited by an elliptic cone (down / up / left / right semi axes, in radians, below pi / 2)
    around the twist axis, plus an optional twist range.
    """

    def __init__(self, down=math.pi / 2, up=math.pi / 2, left=math.pi / 2, right=math.pi / 2):
        self.down = down
        self.up = up
        self.left = left
        self.right = right
        self.min_twist = math.pi
        self.max_twist = math.pi
        self.idle_rotation = IDENTITY.copy()
        self.rest_rotation = IDENTITY.copy()

    def set_rest_rotation(self, reference, up, twist):
        self.idle_rotation = normalize_q(reference)
        self.rest_rotation = _rest_rotation(vec(up), vec(twist))

    def set_twist_limits(self, min_twist, max_twist):
        self.min_twist = min_twist
        self.max_twist = max_twist

    def constrain_rotation(self, rotation, joint):
        delta_rest = compose(inv_q(self.rest_rotation), inv_q(self.idle_rotation), joint.rotation, rotation,
                             self.rest_rotation)
        twist = twist_q(delta_rest, Z_AXIS)
        swing = compose(delta_rest, inv_q(twist))
        swing = vector_rot_q(Z_AXIS, self.apply(rot_point(swing, Z_AXIS)))
        twist_angle = _clamp_angle(signed_angle(twist, Z_AXIS), self.min_twist, self.max_twist)
        change = compose(swing, axis_rot2q(Z_AXIS, twist_angle))
        return compose(inv_q(joint.rotation), self.idle_rotation, self.rest_rotation, change,
                       inv_q(self.rest_rotation))

    def apply(self, target):
        """
        closest direction to target inside the cone, target given w.r.t the rest frame
        """
        target = vec(target)
        scalar = float(np.dot(target, Z_AXIS))
        if abs(scalar) < 1e-6:
            scalar = 1e-6
        proj = Z_AXIS * scalar
        adjust = target - proj
        x_aspect = float(np.dot(adjust, X_AXIS))
        y_aspect = float(np.dot(adjust, Y_AXIS))
        x_bound = self.right if x_aspect >= 0 else self.left
        y_bound = self.up if y_aspect >= 0 else self.down
        in_bounds, inverted = True, False
        length = np.linalg.norm(proj)
        if scalar < 0:
            if x_bound > math.pi / 2 and y_bound > math.pi / 2:
                x_bound = length * math.tan(math.pi - x_bound)
                y_bound = length * math.tan(math.pi - y_bound)
                inverted = True
            else:
                x_bound = length * math.tan(x_bound)
                y_bound = length * math.tan(y_bound)
                proj = -proj
                in_bounds = False
        else:
            x_bound = length * (1e10 if x_bound >= math.pi / 2 else math.tan(x_bound))
            y_bound = length * (1e10 if y_bound >= math.pi / 2 else math.tan(y_bound))
        x_bound, y_bound = max(x_bound, 1e-9), max(y_bound, 1e-9)
        ellipse = (x_aspect * x_aspect) / (x_bound * x_bound) + (y_aspect * y_aspect) / (y_bound * y_bound)
        in_bounds = in_bounds and ellipse <= 1
        if in_bounds == inverted:
            x, y = closest_point_to_ellipse(x_bound, y_bound, x_aspect, y_aspect)
            f = proj + X_AXIS * x + Y_AXIS * y
            return vector_norm(f) * np.linalg.norm(target)
        return target


def closest_point_to_ellipse(semi_major, semi_minor, px, py):
    # iterative projection onto the ellipse, exact enough after three steps
    a, b = semi_major, semi_minor
    qx, qy = abs(px), abs(py)
    tx = ty = 0.707
    for _ in range(3):
        x, y = a * tx, b * ty
        ex = (a * a - b * b) * tx ** 3 / a
        ey = (b * b - a * a) * ty ** 3 / b
        rx, ry = x - ex, y - ey
        dx, dy = qx - ex, qy - ey
        r = math.hypot(rx, ry)
        q = math.hypot(dx, dy) or 1e-12
        tx = min(1.0, max(0.0, (dx * r / q + ex) / a))
        ty = min(1.0, max(0.0, (dy * r / q + ey) / b))
        t = math.hypot(tx, ty) or 1e-12
        tx /= t
        ty /= t
    return math.copysign(a * tx, px), math.copysign(b * ty, py)


class EulerLimits(Constraint):
    """
    per axis euler range (radians) of the joint rotation w.r.t its idle rotation
    """

    def __init__(self, x: list = None, y: list = None, z: list = None, reference=None, axes="sxyz"):
        self.x = x
        self.y = y
        self.z = z
        self.axes = axes
        self.idle_rotation = IDENTITY.copy() if reference is None else normalize_q(reference)
        self.lower_limit = None
        self.upper_limit = None
        self.init_limit()

    def init_limit(self):
        scopes = [self.x, self.y, self.z]
        self.lower_limit = np.array([-math.pi if s is None else s[0] for s in scopes])
        self.upper_limit = np.array([math.pi if s is None else s[1] for s in scopes])

    def constrain_rotation(self, rotation, joint):
        relative = compose(inv_q(self.idle_rotation), joint.rotation, rotation)
        euler = np.array(q2r(relative, self.axes))
        clamped = np.clip(euler, self.lower_limit, self.upper_limit)
        if np.allclose(clamped, euler):
            return normalize_q(rotation)
        return compose(inv_q(joint.rotation), self.idle_rotation, r2q(clamped, self.axes))
