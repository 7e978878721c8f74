"""Angle-axis and quaternion rotation helpers.

Quaternions are stored scalar first: ``(w, x, y, z)``.
"""

from __future__ import annotations

import math

import numpy as np

_EPS = float(np.finfo(float).eps)


def _vector(values, size: int) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"expected a vector of length {size}, got shape {arr.shape}")
    return arr


def dot_product(x, y) -> float:
    """Dot product of two 3-vectors."""
    a = _vector(x, 3)
    b = _vector(y, 3)
    return float(a[0] * b[0] + a[1] * b[1] + a[2] * b[2])


def cross_product(x, y) -> np.ndarray:
    """Cross product of two 3-vectors."""
    a = _vector(x, 3)
    b = _vector(y, 3)
    return np.array(
        [
            a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0],
        ]
    )


def angle_axis_to_quaternion(angle_axis) -> np.ndarray:
    """Convert an angle-axis vector to a unit quaternion ``(w, x, y, z)``."""
    a = _vector(angle_axis, 3)
    theta_squared = dot_product(a, a)
    if theta_squared > _EPS:
        theta = math.sqrt(theta_squared)
        half_theta = 0.5 * theta
        k = math.sin(half_theta) / theta
        w = math.cos(half_theta)
    else:
        k = 0.5
        w = 1.0
    return np.array([w, a[0] * k, a[1] * k, a[2] * k])


def quaternion_to_angle_axis(quaternion) -> np.ndarray:
    """Convert a quaternion ``(w, x, y, z)`` to an angle-axis vector."""
    q = _vector(quaternion, 4)
    v = q[1:]
    sin_squared_theta = float(np.dot(v, v))
    if sin_squared_theta > _EPS:
        sin_theta = math.sqrt(sin_squared_theta)
        cos_theta = q[0]
        if cos_theta < 0.0:
            two_theta = 2.0 * math.atan2(-sin_theta, -cos_theta)
        else:
            two_theta = 2.0 * math.atan2(sin_theta, cos_theta)
        k = two_theta / sin_theta
    else:
        k = 2.0
    return v * k


def angle_axis_rotate_point(angle_axis, pt) -> np.ndarray:
    """Rotate a 3D point by the rotation an angle-axis vector describes."""
    a = _vector(angle_axis, 3)
    p = _vector(pt, 3)
    theta2 = dot_product(a, a)
    if theta2 > _EPS:
        theta = math.sqrt(theta2)
        cos_theta = math.cos(theta)
        sin_theta = math.sin(theta)
        w = a / theta
        w_cross_pt = cross_product(w, p)
        tmp = dot_product(w, p) * (1.0 - cos_theta)
        return p * cos_theta + w_cross_pt * sin_theta + w * tmp
    # First-order approximation near zero rotation: R * p = p + w x p.
    return p + cross_product(a, p)