"""Rotations and rigid-body motions as Lie groups.

Tangent vectors of SE(3) are ordered translation first, rotation second:
``xi = (rho, phi)``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np
from scipy.spatial.transform import Rotation

_SMALL_ANGLE = 1e-10


def hat(v) -> np.ndarray:
    """Return the skew-symmetric matrix with ``hat(v) @ w == cross(v, w)``."""
    arr = np.asarray(v, dtype=float)
    if arr.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {arr.shape}")
    x, y, z = arr
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def so3_exp(omega) -> np.ndarray:
    """Map a rotation vector to a rotation matrix (Rodrigues' formula)."""
    w = np.asarray(omega, dtype=float)
    W = hat(w)
    theta = float(np.linalg.norm(w))
    if theta < _SMALL_ANGLE:
        return np.eye(3) + W + 0.5 * (W @ W)
    a = math.sin(theta) / theta
    b = (1.0 - math.cos(theta)) / (theta * theta)
    return np.eye(3) + a * W + b * (W @ W)


def so3_log(rotation) -> np.ndarray:
    """Map a rotation matrix to its rotation vector."""
    R = np.asarray(rotation, dtype=float)
    if R.shape != (3, 3):
        raise ValueError(f"expected a 3x3 matrix, got shape {R.shape}")
    return Rotation.from_matrix(R).as_rotvec()


def _left_jacobian(phi: np.ndarray) -> np.ndarray:
    W = hat(phi)
    theta = float(np.linalg.norm(phi))
    if theta < _SMALL_ANGLE:
        return np.eye(3) + 0.5 * W + (W @ W) / 6.0
    theta2 = theta * theta
    a = (1.0 - math.cos(theta)) / theta2
    b = (theta - math.sin(theta)) / (theta2 * theta)
    return np.eye(3) + a * W + b * (W @ W)


@dataclass(eq=False)
class SE3:
    """A rigid-body transform ``p -> rotation @ p + translation``."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.rotation = np.array(self.rotation, dtype=float)
        self.translation = np.array(self.translation, dtype=float).reshape(-1)
        if self.rotation.shape != (3, 3):
            raise ValueError(f"rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(f"translation must be a 3-vector, got {self.translation.shape}")

    @classmethod
    def identity(cls) -> "SE3":
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def exp(cls, xi) -> "SE3":
        """Map a tangent vector ``(rho, phi)`` to a transform."""
        v = np.asarray(xi, dtype=float)
        if v.shape != (6,):
            raise ValueError(f"expected a 6-vector, got shape {v.shape}")
        rho, phi = v[:3], v[3:]
        return cls(so3_exp(phi), _left_jacobian(phi) @ rho)

    def __matmul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self.rotation @ other.rotation,
                self.rotation @ other.translation + self.translation,
            )
        return self.transform(other)

    def transform(self, points) -> np.ndarray:
        """Apply the transform to one point ``(3,)`` or to points ``(n, 3)``."""
        p = np.asarray(points, dtype=float)
        if p.shape == (3,):
            return self.rotation @ p + self.translation
        if p.ndim == 2 and p.shape[1] == 3:
            return p @ self.rotation.T + self.translation
        raise ValueError(f"points must have shape (3,) or (n, 3), got {p.shape}")

    def matrix(self) -> np.ndarray:
        """Return the homogeneous 4x4 matrix."""
        m = np.eye(4)
        m[:3, :3] = self.rotation
        m[:3, 3] = self.translation
        return m

    def inverse(self) -> "SE3":
        rt = self.rotation.T
        return SE3(rt, -rt @ self.translation)