"""Reprojection model for cameras with two-term radial distortion.

A camera is a 9-vector: angle-axis rotation (0-2), translation (3-5),
focal length (6) and the second and fourth order radial distortion
coefficients (7-8). Projection follows the convention in which the
camera looks down its negative z axis.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from visodom.rotation import angle_axis_rotate_point

CAMERA_SIZE = 9
POINT_SIZE = 3


def _vector(values, size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have shape ({size},), got {arr.shape}")
    return arr


def cam_projection_with_distortion(camera, point) -> np.ndarray:
    """Project a 3D point with a 9-parameter camera onto the image plane.

    The result is relative to the image centre.
    """
    cam = _vector(camera, CAMERA_SIZE, "camera")
    pt = _vector(point, POINT_SIZE, "point")
    p = angle_axis_rotate_point(cam[:3], pt) + cam[3:6]

    xp = -p[0] / p[2]
    yp = -p[1] / p[2]

    l1, l2 = cam[7], cam[8]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (l1 + l2 * r2)

    focal = cam[6]
    return np.array([focal * distortion * xp, focal * distortion * yp])


@dataclass(frozen=True)
class SnavelyReprojectionError:
    """Residual between a projected point and its observed image position."""

    observed_x: float
    observed_y: float

    def __call__(self, camera, point) -> np.ndarray:
        predictions = cam_projection_with_distortion(camera, point)
        return predictions - np.array([self.observed_x, self.observed_y])