"""Triangulation of matched points from two calibrated views."""

from __future__ import annotations

import numpy as np

DEPTH_UPPER = 50.0
DEPTH_LOWER = 10.0


def _points(values, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"{name} must have shape (n, 2), got {arr.shape}")
    return arr


def triangulate(pts_1, pts_2, R, t) -> np.ndarray:
    """Triangulate normalised camera points seen from ``[I|0]`` and ``[R|t]``.

    ``pts_1`` and ``pts_2`` are ``(n, 2)`` arrays of normalised image
    coordinates. Returns the ``(n, 3)`` points in the first camera's frame.
    """
    x1 = _points(pts_1, "pts_1")
    x2 = _points(pts_2, "pts_2")
    if len(x1) != len(x2):
        raise ValueError("point sets differ in length")
    rotation = np.asarray(R, dtype=float)
    if rotation.shape != (3, 3):
        raise ValueError(f"R must be 3x3, got {rotation.shape}")
    translation = np.asarray(t, dtype=float).reshape(-1)
    if translation.shape != (3,):
        raise ValueError(f"t must be a 3-vector, got {translation.shape}")
    if len(x1) == 0:
        return np.zeros((0, 3))

    T1 = np.hstack([np.eye(3), np.zeros((3, 1))])
    T2 = np.hstack([rotation, translation.reshape(3, 1)])
    A = np.stack(
        [
            x1[:, 0:1] * T1[2] - T1[0],
            x1[:, 1:2] * T1[2] - T1[1],
            x2[:, 0:1] * T2[2] - T2[0],
            x2[:, 1:2] * T2[2] - T2[1],
        ],
        axis=1,
    )
    _, _, vt = np.linalg.svd(A)
    homogeneous = vt[:, -1, :]
    return homogeneous[:, :3] / homogeneous[:, 3:4]


def depth_color(depth: float) -> tuple[float, float, float]:
    """Colour (blue, green, red) for plotting a depth, clamped to ``[10, 50]``."""
    th_range = DEPTH_UPPER - DEPTH_LOWER
    d = min(max(float(depth), DEPTH_LOWER), DEPTH_UPPER)
    return (255.0 * d / th_range, 0.0, 255.0 * (1.0 - d / th_range))