"""Camera pose from 3D-2D correspondences by Gauss-Newton."""

from __future__ import annotations

import numpy as np

from visodom.lie import SE3


def _intrinsics(K) -> tuple[float, float, float, float]:
    K = np.asarray(K, dtype=float)
    if K.shape != (3, 3):
        raise ValueError(f"K must be 3x3, got {K.shape}")
    return K[0, 0], K[1, 1], K[0, 2], K[1, 2]


def _points(values, dim: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != dim:
        raise ValueError(f"{name} must have shape (n, {dim}), got {arr.shape}")
    return arr


def _project_camera(pc: np.ndarray, K) -> np.ndarray:
    fx, fy, cx, cy = _intrinsics(K)
    return np.column_stack([fx * pc[:, 0] / pc[:, 2] + cx, fy * pc[:, 1] / pc[:, 2] + cy])


def _jacobians(pc: np.ndarray, K) -> np.ndarray:
    fx, fy, _, _ = _intrinsics(K)
    x, y, z = pc[:, 0], pc[:, 1], pc[:, 2]
    inv_z = 1.0 / z
    inv_z2 = inv_z * inv_z
    zero = np.zeros_like(x)
    row0 = np.column_stack(
        [-fx * inv_z, zero, fx * x * inv_z2, fx * x * y * inv_z2,
         -fx - fx * x * x * inv_z2, fx * y * inv_z]
    )
    row1 = np.column_stack(
        [zero, -fy * inv_z, fy * y * inv_z2, fy + fy * y * y * inv_z2,
         -fy * x * y * inv_z2, -fy * x * inv_z]
    )
    return np.stack([row0, row1], axis=1)


def project(points_3d, K, pose: SE3 | None = None) -> np.ndarray:
    """Project world points through ``pose`` and the pinhole ``K`` to pixels."""
    pts = _points(points_3d, 3, "points_3d")
    pose = SE3.identity() if pose is None else pose
    return _project_camera(pose.transform(pts), K)


def reprojection_cost(points_3d, points_2d, K, pose: SE3 | None = None) -> float:
    """Sum of squared pixel errors of the projected points."""
    obs = _points(points_2d, 2, "points_2d")
    proj = project(points_3d, K, pose)
    if len(proj) != len(obs):
        raise ValueError("point sets differ in length")
    return float(np.sum((obs - proj) ** 2))


def pose_jacobian(point_cam, K) -> np.ndarray:
    """Jacobian (2x6) of ``observed - projected`` with respect to a left pose update.

    ``point_cam`` is the point in the camera frame.
    """
    p = np.asarray(point_cam, dtype=float)
    if p.shape != (3,):
        raise ValueError(f"point_cam must be a 3-vector, got {p.shape}")
    return _jacobians(p.reshape(1, 3), K)[0]


def bundle_adjustment_gauss_newton(
    points_3d, points_2d, K, pose: SE3 | None = None, iterations: int = 10
) -> SE3:
    """Refine a camera pose by minimising reprojection error with Gauss-Newton.

    Stops early when the step is not finite, the cost stops decreasing or
    the step norm falls below ``1e-6``.
    """
    pts = _points(points_3d, 3, "points_3d")
    obs = _points(points_2d, 2, "points_2d")
    if len(pts) != len(obs):
        raise ValueError("point sets differ in length")
    if iterations < 1:
        raise ValueError("iterations must be positive")
    pose = SE3.identity() if pose is None else pose

    last_cost = 0.0
    for iteration in range(iterations):
        pc = pose.transform(pts)
        error = obs - _project_camera(pc, K)
        cost = float(np.sum(error**2))
        J = _jacobians(pc, K)
        H = np.einsum("nij,nik->jk", J, J)
        b = -np.einsum("nij,ni->j", J, error)

        try:
            dx = np.linalg.solve(H, b)
        except np.linalg.LinAlgError:
            break
        if not np.all(np.isfinite(dx)):
            break
        if iteration > 0 and cost >= last_cost:
            break

        pose = SE3.exp(dx) @ pose
        last_cost = cost
        if np.linalg.norm(dx) < 1e-6:
            break
    return pose