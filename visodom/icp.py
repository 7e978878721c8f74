"""3D-3D alignment: back-projection of depth pixels and ICP."""

from __future__ import annotations

import numpy as np

from visodom.lie import SE3

_LM_TAU = 1e-5
_LM_RETRIES = 10


def pixel2cam(p, K) -> np.ndarray:
    """Convert pixel coordinates to normalised camera coordinates."""
    K = np.asarray(K, dtype=float)
    if K.shape != (3, 3):
        raise ValueError(f"K must be 3x3, got {K.shape}")
    u, v = np.asarray(p, dtype=float).reshape(2)
    return np.array([(u - K[0, 2]) / K[0, 0], (v - K[1, 2]) / K[1, 1]])


def backproject(pixel, depth_raw, K, depth_scale: float = 5000.0) -> np.ndarray | None:
    """Return the camera-frame 3D point of a pixel, or None when the depth is zero.

    ``depth_raw`` is the raw depth-image value; metres are ``depth_raw / depth_scale``.
    """
    if depth_raw == 0:
        return None
    depth = float(depth_raw) / depth_scale
    x, y = pixel2cam(pixel, K)
    return np.array([x * depth, y * depth, depth])


def _pair(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(pts1, dtype=float)
    b = np.asarray(pts2, dtype=float)
    if a.ndim != 2 or a.shape[1] != 3 or b.shape != a.shape:
        raise ValueError("point sets must both have shape (n, 3)")
    if len(a) == 0:
        raise ValueError("point sets are empty")
    return a, b


def icp_svd(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    """Return ``R, t`` that best satisfy ``pts1 = R @ pts2 + t``, by SVD."""
    a, b = _pair(pts1, pts2)
    c1 = a.mean(axis=0)
    c2 = b.mean(axis=0)
    W = (a - c1).T @ (b - c2)
    U, _, Vt = np.linalg.svd(W)
    R = U @ Vt
    if np.linalg.det(R) < 0:
        R = -R
    t = c1 - R @ c2
    return R, t


def _residuals(pose: SE3, a: np.ndarray, b: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    q = pose.transform(b)
    return a - q, q


def icp_bundle_adjustment(pts1, pts2, iterations: int = 10) -> SE3:
    """Estimate the pose ``T`` with ``pts1 = T pts2`` by Levenberg-Marquardt from identity."""
    a, b = _pair(pts1, pts2)
    if iterations < 1:
        raise ValueError("iterations must be positive")

    pose = SE3.identity()
    lam = None
    for _ in range(iterations):
        error, q = _residuals(pose, a, b)
        cost = float(np.sum(error**2))
        n = len(q)
        J = np.zeros((n, 3, 6))
        J[:, :, :3] = -np.eye(3)
        J[:, 0, 4], J[:, 0, 5] = q[:, 2], -q[:, 1]
        J[:, 1, 3], J[:, 1, 5] = -q[:, 2], q[:, 0]
        J[:, 2, 3], J[:, 2, 4] = q[:, 1], -q[:, 0]
        H = np.einsum("nij,nik->jk", J, J)
        g = -np.einsum("nij,ni->j", J, error)
        if lam is None:
            lam = _LM_TAU * float(np.max(np.diag(H)))

        improved = False
        for _ in range(_LM_RETRIES):
            try:
                dx = np.linalg.solve(H + lam * np.eye(6), g)
            except np.linalg.LinAlgError:
                lam *= 2.0
                continue
            if not np.all(np.isfinite(dx)):
                break
            candidate = SE3.exp(dx) @ pose
            new_error, _ = _residuals(candidate, a, b)
            if float(np.sum(new_error**2)) < cost:
                pose = candidate
                lam = max(lam / 3.0, 1e-12)
                improved = True
                break
            lam *= 2.0
        if not improved:
            break
    return pose