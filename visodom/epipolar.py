"""Two-view geometry: fundamental and essential matrices and relative pose."""

from __future__ import annotations

import numpy as np

_DISTANCE_THRESHOLD = 50.0


def _points(values, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"{name} must have shape (n, 2), got {arr.shape}")
    return arr


def _pair(points1, points2) -> tuple[np.ndarray, np.ndarray]:
    p1 = _points(points1, "points1")
    p2 = _points(points2, "points2")
    if len(p1) != len(p2):
        raise ValueError("point sets differ in length")
    if len(p1) < 8:
        raise ValueError("at least 8 point correspondences are needed")
    return p1, p2


def _skew(v) -> np.ndarray:
    x, y, z = np.asarray(v, dtype=float).reshape(3)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def _hartley(points: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    centroid = points.mean(axis=0)
    mean_dist = np.linalg.norm(points - centroid, axis=1).mean()
    s = np.sqrt(2.0) / mean_dist if mean_dist > 0 else 1.0
    T = np.array([[s, 0.0, -s * centroid[0]], [0.0, s, -s * centroid[1]], [0.0, 0.0, 1.0]])
    homog = np.column_stack([points, np.ones(len(points))]) @ T.T
    return homog, T


def _linear_epipolar(p1: np.ndarray, p2: np.ndarray) -> np.ndarray:
    """Normalised eight-point estimate with rank two enforced."""
    h1, T1 = _hartley(p1)
    h2, T2 = _hartley(p2)
    x1, y1 = h1[:, 0], h1[:, 1]
    x2, y2 = h2[:, 0], h2[:, 1]
    ones = np.ones(len(p1))
    A = np.column_stack([x2 * x1, x2 * y1, x2, y2 * x1, y2 * y1, y2, x1, y1, ones])
    _, _, vt = np.linalg.svd(A)
    M = vt[-1].reshape(3, 3)
    u, s, vt = np.linalg.svd(M)
    s[2] = 0.0
    M = u @ np.diag(s) @ vt
    return T2.T @ M @ T1


def _normalized(points: np.ndarray, focal: float, principal_point) -> np.ndarray:
    return (points - np.asarray(principal_point, dtype=float)) / float(focal)


def find_fundamental_8point(points1, points2) -> np.ndarray:
    """Estimate the fundamental matrix with ``x2^T F x1 = 0``, scaled to ``F[2,2] = 1``."""
    p1, p2 = _pair(points1, points2)
    F = _linear_epipolar(p1, p2)
    if abs(F[2, 2]) > np.finfo(float).eps:
        return F / F[2, 2]
    return F / np.linalg.norm(F)


def find_essential(points1, points2, focal, principal_point) -> np.ndarray:
    """Estimate the essential matrix from pixel correspondences.

    Uses a linear least-squares fit over all correspondences and then
    projects onto the essential manifold (singular values 1, 1, 0).
    """
    p1, p2 = _pair(points1, points2)
    E = _linear_epipolar(
        _normalized(p1, focal, principal_point), _normalized(p2, focal, principal_point)
    )
    u, _, vt = np.linalg.svd(E)
    return u @ np.diag([1.0, 1.0, 0.0]) @ vt


def decompose_essential(essential) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return the two candidate rotations and the unit translation of ``E``."""
    E = np.asarray(essential, dtype=float)
    if E.shape != (3, 3):
        raise ValueError(f"essential matrix must be 3x3, got {E.shape}")
    u, _, vt = np.linalg.svd(E)
    if np.linalg.det(u) < 0:
        u = -u
    if np.linalg.det(vt) < 0:
        vt = -vt
    W = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    return u @ W @ vt, u @ W.T @ vt, u[:, 2].copy()


def _triangulate(R: np.ndarray, t: np.ndarray, x1: np.ndarray, x2: np.ndarray) -> np.ndarray:
    P1 = np.hstack([np.eye(3), np.zeros((3, 1))])
    P2 = np.hstack([R, t.reshape(3, 1)])
    A = np.stack(
        [
            x1[:, 0:1] * P1[2] - P1[0],
            x1[:, 1:2] * P1[2] - P1[1],
            x2[:, 0:1] * P2[2] - P2[0],
            x2[:, 1:2] * P2[2] - P2[1],
        ],
        axis=1,
    )
    _, _, vt = np.linalg.svd(A)
    return vt[:, -1, :]


def _count_in_front(R, t, x1, x2) -> int:
    X = _triangulate(R, t, x1, x2)
    w = X[:, 3]
    valid = np.abs(w) > 0
    Xe = np.zeros((len(X), 3))
    Xe[valid] = X[valid, :3] / w[valid, None]
    d1 = Xe[:, 2]
    d2 = (Xe @ R.T + t)[:, 2]
    good = valid & (d1 > 0) & (d1 < _DISTANCE_THRESHOLD) & (d2 > 0) & (d2 < _DISTANCE_THRESHOLD)
    return int(np.count_nonzero(good))


def recover_pose(essential, points1, points2, focal, principal_point):
    """Pick the rotation and unit translation that place most points in front of both cameras."""
    p1 = _points(points1, "points1")
    p2 = _points(points2, "points2")
    if len(p1) != len(p2) or len(p1) == 0:
        raise ValueError("point sets must be non-empty and of equal length")
    x1 = _normalized(p1, focal, principal_point)
    x2 = _normalized(p2, focal, principal_point)
    R1, R2, t = decompose_essential(essential)
    candidates = [(R1, t), (R1, -t), (R2, t), (R2, -t)]
    R, t_best = max(candidates, key=lambda c: _count_in_front(c[0], c[1], x1, x2))
    return R, t_best


def epipolar_constraint(pt1, pt2, R, t, K) -> float:
    """Return ``y2^T t^ R y1`` for pixel points, zero for a consistent pose."""
    K = np.asarray(K, dtype=float)

    def to_cam(p):
        u, v = np.asarray(p, dtype=float).reshape(2)
        return np.array([(u - K[0, 2]) / K[0, 0], (v - K[1, 2]) / K[1, 1], 1.0])

    y1 = to_cam(pt1)
    y2 = to_cam(pt2)
    return float(y2 @ _skew(t) @ np.asarray(R, dtype=float) @ y1)