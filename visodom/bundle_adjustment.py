"""Bundle adjustment of BAL problems by robust nonlinear least squares."""

from __future__ import annotations

import sys

import numpy as np
from scipy.optimize import OptimizeResult, least_squares
from scipy.sparse import coo_matrix

from visodom.bal import BALProblem

_EPS = float(np.finfo(float).eps)
_CAMERA = 9
_POINT = 3


def _rotate(angle_axis: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Rotate each point by its own angle-axis vector."""
    theta2 = np.einsum("ij,ij->i", angle_axis, angle_axis)
    big = theta2 > _EPS
    theta = np.where(big, np.sqrt(np.where(big, theta2, 1.0)), 1.0)
    w = angle_axis / theta[:, None]
    cos_t = np.cos(theta)[:, None]
    sin_t = np.sin(theta)[:, None]
    dot = np.einsum("ij,ij->i", w, points)[:, None]
    rotated = points * cos_t + np.cross(w, points) * sin_t + w * dot * (1.0 - cos_t)
    near_zero = points + np.cross(angle_axis, points)
    return np.where(big[:, None], rotated, near_zero)


def _project(cameras: np.ndarray, points: np.ndarray) -> np.ndarray:
    p = _rotate(cameras[:, :3], points) + cameras[:, 3:6]
    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (cameras[:, 7] + cameras[:, 8] * r2)
    scale = cameras[:, 6] * distortion
    return np.column_stack([scale * xp, scale * yp])


def _require_angle_axis(problem: BALProblem) -> None:
    if problem.use_quaternions:
        raise ValueError("bundle adjustment needs cameras in angle-axis form")


def residuals(problem: BALProblem, parameters) -> np.ndarray:
    """Return the stacked reprojection residuals for a parameter vector.

    ``parameters`` has the layout of ``problem.parameters``; the result holds
    two values per observation, prediction minus measurement.
    """
    _require_angle_axis(problem)
    params = np.asarray(parameters, dtype=float).reshape(-1)
    if params.size != problem.num_parameters:
        raise ValueError(
            f"expected {problem.num_parameters} parameters, got {params.size}"
        )
    split = _CAMERA * problem.num_cameras
    cameras = params[:split].reshape(-1, _CAMERA)
    points = params[split:].reshape(-1, _POINT)
    predicted = _project(cameras[problem.camera_index], points[problem.point_index])
    return (predicted - problem.observations).ravel()


def _jacobian_sparsity(problem: BALProblem) -> coo_matrix:
    n = problem.num_observations
    obs = np.arange(n)
    cam_cols = _CAMERA * problem.camera_index[:, None] + np.arange(_CAMERA)
    pt_cols = (
        _CAMERA * problem.num_cameras
        + _POINT * problem.point_index[:, None]
        + np.arange(_POINT)
    )
    cols = np.hstack([cam_cols, pt_cols]).ravel()
    width = _CAMERA + _POINT
    rows = np.concatenate([np.repeat(2 * obs + k, width) for k in (0, 1)])
    all_cols = np.concatenate([cols, cols])
    data = np.ones(rows.size, dtype=np.int8)
    return coo_matrix((data, (rows, all_cols)), shape=(2 * n, problem.num_parameters))


def solve_ba(problem: BALProblem, max_iterations: int = 50) -> OptimizeResult:
    """Refine cameras and points in place, with a Huber loss of scale 1.

    The loss is applied to each residual component. Returns the optimiser's
    result; ``problem.parameters`` holds the refined estimate afterwards.
    """
    _require_angle_axis(problem)
    if problem.num_observations == 0:
        raise ValueError("problem has no observations")
    if max_iterations < 1:
        raise ValueError("max_iterations must be positive")

    result = least_squares(
        lambda x: residuals(problem, x),
        problem.parameters.copy(),
        jac_sparsity=_jacobian_sparsity(problem),
        loss="huber",
        f_scale=1.0,
        x_scale="jac",
        method="trf",
        max_nfev=max_iterations,
    )
    problem.parameters[:] = result.x
    return result


def main(argv=None) -> int:
    """Normalise, perturb and refine a BAL problem, writing PLY snapshots."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("usage: bundle_adjustment bal_data.txt")
        return 1

    problem = BALProblem.from_file(args[0])
    problem.normalize()
    problem.perturb(0.1, 0.5, 0.5)
    problem.write_to_ply_file("initial.ply")

    print("bal problem file loaded...")
    print(
        f"bal problem have {problem.num_cameras} cameras and "
        f"{problem.num_points} points. "
    )
    print(f"Forming {problem.num_observations} observations. ")
    print("Solving BA ... ")
    result = solve_ba(problem)
    initial_cost = 0.5 * float(np.sum(result.fun**2)) if result.fun.size else 0.0
    print(f"status: {result.message}")
    print(f"evaluations: {result.nfev}, final cost: {result.cost:g}, squared residual cost: {initial_cost:g}")

    problem.write_to_ply_file("final.ply")
    return 0


if __name__ == "__main__":
    sys.exit(main())