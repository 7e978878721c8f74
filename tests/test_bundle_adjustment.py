import numpy as np
import pytest

from visodom.bal import BALProblem
from visodom.bundle_adjustment import main, residuals, solve_ba
from visodom.reprojection import SnavelyReprojectionError, cam_projection_with_distortion


def _make_problem(seed=1):
    rng = np.random.default_rng(seed)
    cameras = np.array(
        [
            [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 500.0, 0.0, 0.0],
            [0.03, -0.02, 0.01, 0.2, 0.05, 0.1, 500.0, 0.0, 0.0],
            [-0.02, 0.04, -0.01, -0.15, 0.1, -0.05, 500.0, 0.0, 0.0],
        ]
    )
    points = np.column_stack(
        [rng.uniform(-1, 1, 12), rng.uniform(-1, 1, 12), rng.uniform(-6, -4, 12)]
    )
    cam_idx, pt_idx, obs = [], [], []
    for c, cam in enumerate(cameras):
        for p, point in enumerate(points):
            cam_idx.append(c)
            pt_idx.append(p)
            obs.append(cam_projection_with_distortion(cam, point))
    return BALProblem(cam_idx, pt_idx, obs, cameras, points)


def test_residuals_vanish_at_true_parameters():
    problem = _make_problem()
    res = residuals(problem, problem.parameters)
    assert res.shape == (2 * problem.num_observations,)
    assert np.allclose(res, 0.0, atol=1e-9)


def test_residuals_match_per_observation_cost():
    problem = _make_problem()
    params = problem.parameters.copy()
    params += np.random.default_rng(5).normal(0, 0.01, params.size)
    res = residuals(problem, params).reshape(-1, 2)
    cams = params[: 9 * problem.num_cameras].reshape(-1, 9)
    pts = params[9 * problem.num_cameras:].reshape(-1, 3)
    for i in range(problem.num_observations):
        u, v = problem.observations[i]
        cost = SnavelyReprojectionError(u, v)
        expected = cost(cams[problem.camera_index[i]], pts[problem.point_index[i]])
        assert np.allclose(res[i], expected)


def test_residuals_reject_wrong_length():
    problem = _make_problem()
    with pytest.raises(ValueError):
        residuals(problem, problem.parameters[:-1])


def test_solve_reduces_cost_and_updates_in_place():
    problem = _make_problem()
    problem.points[:] += np.random.default_rng(3).normal(0, 0.02, problem.points.shape)
    before = float(np.sum(residuals(problem, problem.parameters) ** 2))
    solve_ba(problem, 200)
    after = float(np.sum(residuals(problem, problem.parameters) ** 2))
    assert after < 1e-2 * before


def test_solve_rejects_quaternion_cameras():
    base = _make_problem()
    quats = np.array([[1.0, 0.0, 0.0, 0.0, *cam[3:]] for cam in base.cameras])
    problem = BALProblem(
        base.camera_index, base.point_index, base.observations, quats, base.points,
        use_quaternions=True,
    )
    with pytest.raises(ValueError):
        solve_ba(problem)


def test_solve_rejects_bad_iteration_count():
    with pytest.raises(ValueError):
        solve_ba(_make_problem(), 0)


def test_main_usage(capsys):
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_main_writes_ply_files(tmp_path, monkeypatch):
    data = tmp_path / "bal.txt"
    _make_problem().write_to_file(data)
    monkeypatch.chdir(tmp_path)
    assert main([str(data)]) == 0
    for name in ("initial.ply", "final.ply"):
        lines = (tmp_path / name).read_text().splitlines()
        assert lines[0] == "ply"
        assert "element vertex 15" in lines