import numpy as np
import pytest

from visodom.icp import backproject, icp_bundle_adjustment, icp_svd, pixel2cam
from visodom.lie import SE3

K = np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])


def _clouds():
    rng = np.random.default_rng(7)
    pts2 = rng.uniform(-2.0, 2.0, size=(30, 3)) + np.array([0.0, 0.0, 5.0])
    T = SE3.exp([0.2, -0.1, 0.3, 0.1, -0.15, 0.05])
    return T.transform(pts2), pts2, T


def test_pixel2cam_principal_point_is_origin():
    np.testing.assert_allclose(pixel2cam([325.1, 249.7], K), [0.0, 0.0])


def test_pixel2cam_rejects_bad_k():
    with pytest.raises(ValueError):
        pixel2cam([1.0, 2.0], np.eye(2))


def test_backproject_zero_depth_is_none():
    assert backproject([100.0, 50.0], 0, K) is None


def test_backproject_reprojects_to_same_pixel():
    pixel = np.array([400.0, 120.0])
    p = backproject(pixel, 12345, K)
    assert p[2] == pytest.approx(12345 / 5000.0)
    uv = (K @ p)[:2] / p[2]
    np.testing.assert_allclose(uv, pixel)


def test_icp_svd_recovers_transform():
    pts1, pts2, T = _clouds()
    R, t = icp_svd(pts1, pts2)
    np.testing.assert_allclose(R, T.rotation, atol=1e-10)
    np.testing.assert_allclose(t, T.translation, atol=1e-10)
    np.testing.assert_allclose(pts2 @ R.T + t, pts1, atol=1e-10)


def test_icp_svd_rejects_mismatch():
    pts1, pts2, _ = _clouds()
    with pytest.raises(ValueError):
        icp_svd(pts1, pts2[:-1])


def test_icp_svd_rejects_empty():
    with pytest.raises(ValueError):
        icp_svd(np.zeros((0, 3)), np.zeros((0, 3)))


def test_icp_bundle_adjustment_recovers_transform():
    pts1, pts2, T = _clouds()
    pose = icp_bundle_adjustment(pts1, pts2, iterations=30)
    np.testing.assert_allclose(pose.matrix(), T.matrix(), atol=1e-6)


def test_icp_bundle_adjustment_agrees_with_svd():
    pts1, pts2, _ = _clouds()
    R, t = icp_svd(pts1, pts2)
    pose = icp_bundle_adjustment(pts1, pts2, iterations=30)
    np.testing.assert_allclose(pose.rotation, R, atol=1e-6)
    np.testing.assert_allclose(pose.translation, t, atol=1e-6)


def test_icp_bundle_adjustment_rejects_bad_iterations():
    pts1, pts2, _ = _clouds()
    with pytest.raises(ValueError):
        icp_bundle_adjustment(pts1, pts2, iterations=0)