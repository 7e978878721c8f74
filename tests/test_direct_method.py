import numpy as np
import pytest

from visodom.direct_method import (
    CameraIntrinsics,
    accumulate_jacobian,
    direct_pose_estimation_multi_layer,
    direct_pose_estimation_single_layer,
    disparity_to_depth,
    get_pixel_value,
)
from visodom.lie import SE3

CAMERA = CameraIntrinsics(100.0, 100.0, 50.0, 50.0)


def _texture(size=100, shift=0.0):
    xs = np.arange(size) - shift
    ys = np.arange(size, dtype=float)
    X, Y = np.meshgrid(xs, ys)
    return 128 + 40 * np.sin(X / 4.0) + 40 * np.cos(Y / 5.0) + 20 * np.sin((X + Y) / 6.0)


def _reference():
    grid = np.arange(20, 81, 4, dtype=float)
    gx, gy = np.meshgrid(grid, grid)
    px = np.column_stack([gx.ravel(), gy.ravel()])
    return px, np.full(len(px), 2.0)


def test_get_pixel_value_integer_and_clamped():
    img = np.arange(12, dtype=np.uint8).reshape(3, 4)
    assert get_pixel_value(img, 2, 1) == float(img[1, 2])
    assert get_pixel_value(img, 10, 10) == float(img[2, 3])
    assert get_pixel_value(img, -3, -3) == float(img[0, 0])


def test_get_pixel_value_interpolates_between_neighbours():
    img = np.arange(12, dtype=np.uint8).reshape(3, 4)
    value = get_pixel_value(img, 1.5, 1.0)
    assert img[1, 1] < value < img[1, 2]


def test_disparity_to_depth_invariant():
    camera = CameraIntrinsics()
    depth = disparity_to_depth(40, camera, 0.573)
    assert depth * 40 == pytest.approx(camera.fx * 0.573)
    assert disparity_to_depth(0, camera) == float("inf")


def test_camera_scaled():
    scaled = CameraIntrinsics().scaled(0.5)
    base = CameraIntrinsics()
    assert scaled.fx == pytest.approx(base.fx * 0.5)
    assert scaled.cy == pytest.approx(base.cy * 0.5)


def test_accumulate_identical_images_has_zero_error():
    img = _texture()
    px, depth = _reference()
    result = accumulate_jacobian(img, img, px, depth, SE3.identity(), CAMERA)
    assert result.cost == pytest.approx(0.0)
    assert np.allclose(result.bias, 0.0)
    assert result.good == len(px)
    assert np.allclose(result.projection, px)


def test_accumulate_hessian_symmetric_positive_semidefinite():
    px, depth = _reference()
    result = accumulate_jacobian(_texture(), _texture(shift=1.0), px, depth, SE3.identity(), CAMERA)
    assert np.allclose(result.hessian, result.hessian.T)
    assert np.min(np.linalg.eigvalsh(result.hessian)) > -1e-6
    assert result.cost > 0


def test_accumulate_skips_points_behind_camera():
    img = _texture()
    px, _ = _reference()
    result = accumulate_jacobian(img, img, px, -np.ones(len(px)), SE3.identity(), CAMERA)
    assert result.good == 0
    assert np.all(result.projection == 0)
    assert np.all(result.hessian == 0)


def test_accumulate_length_mismatch():
    img = _texture()
    with pytest.raises(ValueError):
        accumulate_jacobian(img, img, np.zeros((3, 2)), np.ones(2), SE3.identity(), CAMERA)


def test_single_layer_identical_images_keeps_identity():
    img = _texture()
    px, depth = _reference()
    pose, _ = direct_pose_estimation_single_layer(img, img, px, depth, SE3.identity(), CAMERA)
    assert np.allclose(pose.matrix(), np.eye(4), atol=1e-9)


def test_single_layer_tracks_shift():
    img1 = _texture()
    img2 = _texture(shift=1.0)
    px, depth = _reference()
    initial = accumulate_jacobian(img1, img2, px, depth, SE3.identity(), CAMERA).cost
    pose, _ = direct_pose_estimation_single_layer(img1, img2, px, depth, SE3.identity(), CAMERA)
    final = accumulate_jacobian(img1, img2, px, depth, pose, CAMERA).cost
    assert final < initial

    points = depth[:, None] * np.column_stack(
        [(px[:, 0] - CAMERA.cx) / CAMERA.fx, (px[:, 1] - CAMERA.cy) / CAMERA.fy, np.ones(len(px))]
    )
    cur = pose.transform(points)
    u = CAMERA.fx * cur[:, 0] / cur[:, 2] + CAMERA.cx
    assert np.mean(u - px[:, 0]) == pytest.approx(1.0, abs=0.3)


def test_multi_layer_identical_images_keeps_identity():
    img = _texture()
    px, depth = _reference()
    pose = direct_pose_estimation_multi_layer(img, img, px, depth, SE3.identity(), CAMERA)
    assert np.allclose(pose.matrix(), np.eye(4), atol=1e-9)