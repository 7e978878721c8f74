"""Camera pose estimation by the sparse direct method.

Pixel intensities around reference points are compared between two
images; the pose is refined by Gauss-Newton on a left SE(3) update,
either on one image level or coarse to fine over a pyramid.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from visodom.lie import SE3
from visodom.optical_flow import build_pyramid

HALF_PATCH_SIZE = 1
ITERATIONS = 10
CONVERGENCE = 1e-3
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5
DEFAULT_BASELINE = 0.573


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole camera intrinsics."""

    fx: float = 718.856
    fy: float = 718.856
    cx: float = 607.1928
    cy: float = 185.2157

    def scaled(self, factor: float) -> "CameraIntrinsics":
        """Intrinsics for an image scaled by ``factor``."""
        return CameraIntrinsics(
            self.fx * factor, self.fy * factor, self.cx * factor, self.cy * factor
        )


@dataclass
class JacobianResult:
    """Normal equations, cost and projections from one linearisation."""

    hessian: np.ndarray
    bias: np.ndarray
    cost: float
    projection: np.ndarray
    good: int


def _image(img) -> np.ndarray:
    arr = np.asarray(img)
    if arr.ndim != 2:
        raise ValueError(f"expected a 2D grayscale image, got shape {arr.shape}")
    if arr.shape[0] < 2 or arr.shape[1] < 2:
        raise ValueError(f"image must be at least 2x2, got shape {arr.shape}")
    return arr


def _interp(img: np.ndarray, xs, ys) -> np.ndarray:
    rows, cols = img.shape
    x = np.array(xs, dtype=float)
    y = np.array(ys, dtype=float)
    x = np.where(x < 0, 0.0, x)
    y = np.where(y < 0, 0.0, y)
    x = np.where(x >= cols, cols - 1.0, x)
    y = np.where(y >= rows, rows - 1.0, y)
    xi = x.astype(int)
    yi = y.astype(int)
    xx = x - np.floor(x)
    yy = y - np.floor(y)
    x1 = np.minimum(xi + 1, cols - 1)
    y1 = np.minimum(yi + 1, rows - 1)
    data = img.astype(float, copy=False)
    return (
        (1 - xx) * (1 - yy) * data[yi, xi]
        + xx * (1 - yy) * data[yi, x1]
        + (1 - xx) * yy * data[y1, xi]
        + xx * yy * data[y1, x1]
    )


def get_pixel_value(img, x: float, y: float) -> float:
    """Bilinearly interpolated intensity at ``(x, y)``, clamped to the image."""
    return float(_interp(_image(img), x, y))


def disparity_to_depth(disparity, camera: CameraIntrinsics | None = None, baseline: float = DEFAULT_BASELINE):
    """Depth of a stereo disparity: ``fx * baseline / disparity``.

    A zero disparity gives an infinite depth.
    """
    camera = camera or CameraIntrinsics()
    with np.errstate(divide="ignore"):
        depth = camera.fx * baseline / np.asarray(disparity, dtype=float)
    return float(depth) if np.ndim(depth) == 0 else depth


def _reference(px_ref, depth_ref) -> tuple[np.ndarray, np.ndarray]:
    px = np.asarray(px_ref, dtype=float)
    if px.size == 0:
        px = np.zeros((0, 2))
    if px.ndim != 2 or px.shape[1] != 2:
        raise ValueError(f"px_ref must have shape (n, 2), got {px.shape}")
    depth = np.asarray(depth_ref, dtype=float).reshape(-1)
    if len(depth) != len(px):
        raise ValueError("px_ref and depth_ref differ in length")
    return px, depth


def accumulate_jacobian(
    img1, img2, px_ref, depth_ref, T21: SE3, camera: CameraIntrinsics | None = None
) -> JacobianResult:
    """Linearise the photometric error of all reference points at pose ``T21``.

    Points behind the camera or projecting too close to the border of
    ``img2`` are skipped and keep a zero projection. The cost is the summed
    squared error divided by the number of points used.
    """
    a = _image(img1)
    b = _image(img2)
    px, depth = _reference(px_ref, depth_ref)
    camera = camera or CameraIntrinsics()
    fx, fy, cx, cy = camera.fx, camera.fy, camera.cx, camera.cy
    rows, cols = b.shape

    projection = np.zeros((len(px), 2))
    hessian = np.zeros((6, 6))
    bias = np.zeros(6)
    if len(px) == 0:
        return JacobianResult(hessian, bias, 0.0, projection, 0)

    point_ref = depth[:, None] * np.column_stack(
        [(px[:, 0] - cx) / fx, (px[:, 1] - cy) / fy, np.ones(len(px))]
    )
    point_cur = T21.transform(point_ref)
    Z = point_cur[:, 2]
    in_front = Z >= 0
    with np.errstate(divide="ignore", invalid="ignore"):
        u = fx * point_cur[:, 0] / Z + cx
        v = fy * point_cur[:, 1] / Z + cy
    h = HALF_PATCH_SIZE
    inside = (u >= h) & (u <= cols - h) & (v >= h) & (v <= rows - h)
    good = in_front & inside
    count = int(np.count_nonzero(good))
    if count == 0:
        return JacobianResult(hessian, bias, 0.0, projection, 0)

    projection[good] = np.column_stack([u[good], v[good]])
    X, Y, Zg = point_cur[good, 0], point_cur[good, 1], Z[good]
    ug, vg = u[good], v[good]
    pr = px[good]
    z_inv = 1.0 / Zg
    z2_inv = z_inv * z_inv
    zero = np.zeros_like(X)
    j_pixel_xi = np.stack(
        [
            np.column_stack([fx * z_inv, zero, -fx * X * z2_inv, -fx * X * Y * z2_inv,
                             fx + fx * X * X * z2_inv, -fx * Y * z_inv]),
            np.column_stack([zero, fy * z_inv, -fy * Y * z2_inv, -fy - fy * Y * Y * z2_inv,
                             fy * X * Y * z2_inv, fy * X * z_inv]),
        ],
        axis=1,
    )

    offsets = np.arange(-h, h + 1, dtype=float)
    ox, oy = (g.ravel() for g in np.meshgrid(offsets, offsets, indexing="ij"))
    rx = pr[:, 0:1] + ox
    ry = pr[:, 1:2] + oy
    qx = ug[:, None] + ox
    qy = vg[:, None] + oy
    error = _interp(a, rx, ry) - _interp(b, qx, qy)
    j_img = np.stack(
        [
            0.5 * (_interp(b, qx + 1, qy) - _interp(b, qx - 1, qy)),
            0.5 * (_interp(b, qx, qy + 1) - _interp(b, qx, qy - 1)),
        ],
        axis=-1,
    )
    J = -np.einsum("nkp,npj->nkj", j_img, j_pixel_xi)
    hessian = np.einsum("nki,nkj->ij", J, J)
    bias = -np.einsum("nk,nki->i", error, J)
    cost = float(np.sum(error * error)) / count
    return JacobianResult(hessian, bias, cost, projection, count)


def direct_pose_estimation_single_layer(
    img1, img2, px_ref, depth_ref, T21: SE3 | None = None, camera: CameraIntrinsics | None = None
) -> tuple[SE3, JacobianResult]:
    """Refine ``T21`` on one image level.

    Returns the refined pose and the last linearisation, whose projections
    show where the reference points landed in ``img2``.
    """
    pose = SE3.identity() if T21 is None else T21
    camera = camera or CameraIntrinsics()
    last_cost = 0.0
    result = None
    for iteration in range(ITERATIONS):
        result = accumulate_jacobian(img1, img2, px_ref, depth_ref, pose, camera)
        try:
            update = np.linalg.solve(result.hessian, result.bias)
        except np.linalg.LinAlgError:
            break
        if np.isnan(update[0]):
            # A flat patch leaves the Hessian singular.
            break
        pose = SE3.exp(update) @ pose
        cost = result.cost
        if iteration > 0 and cost > last_cost:
            break
        if np.linalg.norm(update) < CONVERGENCE:
            break
        last_cost = cost
    if result is None:
        result = accumulate_jacobian(img1, img2, px_ref, depth_ref, pose, camera)
    return pose, result


def direct_pose_estimation_multi_layer(
    img1, img2, px_ref, depth_ref, T21: SE3 | None = None, camera: CameraIntrinsics | None = None
) -> SE3:
    """Refine ``T21`` coarse to fine over a four-level pyramid of scale one half."""
    pose = SE3.identity() if T21 is None else T21
    camera = camera or CameraIntrinsics()
    px, depth = _reference(px_ref, depth_ref)
    pyr1 = build_pyramid(_image(img1), PYRAMID_LEVELS, PYRAMID_SCALE)
    pyr2 = build_pyramid(_image(img2), PYRAMID_LEVELS, PYRAMID_SCALE)
    for level in range(PYRAMID_LEVELS - 1, -1, -1):
        scale = PYRAMID_SCALE**level
        pose, _ = direct_pose_estimation_single_layer(
            pyr1[level], pyr2[level], px * scale, depth, pose, camera.scaled(scale)
        )
    return pose