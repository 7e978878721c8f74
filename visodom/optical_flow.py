"""Lucas-Kanade optical flow by Gauss-Newton, single level and coarse to fine.

Keypoints are ``(n, 2)`` arrays of ``(x, y)`` pixel coordinates.
"""

from __future__ import annotations

import numpy as np

HALF_PATCH_SIZE = 4
ITERATIONS = 10
CONVERGENCE = 1e-2
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5


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
    x = np.where(x >= cols - 1, cols - 2.0, x)
    y = np.where(y >= rows - 1, rows - 2.0, y)

    xx = x - np.floor(x)
    yy = y - np.floor(y)
    xi = x.astype(int)
    yi = y.astype(int)
    x_a1 = np.minimum(cols - 1, xi + 1)
    y_a1 = np.minimum(rows - 1, yi + 1)
    data = img.astype(float, copy=False)
    return (
        (1 - xx) * (1 - yy) * data[yi, xi]
        + xx * (1 - yy) * data[yi, x_a1]
        + (1 - xx) * yy * data[y_a1, xi]
        + xx * yy * data[y_a1, x_a1]
    )


def get_pixel_value(img, x: float, y: float) -> float:
    """Bilinearly interpolated intensity at ``(x, y)``, clamped to the image."""
    return float(_interp(_image(img), x, y))


def resize(img, width: int, height: int) -> np.ndarray:
    """Resize with bilinear interpolation on pixel centres.

    Integer images are rounded back to their own type.
    """
    src = _image(img)
    if width < 1 or height < 1:
        raise ValueError("target size must be positive")
    rows, cols = src.shape
    sx = (np.arange(width) + 0.5) * (cols / width) - 0.5
    sy = (np.arange(height) + 0.5) * (rows / height) - 0.5
    sx = np.clip(sx, 0.0, cols - 1.0)
    sy = np.clip(sy, 0.0, rows - 1.0)
    x0 = np.floor(sx).astype(int)
    y0 = np.floor(sy).astype(int)
    x1 = np.minimum(x0 + 1, cols - 1)
    y1 = np.minimum(y0 + 1, rows - 1)
    fx = (sx - x0)[None, :]
    fy = (sy - y0)[:, None]
    data = src.astype(float)
    top = data[y0][:, x0] * (1 - fx) + data[y0][:, x1] * fx
    bottom = data[y1][:, x0] * (1 - fx) + data[y1][:, x1] * fx
    out = top * (1 - fy) + bottom * fy
    if np.issubdtype(src.dtype, np.integer):
        info = np.iinfo(src.dtype)
        return np.clip(np.rint(out), info.min, info.max).astype(src.dtype)
    return out.astype(src.dtype)


def build_pyramid(img, levels: int = PYRAMID_LEVELS, scale: float = PYRAMID_SCALE) -> list[np.ndarray]:
    """Return the image followed by ``levels - 1`` successively scaled copies."""
    if levels < 1:
        raise ValueError("levels must be positive")
    pyramid = [np.asarray(img)]
    for _ in range(levels - 1):
        prev = pyramid[-1]
        rows, cols = prev.shape
        pyramid.append(resize(prev, int(cols * scale), int(rows * scale)))
    return pyramid


def _keypoints(values, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return np.zeros((0, 2))
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValueError(f"{name} must have shape (n, 2), got {arr.shape}")
    return arr


def _track(img1, img2, kp, initial, inverse: bool) -> tuple[np.ndarray, bool]:
    offsets = np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE, dtype=float)
    ox, oy = (g.ravel() for g in np.meshgrid(offsets, offsets, indexing="ij"))
    px = kp[0] + ox
    py = kp[1] + oy
    dx, dy = initial

    ref = _interp(img1, px, py)
    H = np.zeros((2, 2))
    J = np.zeros((len(ox), 2))
    last_cost = 0.0
    succ = True
    for iteration in range(ITERATIONS):
        if not inverse:
            H = np.zeros((2, 2))
        qx = px + dx
        qy = py + dy
        error = ref - _interp(img2, qx, qy)
        if not inverse:
            J = -np.column_stack([
                0.5 * (_interp(img2, qx + 1, qy) - _interp(img2, qx - 1, qy)),
                0.5 * (_interp(img2, qx, qy + 1) - _interp(img2, qx, qy - 1)),
            ])
        elif iteration == 0:
            # The template gradient does not depend on the flow, so it is computed once.
            J = -np.column_stack([
                0.5 * (_interp(img1, px + 1, py) - _interp(img1, px - 1, py)),
                0.5 * (_interp(img1, px, py + 1) - _interp(img1, px, py - 1)),
            ])
        b = -(J * error[:, None]).sum(axis=0)
        cost = float(np.sum(error * error))
        if not inverse or iteration == 0:
            H = H + J.T @ J

        try:
            update = np.linalg.solve(H, b)
        except np.linalg.LinAlgError:
            update = np.full(2, np.nan)
        if np.isnan(update[0]):
            succ = False
            break
        if iteration > 0 and cost > last_cost:
            break

        dx += update[0]
        dy += update[1]
        last_cost = cost
        succ = True
        if np.linalg.norm(update) < CONVERGENCE:
            break
    return np.array([kp[0] + dx, kp[1] + dy]), succ


def optical_flow_single_level(
    img1, img2, kp1, kp2=None, inverse: bool = False, has_initial: bool = False
) -> tuple[np.ndarray, np.ndarray]:
    """Track keypoints of ``img1`` into ``img2`` on one image level.

    With ``has_initial`` the positions in ``kp2`` seed the search. Returns the
    tracked positions and a boolean array telling which tracks succeeded.
    """
    a = _image(img1)
    b = _image(img2)
    points1 = _keypoints(kp1, "kp1")
    if has_initial:
        if kp2 is None:
            raise ValueError("kp2 is required when has_initial is set")
        points2 = _keypoints(kp2, "kp2")
        if points2.shape != points1.shape:
            raise ValueError("kp1 and kp2 differ in length")
        initial = points2 - points1
    else:
        initial = np.zeros_like(points1)

    tracked = np.zeros_like(points1)
    success = np.zeros(len(points1), dtype=bool)
    for i, (kp, guess) in enumerate(zip(points1, initial)):
        tracked[i], success[i] = _track(a, b, kp, guess, inverse)
    return tracked, success


def optical_flow_multi_level(
    img1, img2, kp1, inverse: bool = False
) -> tuple[np.ndarray, np.ndarray]:
    """Track keypoints coarse to fine over a four-level pyramid of scale one half."""
    pyr1 = build_pyramid(_image(img1), PYRAMID_LEVELS, PYRAMID_SCALE)
    pyr2 = build_pyramid(_image(img2), PYRAMID_LEVELS, PYRAMID_SCALE)
    top_scale = PYRAMID_SCALE ** (PYRAMID_LEVELS - 1)
    kp1_pyr = _keypoints(kp1, "kp1") * top_scale
    kp2_pyr = kp1_pyr.copy()
    success = np.zeros(len(kp1_pyr), dtype=bool)
    for level in range(PYRAMID_LEVELS - 1, -1, -1):
        kp2_pyr, success = optical_flow_single_level(
            pyr1[level], pyr2[level], kp1_pyr, kp2_pyr, inverse, True
        )
        if level > 0:
            kp1_pyr = kp1_pyr / PYRAMID_SCALE
            kp2_pyr = kp2_pyr / PYRAMID_SCALE
    return kp2_pyr, success