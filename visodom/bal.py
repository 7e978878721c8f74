"""Bundle adjustment in the large (BAL) problems: loading, saving and conditioning."""

from __future__ import annotations

import random
from pathlib import Path

import numpy as np

from visodom.rng import rand_normal
from visodom.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)

_POINT_BLOCK_SIZE = 3


class BALFormatError(ValueError):
    """Raised when BAL data is malformed."""


def median(data) -> float:
    """Return the element at position ``n // 2`` of the sorted data."""
    values = sorted(float(v) for v in data)
    if not values:
        raise ValueError("median of empty data")
    return values[len(values) // 2]


def perturb_point3(sigma: float, point, rng: random.Random | None = None) -> np.ndarray:
    """Return the 3-vector with Gaussian noise of the given sigma added."""
    p = np.asarray(point, dtype=float)
    if p.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {p.shape}")
    noise = np.array([rand_normal(rng) for _ in range(3)])
    return p + noise * sigma


def _take(tokens, kind, what):
    try:
        token = next(tokens)
    except StopIteration:
        raise BALFormatError(f"unexpected end of data while reading {what}") from None
    try:
        return kind(token)
    except ValueError:
        raise BALFormatError(f"invalid {what}: {token!r}") from None


class BALProblem:
    """Cameras, points and observations of a bundle adjustment problem.

    Each camera is a rotation (angle-axis, or a quaternion when
    ``use_quaternions`` is set), a translation, a focal length and two
    radial distortion coefficients. All parameters live in one flat
    array; ``cameras`` and ``points`` are writable views into it.
    """

    def __init__(
        self,
        camera_index,
        point_index,
        observations,
        cameras,
        points,
        use_quaternions: bool = False,
    ) -> None:
        self.use_quaternions = bool(use_quaternions)
        block = self.camera_block_size
        cams = np.asarray(cameras, dtype=float).reshape(-1, block) if np.size(cameras) else np.zeros((0, block))
        pts = np.asarray(points, dtype=float).reshape(-1, 3) if np.size(points) else np.zeros((0, 3))
        self.camera_index = np.asarray(camera_index, dtype=int).reshape(-1)
        self.point_index = np.asarray(point_index, dtype=int).reshape(-1)
        obs = np.asarray(observations, dtype=float)
        self.observations = obs.reshape(-1, 2) if obs.size else np.zeros((0, 2))
        n = len(self.camera_index)
        if len(self.point_index) != n or len(self.observations) != n:
            raise BALFormatError("observation arrays differ in length")
        self._num_cameras = len(cams)
        self._num_points = len(pts)
        if n and (self.camera_index.min() < 0 or self.camera_index.max() >= self._num_cameras):
            raise BALFormatError("camera index out of range")
        if n and (self.point_index.min() < 0 or self.point_index.max() >= self._num_points):
            raise BALFormatError("point index out of range")
        self.parameters = np.concatenate([cams.ravel(), pts.ravel()])

    @classmethod
    def from_file(cls, filename, use_quaternions: bool = False) -> "BALProblem":
        """Load a problem from a BAL text file."""
        tokens = iter(Path(filename).read_text().split())
        num_cameras = _take(tokens, int, "camera count")
        num_points = _take(tokens, int, "point count")
        num_observations = _take(tokens, int, "observation count")
        if min(num_cameras, num_points, num_observations) < 0:
            raise BALFormatError("negative count in header")

        camera_index = []
        point_index = []
        observations = []
        for _ in range(num_observations):
            camera_index.append(_take(tokens, int, "camera index"))
            point_index.append(_take(tokens, int, "point index"))
            observations.append(
                (_take(tokens, float, "observation"), _take(tokens, float, "observation"))
            )

        num_parameters = 9 * num_cameras + _POINT_BLOCK_SIZE * num_points
        parameters = np.array(
            [_take(tokens, float, "parameter") for _ in range(num_parameters)]
        )
        cameras = parameters[: 9 * num_cameras].reshape(num_cameras, 9)
        points = parameters[9 * num_cameras:].reshape(num_points, 3)

        if use_quaternions:
            cameras = np.array(
                [np.concatenate([angle_axis_to_quaternion(cam[:3]), cam[3:]]) for cam in cameras]
            ).reshape(num_cameras, 10)

        return cls(camera_index, point_index, observations, cameras, points, use_quaternions)

    @property
    def camera_block_size(self) -> int:
        return 10 if self.use_quaternions else 9

    @property
    def point_block_size(self) -> int:
        return _POINT_BLOCK_SIZE

    @property
    def num_cameras(self) -> int:
        return self._num_cameras

    @property
    def num_points(self) -> int:
        return self._num_points

    @property
    def num_observations(self) -> int:
        return len(self.camera_index)

    @property
    def num_parameters(self) -> int:
        return len(self.parameters)

    @property
    def cameras(self) -> np.ndarray:
        """Writable ``(num_cameras, camera_block_size)`` view of camera parameters."""
        end = self.camera_block_size * self._num_cameras
        return self.parameters[:end].reshape(self._num_cameras, self.camera_block_size)

    @property
    def points(self) -> np.ndarray:
        """Writable ``(num_points, 3)`` view of point coordinates."""
        start = self.camera_block_size * self._num_cameras
        return self.parameters[start:].reshape(self._num_points, self.point_block_size)

    def camera_for_observation(self, i: int) -> np.ndarray:
        return self.cameras[self.camera_index[i]]

    def point_for_observation(self, i: int) -> np.ndarray:
        return self.points[self.point_index[i]]

    def camera_to_angle_axis_and_center(self, camera) -> tuple[np.ndarray, np.ndarray]:
        """Return the camera's angle-axis rotation and its centre ``c = -R't``."""
        cam = np.asarray(camera, dtype=float)
        block = self.camera_block_size
        if self.use_quaternions:
            angle_axis = quaternion_to_angle_axis(cam[:4])
        else:
            angle_axis = cam[:3].copy()
        translation = cam[block - 6: block - 3]
        center = -angle_axis_rotate_point(-angle_axis, translation)
        return angle_axis, center

    def angle_axis_and_center_to_camera(self, angle_axis, center) -> np.ndarray:
        """Return the rotation and translation part of a camera (``t = -R c``).

        The result holds the first ``camera_block_size - 3`` camera parameters.
        """
        aa = np.asarray(angle_axis, dtype=float)
        rotation = angle_axis_to_quaternion(aa) if self.use_quaternions else aa.copy()
        translation = -angle_axis_rotate_point(aa, center)
        return np.concatenate([rotation, translation])

    def write_to_file(self, filename) -> None:
        """Save the problem in BAL text format, cameras in angle-axis form."""
        lines = [f"{self.num_cameras} {self.num_points} {self.num_observations}"]
        for cam_i, pt_i, (u, v) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{cam_i} {pt_i} {u:g} {v:g}")
        for cam in self.cameras:
            if self.use_quaternions:
                values = np.concatenate([quaternion_to_angle_axis(cam[:4]), cam[4:10]])
            else:
                values = cam
            lines.extend(f"{x:.16g}" for x in values)
        for point in self.points:
            lines.extend(f"{x:.16g}" for x in point)
        Path(filename).write_text("\n".join(lines) + "\n")

    def write_to_ply_file(self, filename) -> None:
        """Save camera centres (green) and points (white) as an ASCII PLY cloud."""
        header = [
            "ply",
            "format ascii 1.0",
            f"element vertex {self.num_cameras + self.num_points}",
            "property float x",
            "property float y",
            "property float z",
            "property uchar red",
            "property uchar green",
            "property uchar blue",
            "end_header",
        ]
        body = []
        for cam in self.cameras:
            _, center = self.camera_to_angle_axis_and_center(cam)
            body.append(f"{center[0]:g} {center[1]:g} {center[2]:g} 0 255 0")
        for point in self.points:
            coords = "".join(f"{x:g} " for x in point)
            body.append(f"{coords} 255 255 255")
        with Path(filename).open("w") as out:
            out.write("\n".join(header) + "\n")
            out.writelines(line + "\n" for line in body)

    def normalize(self) -> None:
        """Centre points on their median and scale their median L1 spread to 100."""
        points = self.points
        med = np.array([median(points[:, axis]) for axis in range(3)])
        mad = median(np.abs(points - med).sum(axis=1))
        if mad == 0.0:
            raise ValueError("points have zero median absolute deviation")
        scale = 100.0 / mad
        points[:] = scale * (points - med)

        rotation_end = self.camera_block_size - 3
        for cam in self.cameras:
            angle_axis, center = self.camera_to_angle_axis_and_center(cam)
            center = scale * (center - med)
            cam[:rotation_end] = self.angle_axis_and_center_to_camera(angle_axis, center)

    def perturb(
        self,
        rotation_sigma: float,
        translation_sigma: float,
        point_sigma: float,
        rng: random.Random | None = None,
    ) -> None:
        """Add Gaussian noise to points, camera rotations and translations."""
        if point_sigma < 0.0 or rotation_sigma < 0.0 or translation_sigma < 0.0:
            raise ValueError("noise sigmas must be non-negative")

        if point_sigma > 0:
            for point in self.points:
                point[:] = perturb_point3(point_sigma, point, rng)

        block = self.camera_block_size
        for cam in self.cameras:
            angle_axis, center = self.camera_to_angle_axis_and_center(cam)
            if rotation_sigma > 0.0:
                angle_axis = perturb_point3(rotation_sigma, angle_axis, rng)
            cam[: block - 3] = self.angle_axis_and_center_to_camera(angle_axis, center)
            if translation_sigma > 0.0:
                cam[block - 6: block - 3] = perturb_point3(
                    translation_sigma, cam[block - 6: block - 3], rng
                )