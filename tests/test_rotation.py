import math

import numpy as np
import pytest

from visodom.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    cross_product,
    dot_product,
    quaternion_to_angle_axis,
)


def test_dot_product_of_orthogonal_axes_is_zero():
    assert dot_product([1.0, 0.0, 0.0], [0.0, 1.0, 0.0]) == 0.0


def test_dot_product_with_itself_is_squared_norm():
    v = np.array([1.0, -2.0, 3.0])
    assert dot_product(v, v) == pytest.approx(float(np.linalg.norm(v) ** 2))


def test_cross_product_of_x_and_y_is_z():
    assert np.allclose(cross_product([1, 0, 0], [0, 1, 0]), [0, 0, 1])


def test_cross_product_is_perpendicular_to_inputs():
    x = np.array([0.3, -1.2, 2.5])
    y = np.array([4.0, 0.5, -0.7])
    c = cross_product(x, y)
    assert dot_product(c, x) == pytest.approx(0.0, abs=1e-12)
    assert dot_product(c, y) == pytest.approx(0.0, abs=1e-12)


def test_wrong_length_vector_is_rejected():
    with pytest.raises(ValueError):
        dot_product([1.0, 2.0], [1.0, 2.0, 3.0])


def test_zero_angle_axis_gives_identity_quaternion():
    assert np.allclose(angle_axis_to_quaternion([0.0, 0.0, 0.0]), [1.0, 0.0, 0.0, 0.0])


def test_quaternion_is_unit_length():
    q = angle_axis_to_quaternion([0.4, -0.9, 1.3])
    assert np.linalg.norm(q) == pytest.approx(1.0)


@pytest.mark.parametrize(
    "aa",
    [[0.1, -0.2, 0.3], [1.0, 2.0, -0.5], [0.0, 0.0, 2.9], [1e-9, 0.0, 0.0]],
)
def test_angle_axis_quaternion_round_trip(aa):
    back = quaternion_to_angle_axis(angle_axis_to_quaternion(aa))
    assert np.allclose(back, aa, atol=1e-12)


def test_negated_quaternion_gives_same_angle_axis():
    aa = np.array([0.5, -0.25, 0.75])
    q = angle_axis_to_quaternion(aa)
    assert np.allclose(quaternion_to_angle_axis(-q), quaternion_to_angle_axis(q))


def test_quarter_turn_about_z_maps_x_to_y():
    rotated = angle_axis_rotate_point([0.0, 0.0, math.pi / 2], [1.0, 0.0, 0.0])
    assert np.allclose(rotated, [0.0, 1.0, 0.0], atol=1e-12)


def test_rotation_preserves_length():
    p = np.array([3.0, -4.0, 12.0])
    rotated = angle_axis_rotate_point([0.7, 0.2, -1.1], p)
    assert np.linalg.norm(rotated) == pytest.approx(np.linalg.norm(p))


def test_inverse_rotation_undoes_rotation():
    aa = np.array([0.3, 1.4, -0.6])
    p = np.array([1.0, 2.0, 3.0])
    back = angle_axis_rotate_point(-aa, angle_axis_rotate_point(aa, p))
    assert np.allclose(back, p)


def test_tiny_rotation_uses_first_order_form():
    aa = np.array([1e-10, 0.0, 0.0])
    p = np.array([0.0, 1.0, 0.0])
    assert np.allclose(angle_axis_rotate_point(aa, p), p + np.cross(aa, p))