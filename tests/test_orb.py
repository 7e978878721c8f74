import numpy as np
import pytest
from PIL import Image

from visodom.orb import (
    Match,
    bf_match,
    compute_orb,
    fast_detect,
    hamming_distance,
    load_gray,
    main,
)


def _blocky(seed, size=64, block=8):
    rng = np.random.default_rng(seed)
    small = rng.integers(0, 256, (size // block, size // block)).astype(np.uint8)
    return np.kron(small, np.ones((block, block), dtype=np.uint8))


def test_hamming_identical_is_zero():
    d = (1, 2, 3, 4, 5, 6, 7, 8)
    assert hamming_distance(d, d) == 0


def test_hamming_all_bits_differ():
    assert hamming_distance([0xFFFFFFFF] * 8, [0] * 8) == 256


def test_hamming_single_bit():
    a = [0] * 8
    b = [0] * 7 + [1 << 31]
    assert hamming_distance(a, b) == 1


def test_hamming_length_mismatch():
    with pytest.raises(ValueError):
        hamming_distance([0] * 8, [0] * 7)


def test_bf_match_identity_and_skips_missing():
    d0 = (0,) * 8
    d1 = (0xFFFFFFFF,) * 8
    desc1 = [d0, None, d1]
    desc2 = [d1, d0]
    matches = bf_match(desc1, desc2)
    assert matches == [Match(0, 1, 0), Match(2, 0, 0)]


def test_bf_match_distance_threshold():
    a = (0,) * 8
    far = (0xFF,) + (0,) * 7  # 8 bits differ
    assert bf_match([a], [far], d_max=8) == []
    assert bf_match([a], [far], d_max=9) == [Match(0, 0, 8)]


def test_bf_match_tie_picks_first():
    a = (0,) * 8
    b = (1,) + (0,) * 7
    matches = bf_match([a], [b, b])
    assert matches[0].train_idx == 0


def test_bf_match_empty():
    assert bf_match([None], [(0,) * 8]) == []


def test_compute_orb_border_keypoints_are_none():
    img = _blocky(1)
    descs = compute_orb(img, [(5.0, 30.0), (30.0, 15.0), (48.0, 30.0), (30.0, 30.0)])
    assert descs[0] is None
    assert descs[1] is None
    assert descs[2] is None
    assert descs[3] is not None and len(descs[3]) == 8


def test_compute_orb_uniform_image_gives_zero_descriptor():
    img = np.full((64, 64), 100, dtype=np.uint8)
    (desc,) = compute_orb(img, [(32.0, 32.0)])
    assert desc == (0,) * 8


def test_compute_orb_words_fit_32_bits_and_deterministic():
    img = _blocky(2)
    kps = [(20.0, 20.0), (30.0, 35.0), (40.0, 25.0)]
    first = compute_orb(img, kps)
    second = compute_orb(img, kps)
    assert first == second
    for desc in first:
        assert all(0 <= w < 2**32 for w in desc)


def test_compute_orb_then_self_match():
    img = _blocky(3)
    kps = fast_detect(img, 40)
    descs = compute_orb(img, kps)
    matches = bf_match(descs, descs)
    assert matches
    assert all(m.distance == 0 for m in matches)
    assert all(descs[m.query_idx] == descs[m.train_idx] for m in matches)


def test_fast_uniform_image_has_no_corners():
    img = np.full((32, 32), 77, dtype=np.uint8)
    assert fast_detect(img, 40).shape == (0, 2)


def test_fast_single_bright_pixel():
    img = np.zeros((20, 20), dtype=np.uint8)
    img[9, 12] = 100
    kps = fast_detect(img, 40)
    assert kps.tolist() == [[12.0, 9.0]]


def test_fast_threshold_excludes_weak_corner():
    img = np.zeros((20, 20), dtype=np.uint8)
    img[9, 12] = 100
    assert len(fast_detect(img, 150)) == 0


def test_fast_points_respect_border():
    img = _blocky(4)
    kps = fast_detect(img, 20)
    assert len(kps) > 0
    assert np.all(kps >= 3)
    assert np.all(kps[:, 0] < img.shape[1] - 3)
    assert np.all(kps[:, 1] < img.shape[0] - 3)


def test_fast_rejects_color_image():
    with pytest.raises(ValueError):
        fast_detect(np.zeros((10, 10, 3), dtype=np.uint8))


def test_load_gray_round_trip(tmp_path):
    img = _blocky(5)
    path = tmp_path / "img.png"
    Image.fromarray(img).save(path)
    loaded = load_gray(path)
    assert loaded.dtype == np.uint8
    np.testing.assert_array_equal(loaded, img)


def test_main_writes_matches(tmp_path, monkeypatch):
    img = _blocky(6)
    p1 = tmp_path / "a.png"
    p2 = tmp_path / "b.png"
    Image.fromarray(img).save(p1)
    Image.fromarray(np.roll(img, 2, axis=1)).save(p2)
    monkeypatch.chdir(tmp_path)
    assert main([str(p1), str(p2)]) == 0
    out = Image.open(tmp_path / "matches.png")
    assert out.size == (128, 64)


def test_main_bad_arguments():
    assert main(["only_one.png"]) == 1