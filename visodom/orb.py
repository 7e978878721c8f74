"""FAST corners, rotated BRIEF (ORB) descriptors and brute-force matching.

A descriptor is a tuple of eight 32-bit words (256 bits). Keypoints too
close to the image border have no descriptor and are given as ``None``.
"""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence

import numpy as np
from PIL import Image, ImageDraw

Descriptor = tuple[int, ...]

DESCRIPTOR_WORDS = 8
WORD_BITS = 32
HALF_PATCH_SIZE = 8
HALF_BOUNDARY = 16
DEFAULT_FAST_THRESHOLD = 40
DEFAULT_MAX_DISTANCE = 40

# Point pairs (px, py, qx, qy) of the learned ORB sampling pattern.
_ORB_PATTERN = np.array(
    [
        8, -3, 9, 5, 4, 2, 7, -12, -11, 9, -8, 2, 7, -12, 12, -13,
        2, -13, 2, 12, 1, -7, 1, 6, -2, -10, -2, -4, -13, -13, -11, -8,
        -13, -3, -12, -9, 10, 4, 11, 9, -13, -8, -8, -9, -11, 7, -9, 12,
        7, 7, 12, 6, -4, -5, -3, 0, -13, 2, -12, -3, -9, 0, -7, 5,
        12, -6, 12, -1, -3, 6, -2, 12, -6, -13, -4, -8, 11, -13, 12, -8,
        4, 7, 5, 1, 5, -3, 10, -3, 3, -7, 6, 12, -8, -7, -6, -2,
        -2, 11, -1, -10, -13, 12, -8, 10, -7, 3, -5, -3, -4, 2, -3, 7,
        -10, -12, -6, 11, 5, -12, 6, -7, 5, -6, 7, -1, 1, 0, 4, -5,
        9, 11, 11, -13, 4, 7, 4, 12, 2, -1, 4, 4, -4, -12, -2, 7,
        -8, -5, -7, -10, 4, 11, 9, 12, 0, -8, 1, -13, -13, -2, -8, 2,
        -3, -2, -2, 3, -6, 9, -4, -9, 8, 12, 10, 7, 0, 9, 1, 3,
        7, -5, 11, -10, -13, -6, -11, 0, 10, 7, 12, 1, -6, -3, -6, 12,
        10, -9, 12, -4, -13, 8, -8, -12, -13, 0, -8, -4, 3, 3, 7, 8,
        5, 7, 10, -7, -1, 7, 1, -12, 3, -10, 5, 6, 2, -4, 3, -10,
        -13, 0, -13, 5, -13, -7, -12, 12, -13, 3, -11, 8, -7, 12, -4, 7,
        6, -10, 12, 8, -9, -1, -7, -6, -2, -5, 0, 12, -12, 5, -7, 5,
        3, -10, 8, -13, -7, -7, -4, 5, -3, -2, -1, -7, 2, 9, 5, -11,
        -11, -13, -5, -13, -1, 6, 0, -1, 5, -3, 5, 2, -4, -13, -4, 12,
        -9, -6, -9, 6, -12, -10, -8, -4, 10, 2, 12, -3, 7, 12, 12, 12,
        -7, -13, -6, 5, -4, 9, -3, 4, 7, -1, 12, 2, -7, 6, -5, 1,
        -13, 11, -12, 5, -3, 7, -2, -6, 7, -8, 12, -7, -13, -7, -11, -12,
        1, -3, 12, 12, 2, -6, 3, 0, -4, 3, -2, -13, -1, -13, 1, 9,
        7, 1, 8, -6, 1, -1, 3, 12, 9, 1, 12, 6, -1, -9, -1, 3,
        -13, -13, -10, 5, 7, 7, 10, 12, 12, -5, 12, 9, 6, 3, 7, 11,
        5, -13, 6, 10, 2, -12, 2, 3, 3, 8, 4, -6, 2, 6, 12, -13,
        9, -12, 10, 3, -8, 4, -7, 9, -11, 12, -4, -6, 1, 12, 2, -8,
        6, -9, 7, -4, 2, 3, 3, -2, 6, 3, 11, 0, 3, -3, 8, -8,
        7, 8, 9, 3, -11, -5, -6, -4, -10, 11, -5, 10, -5, -8, -3, 12,
        -10, 5, -9, 0, 8, -1, 12, -6, 4, -6, 6, -11, -10, 12, -8, 7,
        4, -2, 6, 7, -2, 0, -2, 12, -5, -8, -5, 2, 7, -6, 10, 12,
        -9, -13, -8, -8, -5, -13, -5, -2, 8, -8, 9, -13, -9, -11, -9, 0,
        1, -8, 1, -2, 7, -4, 9, 1, -2, 1, -1, -4, 11, -6, 12, -11,
        -12, -9, -6, 4, 3, 7, 7, 12, 5, 5, 10, 8, 0, -4, 2, 8,
        -9, 12, -5, -13, 0, 7, 2, 12, -1, 2, 1, 7, 5, 11, 7, -9,
        3, 5, 6, -8, -13, -4, -8, 9, -5, 9, -3, -3, -4, -7, -3, -12,
        6, 5, 8, 0, -7, 6, -6, 12, -13, 6, -5, -2, 1, -10, 3, 10,
        4, 1, 8, -4, -2, -2, 2, -13, 2, -12, 12, 12, -2, -13, 0, -6,
        4, 1, 9, 3, -6, -10, -3, -5, -3, -13, -1, 1, 7, 5, 12, -11,
        4, -2, 5, -7, -13, 9, -9, -5, 7, 1, 8, 6, 7, -8, 7, 6,
        -7, -4, -7, 1, -8, 11, -7, -8, -13, 6, -12, -8, 2, 4, 3, 9,
        10, -5, 12, 3, -6, -5, -6, 7, 8, -3, 9, -8, 2, -12, 2, 8,
        -11, -2, -10, 3, -12, -13, -7, -9, -11, 0, -10, -5, 5, -3, 11, 8,
        -2, -13, -1, 12, -1, -8, 0, 9, -13, -11, -12, -5, -10, -2, -10, 11,
        -3, 9, -2, -13, 2, -3, 3, 2, -9, -13, -4, 0, -4, 6, -3, -10,
        -4, 12, -2, -7, -6, -11, -4, 9, 6, -3, 6, 11, -13, 11, -5, 5,
        11, 11, 12, 6, 7, -5, 12, -2, -1, 12, 0, 7, -4, -8, -3, -2,
        -7, 1, -6, 7, -13, -12, -8, -13, -7, -2, -6, -8, -8, 5, -6, -9,
        -5, -1, -4, 5, -13, 7, -8, 10, 1, 5, 5, -13, 1, 0, 10, -13,
        9, 12, 10, -1, 5, -8, 10, -9, -1, 11, 1, -13, -9, -3, -6, 2,
        -1, -10, 1, 12, -13, 1, -8, -10, 8, -11, 10, -6, 2, -13, 3, -6,
        7, -13, 12, -9, -10, -10, -5, -7, -10, -8, -8, -13, 4, -6, 8, 5,
        3, 12, 8, -13, -4, 2, -3, -3, 5, -13, 10, -12, 4, -13, 5, -1,
        -9, 9, -4, 3, 0, 3, 3, -9, -12, 1, -6, 1, 3, 2, 4, -8,
        -10, -10, -10, 9, 8, -13, 12, 12, -8, -12, -6, -5, 2, 2, 3, 7,
        10, 6, 11, -8, 6, 8, 8, -12, -7, 10, -6, 5, -3, -9, -3, 9,
        -1, -13, -1, 5, -3, -7, -3, 4, -8, -2, -8, 3, 4, 2, 12, 12,
        2, -5, 3, 11, 6, -9, 11, -13, 3, -1, 7, 12, 11, -1, 12, 4,
        -3, 0, -3, 6, 4, -11, 4, 12, 2, -4, 2, 1, -10, -6, -8, 1,
        -13, 7, -11, 1, -13, 12, -11, -13, 6, 0, 11, -13, 0, -1, 1, 4,
        -13, 3, -9, -2, -9, 8, -6, -3, -13, -6, -8, -2, 5, -9, 8, 10,
        2, 7, 3, -9, -1, -6, -1, -1, 9, 5, 11, -2, 11, -3, 12, -8,
        3, 0, 3, 5, -1, 4, 0, 10, 3, -6, 4, 5, -13, 0, -10, 5,
        5, 8, 12, 11, 8, 9, 9, -6, 7, -4, 8, -12, -10, 4, -10, 9,
        7, 3, 12, 4, 9, -7, 10, -2, 7, 0, 12, -2, -1, -6, 0, -11,
    ],
    dtype=float,
).reshape(DESCRIPTOR_WORDS * WORD_BITS, 4)

# The 16-pixel Bresenham circle of radius 3 used by FAST, as (dx, dy).
_CIRCLE = (
    (0, 3), (1, 3), (2, 2), (3, 1), (3, 0), (3, -1), (2, -2), (1, -3),
    (0, -3), (-1, -3), (-2, -2), (-3, -1), (-3, 0), (-3, 1), (-2, 2), (-1, 3),
)
_ARC_LENGTH = 9
_FAST_BORDER = 3


@dataclass(frozen=True)
class Match:
    """A match of descriptor ``query_idx`` in the first set to ``train_idx`` in the second."""

    query_idx: int
    train_idx: int
    distance: int


def load_gray(path) -> np.ndarray:
    """Load an image file as an 8-bit grayscale array."""
    with Image.open(path) as img:
        return np.asarray(img.convert("L"), dtype=np.uint8)


def _gray(image) -> np.ndarray:
    arr = np.asarray(image)
    if arr.ndim != 2:
        raise ValueError(f"expected a 2D grayscale image, got shape {arr.shape}")
    return arr


def fast_detect(image, threshold: int = DEFAULT_FAST_THRESHOLD) -> np.ndarray:
    """Detect FAST-9 corners with 3x3 non-maximum suppression.

    A pixel is a corner when nine contiguous pixels of its circle are all
    brighter than it by more than ``threshold`` or all darker by more than
    ``threshold``. Returns an ``(n, 2)`` array of ``(x, y)`` in row-major order.
    """
    img = _gray(image).astype(np.int32)
    rows, cols = img.shape
    b = _FAST_BORDER
    if rows <= 2 * b or cols <= 2 * b:
        return np.zeros((0, 2))

    center = img[b:rows - b, b:cols - b]
    diffs = np.stack(
        [img[b + dy:rows - b + dy, b + dx:cols - b + dx] - center for dx, dy in _CIRCLE]
    )
    n = len(_CIRCLE)
    arcs = [[(s + k) % n for k in range(_ARC_LENGTH)] for s in range(n)]
    bright = np.max(np.stack([diffs[arc].min(axis=0) for arc in arcs]), axis=0)
    dark = np.max(np.stack([(-diffs[arc]).min(axis=0) for arc in arcs]), axis=0)
    strength = np.maximum(bright, dark)

    scores = np.zeros(img.shape, dtype=np.int32)
    inner = scores[b:rows - b, b:cols - b]
    is_corner = strength > threshold
    inner[is_corner] = strength[is_corner]

    padded = np.pad(scores, 1)
    keep = scores > 0
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dx == 0 and dy == 0:
                continue
            neighbour = padded[1 + dy:1 + dy + rows, 1 + dx:1 + dx + cols]
            keep &= scores > neighbour

    ys, xs = np.nonzero(keep)
    return np.column_stack([xs, ys]).astype(float)


def _descriptor(img: np.ndarray, x: float, y: float) -> Descriptor:
    rows, cols = img.shape
    xi, yi = int(x), int(y)
    patch = img[yi - HALF_PATCH_SIZE:yi + HALF_PATCH_SIZE,
                xi - HALF_PATCH_SIZE:xi + HALF_PATCH_SIZE].astype(float)
    offsets = np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE, dtype=float)
    m10 = float((patch * offsets[None, :]).sum())
    m01 = float((patch * offsets[:, None]).sum())

    m_sqrt = np.sqrt(m01 * m01 + m10 * m10) + 1e-18
    sin_theta = m01 / m_sqrt
    cos_theta = m10 / m_sqrt

    px, py, qx, qy = _ORB_PATTERN.T
    ppx = cos_theta * px - sin_theta * py + x
    ppy = sin_theta * px + cos_theta * py + y
    qqx = cos_theta * qx - sin_theta * qy + x
    qqy = sin_theta * qx + cos_theta * qy + y

    def sample(xs, ys):
        cx = np.clip(xs.astype(int), 0, cols - 1)
        cy = np.clip(ys.astype(int), 0, rows - 1)
        return img[cy, cx]

    bits = (sample(ppx, ppy) < sample(qqx, qqy)).reshape(DESCRIPTOR_WORDS, WORD_BITS)
    weights = [1 << k for k in range(WORD_BITS)]
    return tuple(
        sum(w for w, bit in zip(weights, word) if bit) for word in bits.tolist()
    )


def compute_orb(image, keypoints: Iterable[Sequence[float]]) -> list[Optional[Descriptor]]:
    """Compute oriented BRIEF descriptors for the keypoints.

    Keypoints within 16 pixels of the border get ``None``.
    """
    img = _gray(image)
    rows, cols = img.shape
    descriptors: list[Optional[Descriptor]] = []
    for kp in keypoints:
        x, y = (float(v) for v in kp)
        if (
            x < HALF_BOUNDARY
            or y < HALF_BOUNDARY
            or x >= cols - HALF_BOUNDARY
            or y >= rows - HALF_BOUNDARY
        ):
            descriptors.append(None)
            continue
        descriptors.append(_descriptor(img, x, y))
    return descriptors


def hamming_distance(a: Sequence[int], b: Sequence[int]) -> int:
    """Number of differing bits between two descriptors."""
    if len(a) != len(b):
        raise ValueError("descriptors differ in length")
    return sum((int(x) ^ int(y)).bit_count() for x, y in zip(a, b))


def _packed(descs: Sequence[Descriptor]) -> np.ndarray:
    return np.array(descs, dtype=np.uint32).reshape(len(descs), DESCRIPTOR_WORDS)


def bf_match(
    desc1: Sequence[Optional[Descriptor]],
    desc2: Sequence[Optional[Descriptor]],
    d_max: int = DEFAULT_MAX_DISTANCE,
) -> list[Match]:
    """Match each descriptor of ``desc1`` to its nearest in ``desc2``.

    Missing descriptors are skipped. A match is kept only when its distance
    is below ``d_max``; on ties the earliest train index wins.
    """
    idx1 = [i for i, d in enumerate(desc1) if d is not None]
    idx2 = [i for i, d in enumerate(desc2) if d is not None]
    if not idx1 or not idx2:
        return []
    for d in (*(desc1[i] for i in idx1), *(desc2[i] for i in idx2)):
        if len(d) != DESCRIPTOR_WORDS:
            raise ValueError(f"descriptors must have {DESCRIPTOR_WORDS} words")

    a = _packed([desc1[i] for i in idx1])
    b = _packed([desc2[i] for i in idx2])
    xor = a[:, None, :] ^ b[None, :, :]
    distances = np.unpackbits(xor.view(np.uint8), axis=-1).sum(axis=-1)

    matches = []
    for row, i1 in zip(distances, idx1):
        best = int(np.argmin(row))
        distance = int(row[best])
        if distance < d_max:
            matches.append(Match(i1, idx2[best], distance))
    return matches


def _draw_matches(img1, kps1, img2, kps2, matches) -> Image.Image:
    h1, w1 = img1.shape
    h2, w2 = img2.shape
    canvas = Image.new("RGB", (w1 + w2, max(h1, h2)))
    canvas.paste(Image.fromarray(img1).convert("RGB"), (0, 0))
    canvas.paste(Image.fromarray(img2).convert("RGB"), (w1, 0))
    draw = ImageDraw.Draw(canvas)
    palette = np.random.default_rng(0)
    for m in matches:
        color = tuple(int(c) for c in palette.integers(0, 256, 3))
        x1, y1 = kps1[m.query_idx]
        x2, y2 = kps2[m.train_idx]
        x2 += w1
        for cx, cy in ((x1, y1), (x2, y2)):
            draw.ellipse((cx - 3, cy - 3, cx + 3, cy + 3), outline=color)
        draw.line((x1, y1, x2, y2), fill=color)
    return canvas


def main(argv=None) -> int:
    """Detect, describe and match ORB features in two images; save ``matches.png``."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) == 0:
        first_file, second_file = "./1.png", "./2.png"
    elif len(args) == 2:
        first_file, second_file = args
    else:
        print("usage: orb [img1 img2]")
        return 1

    first_image = load_gray(first_file)
    second_image = load_gray(second_file)

    t1 = time.perf_counter()
    keypoints1 = fast_detect(first_image, DEFAULT_FAST_THRESHOLD)
    descriptor1 = compute_orb(first_image, keypoints1)
    keypoints2 = fast_detect(second_image, DEFAULT_FAST_THRESHOLD)
    descriptor2 = compute_orb(second_image, keypoints2)
    t2 = time.perf_counter()
    for descs in (descriptor1, descriptor2):
        bad = sum(d is None for d in descs)
        print(f"bad/total: {bad}/{len(descs)}")
    print(f"extract ORB cost = {t2 - t1} seconds. ")

    t1 = time.perf_counter()
    matches = bf_match(descriptor1, descriptor2)
    t2 = time.perf_counter()
    print(f"match ORB cost = {t2 - t1} seconds. ")
    print(f"matches: {len(matches)}")

    image_show = _draw_matches(first_image, keypoints1, second_image, keypoints2, matches)
    image_show.save(Path("matches.png"))
    print("done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())