"""Random number helpers used for perturbing problems."""

from __future__ import annotations

import math
import random


def _source(rng: random.Random | None):
    return rng if rng is not None else random


def rand_double(rng: random.Random | None = None) -> float:
    """Return a uniform sample from the unit interval."""
    return _source(rng).random()


def rand_normal(rng: random.Random | None = None) -> float:
    """Return a standard normal sample drawn by the polar method."""
    while True:
        x1 = 2.0 * rand_double(rng) - 1.0
        x2 = 2.0 * rand_double(rng) - 1.0
        w = x1 * x1 + x2 * x2
        if 0.0 < w < 1.0:
            break
    w = math.sqrt((-2.0 * math.log(w)) / w)
    return x1 * w