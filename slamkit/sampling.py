"""Uniform and normal random draws used to perturb problems."""

from __future__ import annotations

import math
import random
from typing import Optional


def rand_double(rng: Optional[random.Random] = None) -> float:
    """Draw a uniform value in ``[0, 1)`` from ``rng`` (or the global generator)."""
    source = random if rng is None else rng
    return float(source.random())


def rand_normal(rng: Optional[random.Random] = None) -> float:
    """Draw a standard normal value with the Marsaglia polar method."""
    while True:
        x1 = 2.0 * rand_double(rng) - 1.0
        x2 = 2.0 * rand_double(rng) - 1.0
        w = x1 * x1 + x2 * x2
        if 0.0 < w < 1.0:
            break
    w = math.sqrt((-2.0 * math.log(w)) / w)
    return x1 * w