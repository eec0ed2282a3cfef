# bhgrav/gravsim/seeding.py
"""Initial body distributions."""

import numpy as np
from typing import Dict, Optional

from gravsim.constants import BODY_STRIDE, POS_SLICE, VEL_X, VEL_Y, VEL_SLICE, MASS_IDX, DEFAULT_BODY_MASS


def rand_range(rng: np.random.Generator, low: float, high: float, size=None):
    """Uniform samples in [low, high)."""
    return rng.uniform(low, high, size=size)


def random_point_in_sphere(rng: np.random.Generator, r_min: float, r_max: float, n: int) -> np.ndarray:
    """
    `n` points uniformly distributed by volume in the shell r_min <= r <= r_max
    around the origin. Raises ValueError if r_min > r_max.
    """
    if r_min > r_max:
        raise ValueError(f"Minimum spawn radius {r_min} greater than maximum {r_max}")
    if r_min < 0:
        raise ValueError(f"Minimum spawn radius must be >= 0, got {r_min}")
    # inverse CDF of r^2 dr between the two radii
    u = rand_range(rng, 0.0, 1.0, size=n)
    r = np.cbrt(r_min**3 + u * (r_max**3 - r_min**3))
    cos_t = rand_range(rng, -1.0, 1.0, size=n)
    sin_t = np.sqrt(1.0 - cos_t**2)
    phi = rand_range(rng, 0.0, 2.0 * np.pi, size=n)
    pts = np.empty((n, 3), dtype=np.float64)
    pts[:, 0] = r * sin_t * np.cos(phi)
    pts[:, 1] = r * sin_t * np.sin(phi)
    pts[:, 2] = r * cos_t
    return pts


def seed_bodies(N: int, config: Dict, rng: Optional[np.random.Generator] = None,
                dtype=np.float64) -> np.ndarray:
    """
    Body array (N, 12) spawned in the shell [spawn_min_frac * L, L] with a
    rigid spin about the z axis (vx = y*spin/100, vy = -x*spin/100).

    With black_hole_mass > 0, body 0 sits at the origin at rest with that mass;
    config['_pinned_body'] is set to 0 so the integrators keep it fixed.
    """
    if rng is None:
        rng = np.random.default_rng(config.get('random_seed'))
    L = float(config['space_limit'])
    r_min = float(config.get('spawn_min_frac', 0.5)) * L
    spin = float(config.get('spin', 0.0))
    body_mass = float(config.get('body_mass', DEFAULT_BODY_MASS))
    bh_mass = float(config.get('black_hole_mass', 0.0))

    bodies = np.zeros((N, BODY_STRIDE), dtype=dtype)
    bodies[:, POS_SLICE] = random_point_in_sphere(rng, r_min, L, N)
    bodies[:, VEL_X] = bodies[:, 1] * spin / 100.0
    bodies[:, VEL_Y] = -bodies[:, 0] * spin / 100.0
    bodies[:, MASS_IDX] = body_mass

    config['_pinned_body'] = -1
    if bh_mass > 0 and N > 0:
        bodies[0, POS_SLICE] = 0.0
        bodies[0, VEL_SLICE] = 0.0
        bodies[0, MASS_IDX] = bh_mass
        config['_pinned_body'] = 0
    print(f"  Seeded {N} bodies: shell=[{r_min:.2f}, {L:.2f}], spin={spin:.1f}, mass={body_mass:.2f}"
          + (f", black hole mass={bh_mass:.1f}" if config['_pinned_body'] == 0 else ""))
    return bodies
