# bhgrav/gravsim/diagnostics.py
"""
Conserved quantities and separation statistics of a body array.

All functions take the (N, 12) float array and return float64 results.
"""

import numpy as np
from typing import Dict, Optional, Tuple

from scipy.spatial.distance import pdist

from gravsim.constants import POS_SLICE, VEL_SLICE, MASS_IDX


def _split(bodies: np.ndarray):
    b = np.asarray(bodies, dtype=np.float64)
    return b[:, POS_SLICE], b[:, VEL_SLICE], b[:, MASS_IDX]


def kinetic_energy(bodies: np.ndarray) -> float:
    _, vel, mass = _split(bodies)
    return float(0.5 * np.einsum('i,ij,ij->', mass, vel, vel))


def center_of_mass(bodies: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """(position, velocity) of the center of mass; zeros for a massless system."""
    pos, vel, mass = _split(bodies)
    total = mass.sum()
    if total <= 1e-30:
        return np.zeros(3), np.zeros(3)
    return mass @ pos / total, mass @ vel / total


def linear_momentum(bodies: np.ndarray) -> np.ndarray:
    _, vel, mass = _split(bodies)
    return mass @ vel


def angular_momentum(bodies: np.ndarray) -> np.ndarray:
    """Total L = sum m (r - r_com) x v."""
    pos, vel, mass = _split(bodies)
    com, _ = center_of_mass(bodies)
    return np.cross(pos - com, vel * mass[:, None]).sum(axis=0)


def separation_range(bodies: np.ndarray, max_n: int = 5000) -> Tuple[Optional[float], Optional[float]]:
    """
    Smallest and largest pairwise distance. O(N^2) memory, so (None, None)
    above `max_n` bodies or below two.
    """
    n = len(bodies)
    if n < 2 or n > max_n:
        return None, None
    d = pdist(np.asarray(bodies[:, POS_SLICE], dtype=np.float64))
    return float(d.min()), float(d.max())


def radial_snapshot(bodies: np.ndarray) -> Dict[str, np.ndarray]:
    """Per-body speed, distance from the center of mass and mass."""
    pos, vel, mass = _split(bodies)
    com, _ = center_of_mass(bodies)
    return {'speeds': np.linalg.norm(vel, axis=1),
            'radii': np.linalg.norm(pos - com, axis=1),
            'masses': mass.copy()}
