# bhgrav/tests/conftest.py
"""Shared fixtures: body builders, small simulation settings, Taichi runtime."""

import copy

import numpy as np
import pytest

from gravsim.constants import BODY_STRIDE, MASS_IDX


def make_bodies(positions, velocities=None, masses=None) -> np.ndarray:
    """(N, 12) body array from per-body positions / velocities / masses."""
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    n = positions.shape[0]
    bodies = np.zeros((n, BODY_STRIDE), dtype=np.float64)
    bodies[:, 0:3] = positions
    if velocities is not None:
        bodies[:, 4:7] = np.asarray(velocities, dtype=np.float64).reshape(-1, 3)
    bodies[:, MASS_IDX] = 1.0 if masses is None else np.asarray(masses, dtype=np.float64)
    return bodies


def random_bodies(n: int, radius: float, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return make_bodies(rng.uniform(-radius, radius, size=(n, 3)), masses=rng.uniform(0.5, 2.0, size=n))


@pytest.fixture
def small_settings():
    """Default settings shrunk to something a test can step quickly."""
    from gravconfig.default_settings import DEFAULT_SETTINGS
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    settings.update({
        'N': 64,
        'octree_depth': 4,
        'octree_depth_taichi': 4,
        'max_tree_depth': 16,
        'dt': 0.005,
        'random_seed': 1234,
    })
    settings['GRAPH_SETTINGS']['plot_interval_steps'] = 2
    return settings


@pytest.fixture
def two_body_settings(small_settings):
    settings = dict(small_settings)
    settings.update({'N': 2, 'G': 1.0, 'softening': 0.01, 'theta': 0.5, 'dt': 0.01})
    return settings


@pytest.fixture(scope="session")
def taichi_runtime():
    """Initialises Taichi once per session on the CPU in float64; skips if unavailable."""
    ti = pytest.importorskip("taichi")
    ti.init(arch=ti.cpu, default_fp=ti.f64, default_ip=ti.i32)
    return ti
