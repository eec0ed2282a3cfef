# bhgrav/gravsim/octree/dense_grid.py
"""
Fixed-depth dense octree addressed by Morton key.

All levels live in two flat arrays (centers, masses); level `d` starts at
offset (8^d - 1) / 7 and holds 8^d cells. The grid spans [-2L, 2L] on every
axis, L being the domain half-extent ("space limit"). Centers are computed once
at build time, masses are cleared and refilled every step.
"""

import numpy as np
from typing import List, Tuple

from numba import njit, prange, float64, int64, boolean, void, types

from gravsim.octree.morton import morton_decode, morton_encode
from gravsim.constants import MASS_IDX, MAX_DENSE_DEPTH, FILL_MODES, FILL_MODE_MASS
from gravsim.utils import timing_decorator

float64_1d = types.Array(types.float64, 1, 'C')
float64_2d = types.Array(types.float64, 2, 'C')
int64_1d = types.Array(types.int64, 1, 'C')


# --- Numba Kernels ---
@njit(void(float64_2d, int64_1d, int64, float64), cache=True, nogil=True, parallel=True)
def build_dense_centers(centers, level_offsets, depth, extent):
    """(Numba Kernel) Writes the center of every cell of every level."""
    for d in range(depth):
        dim = 1 << d
        half_dim = dim * 0.5
        cell_size = extent / dim
        offset = level_offsets[d]
        n_cells = 1 << (3 * d)
        for j in prange(n_cells):
            x, y, z = morton_decode(j)
            centers[offset + j, 0] = cell_size * (x + 0.5 - half_dim)
            centers[offset + j, 1] = cell_size * (y + 0.5 - half_dim)
            centers[offset + j, 2] = cell_size * (z + 0.5 - half_dim)


@njit(void(float64_1d), cache=True, nogil=True, parallel=True)
def clear_dense_masses(masses):
    """(Numba Kernel) Zeroes the mass of every cell."""
    for i in prange(masses.shape[0]):
        masses[i] = 0.0


@njit(int64(float64_2d, float64_1d, int64_1d, int64, float64, boolean), cache=True, nogil=True)
def fill_dense_masses(bodies, masses, level_offsets, max_depth, space_limit, use_body_mass):
    """
    (Numba Kernel) Routes every body from its deepest-level cell up to the root,
    adding its weight to each ancestor. Returns the number of bodies dropped
    because they fall outside the grid.
    """
    dim = 1 << max_depth
    cell_size = 4.0 * space_limit / dim
    two_l = 2.0 * space_limit
    dropped = 0
    for i in range(bodies.shape[0]):
        gx = int64(np.floor((bodies[i, 0] + two_l) / cell_size))
        gy = int64(np.floor((bodies[i, 1] + two_l) / cell_size))
        gz = int64(np.floor((bodies[i, 2] + two_l) / cell_size))
        if gx < 0 or gy < 0 or gz < 0 or gx >= dim or gy >= dim or gz >= dim:
            dropped += 1
            continue
        key = morton_encode(gx, gy, gz)
        weight = bodies[i, MASS_IDX] if use_body_mass else 1.0
        for d in range(max_depth, -1, -1):
            masses[level_offsets[d] + key] += weight
            key >>= 3
    return dropped


def grid_coords(positions: np.ndarray, space_limit: float, level: int) -> np.ndarray:
    """Integer grid coordinates of positions (n, 3) at a given level."""
    cell_size = 4.0 * space_limit / (1 << level)
    return np.floor((np.asarray(positions, dtype=np.float64) + 2.0 * space_limit) / cell_size).astype(np.int64)


class DenseOctree:
    """
    Dense, statically sized octree (levels 0..depth-1).

    build (constructor) -> clear() -> fill(bodies) every step. Bodies whose
    deepest-level coordinate falls outside the grid are skipped and counted in
    `dropped_bodies`; they are absent from that step's cell masses.
    """

    def __init__(self, depth: int, space_limit: float, fill_mode: str = FILL_MODE_MASS):
        if not isinstance(depth, (int, np.integer)) or not (1 <= depth <= MAX_DENSE_DEPTH):
            raise ValueError(f"Dense octree depth must be an integer in [1, {MAX_DENSE_DEPTH}], got {depth}")
        if not np.isfinite(space_limit) or space_limit <= 0:
            raise ValueError(f"space_limit must be a positive finite number, got {space_limit}")
        if fill_mode not in FILL_MODES:
            raise ValueError(f"Unknown dense fill mode '{fill_mode}'. Valid: {FILL_MODES}")

        self.depth = int(depth)
        self.max_depth = self.depth - 1
        self.space_limit = float(space_limit)
        self.fill_mode = fill_mode
        self.extent = 4.0 * self.space_limit
        self.level_offsets = np.array([(8**d - 1) // 7 for d in range(self.depth)], dtype=np.int64)
        self.level_sizes = np.array([self.extent / (1 << d) for d in range(self.depth)], dtype=np.float64)
        self.total_cells = (8**self.depth - 1) // 7
        self.dropped_bodies = 0
        self._build()

    @timing_decorator
    def _build(self):
        try:
            self.centers = np.zeros((self.total_cells, 3), dtype=np.float64)
            self.masses = np.zeros(self.total_cells, dtype=np.float64)
        except MemoryError:
            print(f"ERROR: DenseOctree allocation failed (depth={self.depth}, cells={self.total_cells}).")
            raise
        build_dense_centers(self.centers, self.level_offsets, self.depth, self.extent)

    @property
    def min_cell_size(self) -> float:
        return float(self.level_sizes[self.max_depth])

    def clear(self):
        clear_dense_masses(self.masses)
        self.dropped_bodies = 0

    def fill(self, bodies: np.ndarray) -> int:
        """Accumulates body weights into the grid. Returns the dropped body count."""
        bodies_c = np.require(bodies, dtype=np.float64, requirements=['C'])
        self.dropped_bodies = int(fill_dense_masses(bodies_c, self.masses, self.level_offsets,
                                                    self.max_depth, self.space_limit,
                                                    self.fill_mode == FILL_MODE_MASS))
        return self.dropped_bodies

    def rebuild(self, bodies: np.ndarray) -> int:
        """clear() followed by fill()."""
        self.clear()
        return self.fill(bodies)

    def cell_index(self, level: int, key: int) -> int:
        if not (0 <= level < self.depth) or not (0 <= key < 8**level):
            raise IndexError(f"No cell with key {key} at level {level} (depth={self.depth})")
        return int(self.level_offsets[level] + key)

    def level_centers(self, level: int) -> np.ndarray:
        start = self.level_offsets[level]
        return self.centers[start:start + 8**level]

    def level_masses(self, level: int) -> np.ndarray:
        start = self.level_offsets[level]
        return self.masses[start:start + 8**level]

    def occupied_cells(self) -> int:
        return int(np.count_nonzero(self.masses))

    def root_mass(self) -> float:
        return float(self.masses[0])

    def cell_summary(self, level: int, key: int) -> Tuple[Tuple[float, float, float], float, float]:
        idx = self.cell_index(level, key)
        c = self.centers[idx]
        return (float(c[0]), float(c[1]), float(c[2])), float(self.level_sizes[level]), float(self.masses[idx])

    def summaries_for(self, cell_indices: np.ndarray) -> List[Tuple[Tuple[float, float, float], float, float]]:
        """(center, size, mass) tuples for flat cell indices."""
        out = []
        for idx in cell_indices:
            level = int(np.searchsorted(self.level_offsets, idx, side='right') - 1)
            c = self.centers[idx]
            out.append(((float(c[0]), float(c[1]), float(c[2])), float(self.level_sizes[level]), float(self.masses[idx])))
        return out
