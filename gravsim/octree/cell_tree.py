# bhgrav/gravsim/octree/cell_tree.py
"""
Adaptive octree (cell tree) built by incremental body insertion.

Cells are allocated from a flat, growable arena of NumPy arrays and refer to
their children by index: a cell with first_child == -1 is a leaf, otherwise its
8 children occupy first_child .. first_child + 7. Child k covers the octant
x-high if k & 4, y-high if k & 2, z-high if k & 1 (a coordinate equal to the
parent center goes to the low side).

Insertion rules:
- an empty leaf takes the body directly (center of mass = body position);
- an occupied leaf splits into 8 children and hands its existing aggregate to
  the child containing the aggregate's center of mass, then the body continues
  downwards;
- every cell on the way down updates its running mass / center of mass;
- at max_depth an occupied leaf no longer splits, it absorbs the body into its
  aggregate (coincident bodies would otherwise recurse forever);
- bodies outside the root cell are ignored and counted.
"""

import numpy as np
from typing import Optional, Tuple

from numba import njit, float64, int64, void, types

from gravsim.constants import (MASS_IDX, NO_CHILD, DEFAULT_MAX_TREE_DEPTH, MIN_ARENA_CELLS,
                               BODY_STRIDE)

float64_1d = types.Array(types.float64, 1, 'C')
float64_2d = types.Array(types.float64, 2, 'C')
int64_1d = types.Array(types.int64, 1, 'C')

# counters[] slots
_N_USED = 0
_DROPPED = 1
_CAPPED = 2


# --- Numba Kernels ---
@njit(int64(float64_2d, int64, float64, float64, float64), cache=True, nogil=True)
def _octant_of(centers, cell, x, y, z):
    """(Numba Kernel) Child index of the octant of `cell` containing (x, y, z)."""
    k = 0
    if x > centers[cell, 0]: k += 4
    if y > centers[cell, 1]: k += 2
    if z > centers[cell, 2]: k += 1
    return k


@njit(void(int64, float64, float64, float64, float64, float64_1d, float64_2d), cache=True, nogil=True)
def _add_to_cell(cell, x, y, z, m, masses, coms):
    """(Numba Kernel) Folds a point mass into the cell's running aggregate."""
    old_m = masses[cell]
    new_m = old_m + m
    if new_m > 0.0:
        coms[cell, 0] = (coms[cell, 0] * old_m + x * m) / new_m
        coms[cell, 1] = (coms[cell, 1] * old_m + y * m) / new_m
        coms[cell, 2] = (coms[cell, 2] * old_m + z * m) / new_m
    else:
        coms[cell, 0] = x; coms[cell, 1] = y; coms[cell, 2] = z
    masses[cell] = new_m


@njit(void(int64, float64_2d, float64_1d, float64_1d, float64_2d, int64_1d, int64_1d, int64_1d),
      cache=True, nogil=True)
def _subdivide(cell, centers, sizes, masses, coms, first_child, depths, counters):
    """(Numba Kernel) Allocates the 8 children of `cell` from the arena."""
    fc = counters[_N_USED]
    counters[_N_USED] = fc + 8
    quarter = sizes[cell] * 0.25
    half = sizes[cell] * 0.5
    for k in range(8):
        child = fc + k
        centers[child, 0] = centers[cell, 0] + (quarter if (k & 4) else -quarter)
        centers[child, 1] = centers[cell, 1] + (quarter if (k & 2) else -quarter)
        centers[child, 2] = centers[cell, 2] + (quarter if (k & 1) else -quarter)
        sizes[child] = half
        masses[child] = 0.0
        coms[child, 0] = 0.0; coms[child, 1] = 0.0; coms[child, 2] = 0.0
        first_child[child] = NO_CHILD
        depths[child] = depths[cell] + 1
    first_child[cell] = fc


@njit(void(float64, float64, float64, float64, float64_2d, float64_1d, float64_1d, float64_2d,
           int64_1d, int64_1d, int64_1d, int64), cache=True, nogil=True)
def _insert_one(x, y, z, m, centers, sizes, masses, coms, first_child, depths, counters, max_depth):
    """(Numba Kernel) Inserts a single body starting at the root (cell 0)."""
    half = sizes[0] * 0.5
    if (abs(x - centers[0, 0]) > half or abs(y - centers[0, 1]) > half
            or abs(z - centers[0, 2]) > half):
        counters[_DROPPED] += 1
        return

    cell = 0
    while True:
        if first_child[cell] == NO_CHILD:
            if masses[cell] == 0.0:
                # empty leaf
                coms[cell, 0] = x; coms[cell, 1] = y; coms[cell, 2] = z
                masses[cell] = m
                return
            if depths[cell] >= max_depth:
                _add_to_cell(cell, x, y, z, m, masses, coms)
                counters[_CAPPED] += 1
                return
            _subdivide(cell, centers, sizes, masses, coms, first_child, depths, counters)
            # move the previous occupant(s) one level down
            home = first_child[cell] + _octant_of(centers, cell, coms[cell, 0], coms[cell, 1], coms[cell, 2])
            coms[home, 0] = coms[cell, 0]; coms[home, 1] = coms[cell, 1]; coms[home, 2] = coms[cell, 2]
            masses[home] = masses[cell]
        _add_to_cell(cell, x, y, z, m, masses, coms)
        cell = first_child[cell] + _octant_of(centers, cell, x, y, z)


@njit(int64(float64_2d, int64, float64_2d, float64_1d, float64_1d, float64_2d,
            int64_1d, int64_1d, int64_1d, int64), cache=True, nogil=True)
def insert_bodies_kernel(bodies, start, centers, sizes, masses, coms, first_child, depths, counters, max_depth):
    """
    (Numba Kernel) Inserts bodies[start:] in order. Stops before a body when the
    arena could run out mid-insertion and returns that body's index (== number
    of bodies when all were inserted).
    """
    n = bodies.shape[0]
    capacity = masses.shape[0]
    reserve = 8 * (max_depth + 1)
    for i in range(start, n):
        if capacity - counters[_N_USED] < reserve:
            return i
        _insert_one(bodies[i, 0], bodies[i, 1], bodies[i, 2], bodies[i, MASS_IDX],
                    centers, sizes, masses, coms, first_child, depths, counters, max_depth)
    return n


class CellTree:
    """Arena-backed adaptive octree. Reuse one instance per simulation via reset()."""

    def __init__(self, size: float, center=(0.0, 0.0, 0.0), max_depth: int = DEFAULT_MAX_TREE_DEPTH,
                 capacity: Optional[int] = None):
        if not np.isfinite(size) or size <= 0:
            raise ValueError(f"Root cell size must be positive and finite, got {size}")
        if int(max_depth) < 0:
            raise ValueError(f"max_depth must be >= 0, got {max_depth}")
        self.size = float(size)
        self.center = np.asarray(center, dtype=np.float64).reshape(3)
        self.max_depth = int(max_depth)
        min_capacity = max(MIN_ARENA_CELLS, 8 * (self.max_depth + 1) + 1)
        self._allocate(max(min_capacity, int(capacity or 0)))
        self.reset()

    def _allocate(self, capacity: int):
        self.centers = np.zeros((capacity, 3), dtype=np.float64)
        self.sizes = np.zeros(capacity, dtype=np.float64)
        self.masses = np.zeros(capacity, dtype=np.float64)
        self.coms = np.zeros((capacity, 3), dtype=np.float64)
        self.first_child = np.full(capacity, NO_CHILD, dtype=np.int64)
        self.depths = np.zeros(capacity, dtype=np.int64)
        self.counters = np.zeros(3, dtype=np.int64)

    def _grow(self):
        old_cap = self.capacity
        new_cap = old_cap * 2
        n_used = int(self.counters[_N_USED])
        counters = self.counters.copy()
        old = (self.centers, self.sizes, self.masses, self.coms, self.first_child, self.depths)
        try:
            self._allocate(new_cap)
        except MemoryError:
            print(f"ERROR: CellTree arena growth to {new_cap} cells failed.")
            raise
        for dst, src in zip((self.centers, self.sizes, self.masses, self.coms, self.first_child, self.depths), old):
            dst[:n_used] = src[:n_used]
        self.counters[:] = counters

    def reset(self):
        """Empties the tree, keeping the arena allocation."""
        self.counters[:] = 0
        self.counters[_N_USED] = 1
        self.centers[0] = self.center
        self.sizes[0] = self.size
        self.masses[0] = 0.0
        self.coms[0] = 0.0
        self.first_child[0] = NO_CHILD
        self.depths[0] = 0

    def insert_bodies(self, bodies: np.ndarray):
        """Inserts every body of an (N, 12) array, growing the arena as needed."""
        bodies_c = np.require(bodies, dtype=np.float64, requirements=['C'])
        if bodies_c.ndim != 2 or bodies_c.shape[1] != BODY_STRIDE:
            raise ValueError(f"Bodies must have shape (N, {BODY_STRIDE}), got {bodies_c.shape}")
        n = bodies_c.shape[0]
        next_idx = 0
        while next_idx < n:
            next_idx = insert_bodies_kernel(bodies_c, next_idx, self.centers, self.sizes, self.masses,
                                            self.coms, self.first_child, self.depths, self.counters,
                                            self.max_depth)
            if next_idx < n:
                self._grow()

    def insert_body(self, pos, mass: float = 1.0):
        record = np.zeros((1, BODY_STRIDE), dtype=np.float64)
        record[0, 0:3] = pos
        record[0, MASS_IDX] = mass
        self.insert_bodies(record)

    # --- queries ---
    @property
    def root(self) -> int:
        return 0

    @property
    def capacity(self) -> int:
        return self.masses.shape[0]

    @property
    def n_cells(self) -> int:
        return int(self.counters[_N_USED])

    @property
    def dropped_bodies(self) -> int:
        return int(self.counters[_DROPPED])

    @property
    def capped_insertions(self) -> int:
        """Insertions absorbed into a leaf at max_depth."""
        return int(self.counters[_CAPPED])

    def is_leaf(self, cell: int) -> bool:
        return self.first_child[cell] == NO_CHILD

    def children(self, cell: int) -> range:
        fc = int(self.first_child[cell])
        return range(0) if fc == NO_CHILD else range(fc, fc + 8)

    def total_mass(self) -> float:
        return float(self.masses[0])

    def center_of_mass(self, cell: int = 0) -> np.ndarray:
        return self.coms[cell].copy()

    def leaf_count(self) -> int:
        used = self.n_cells
        return int(np.count_nonzero((self.first_child[:used] == NO_CHILD) & (self.masses[:used] > 0.0)))

    def cell_summary(self, cell: int) -> Tuple[Tuple[float, float, float], float, float]:
        c = self.centers[cell]
        return (float(c[0]), float(c[1]), float(c[2])), float(self.sizes[cell]), float(self.masses[cell])


def create_octree(bodies: np.ndarray, size: float, max_depth: int = DEFAULT_MAX_TREE_DEPTH) -> CellTree:
    """Builds a cell tree rooted at the origin with edge length `size`."""
    n = len(bodies)
    tree = CellTree(size, max_depth=max_depth, capacity=4 * n + 8 * (int(max_depth) + 1) + 1)
    tree.insert_bodies(bodies)
    return tree
