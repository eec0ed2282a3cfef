# bhgrav/gravsim/octree/force_eval.py
"""
Barnes-Hut force evaluation kernels.

Both trees use the same opening test. For a body at p and a cell with
position c (center of mass for the cell tree, geometric center for the dense
grid), mass M and edge length s:

    r       = c - p
    dist_sq = max(|r|^2, softening)         (softening is a squared-distance floor)
    open    = not leaf and dist_sq <= (s / theta)^2

A cell that is not opened acts as a point mass and, when M > 0 and dist_sq is
above the interaction floor, adds G*M/dist_sq * r/sqrt(dist_sq) to the body's
acceleration. The floor is `softening` for the cell tree and the direct sum
(which removes the body's own leaf) and max(softening, min_cell_size^2) for the
dense grid (which removes the deepest cell holding the body).

Every walk counts its admissibility evaluations ("visits") and can record the
cells it used as point masses for a single debug body.
"""

import numpy as np
from math import sqrt

from numba import njit, prange, float64, int64, void, types

from gravsim.constants import POS_X, POS_Y, POS_Z, MASS_IDX, NO_CHILD

float64_1d = types.Array(types.float64, 1, 'C')
float64_2d = types.Array(types.float64, 2, 'C')
int64_1d = types.Array(types.int64, 1, 'C')


# --- Adaptive Cell Tree Walk (recursive) ---
@njit(void(float64, float64, float64, float64, float64, float64, int64,
           float64_2d, float64_1d, float64_1d, int64_1d,
           float64_1d, int64_1d, int64_1d), nogil=True)
def accumulate_cell_tree_accel(px, py, pz, G, softening, inv_theta, cell,
                               coms, sizes, masses, first_child,
                               acc, counts, record):
    """
    (Numba Kernel) Adds the acceleration exerted by `cell` (or its subtree) on a
    body at (px, py, pz) into acc[0:3].
    counts[0] accumulates visits, counts[1] the number of recorded cells;
    a cell used as a point mass is appended to `record` while space remains.
    """
    counts[0] += 1
    m = masses[cell]
    if m <= 0.0:
        return
    rx = coms[cell, 0] - px
    ry = coms[cell, 1] - py
    rz = coms[cell, 2] - pz
    dist_sq = max(rx * rx + ry * ry + rz * rz, softening)
    fc = first_child[cell]
    s = sizes[cell] * inv_theta
    if fc != NO_CHILD and dist_sq <= s * s:
        for k in range(8):
            accumulate_cell_tree_accel(px, py, pz, G, softening, inv_theta, fc + k,
                                       coms, sizes, masses, first_child, acc, counts, record)
        return
    if dist_sq > softening:
        f = G * m / dist_sq / sqrt(dist_sq)
        acc[0] += f * rx
        acc[1] += f * ry
        acc[2] += f * rz
        if counts[1] < record.shape[0]:
            record[counts[1]] = cell
            counts[1] += 1


@njit(void(float64_2d, float64, float64, float64, float64_2d, float64_1d, float64_1d, int64_1d,
           float64_2d, int64_1d), cache=True, nogil=True, parallel=True)
def cell_tree_accelerations(bodies, G, softening, theta, coms, sizes, masses, first_child,
                            acc_out, visits_out):
    """(Numba Kernel) Tree-walk acceleration for every body, one independent walk per body."""
    inv_theta = 1.0 / theta
    no_record = np.empty(0, dtype=np.int64)
    for i in prange(bodies.shape[0]):
        acc = np.zeros(3, dtype=np.float64)
        counts = np.zeros(2, dtype=np.int64)
        accumulate_cell_tree_accel(bodies[i, POS_X], bodies[i, POS_Y], bodies[i, POS_Z],
                                   G, softening, inv_theta, 0, coms, sizes, masses, first_child,
                                   acc, counts, no_record)
        acc_out[i, 0] = acc[0]
        acc_out[i, 1] = acc[1]
        acc_out[i, 2] = acc[2]
        visits_out[i] = counts[0]


# --- Dense Grid Walk (iterative, path cursor per depth) ---
@njit(int64(float64, float64, float64, float64, float64, float64, float64,
            float64_2d, float64_1d, int64_1d, float64_1d, int64,
            float64_1d, int64_1d, int64_1d, int64_1d), cache=True, nogil=True)
def accumulate_dense_accel(px, py, pz, G, softening, inv_theta, min_dist_sq,
                           centers, masses, level_offsets, level_sizes, max_depth,
                           acc, path, record, record_count):
    """
    (Numba Kernel) Walks the dense grid for one body in Morton order without
    recursion. path[d] holds the key of the cell being examined at depth d;
    children of key m are m<<3 .. (m<<3)+7. Returns the number of visits.
    """
    visits = 0
    depth = 0
    path[0] = 0
    while True:
        key = path[depth]
        node = level_offsets[depth] + key
        m = masses[node]
        rx = centers[node, 0] - px
        ry = centers[node, 1] - py
        rz = centers[node, 2] - pz
        dist_sq = max(rx * rx + ry * ry + rz * rz, softening)
        s = level_sizes[depth] * inv_theta
        visits += 1

        if m > 0.0 and depth < max_depth and dist_sq <= s * s:
            depth += 1
            path[depth] = key << 3
            continue

        if m > 0.0 and dist_sq > min_dist_sq:
            f = G * m / dist_sq / sqrt(dist_sq)
            acc[0] += f * rx
            acc[1] += f * ry
            acc[2] += f * rz
            if record_count[0] < record.shape[0]:
                record[record_count[0]] = node
                record_count[0] += 1

        # next sibling, backtracking past exhausted levels
        done = False
        while True:
            if depth == 0:
                done = True
                break
            path[depth] += 1
            if (path[depth] & 7) != 0:
                break
            depth -= 1
        if done:
            break
    return visits


@njit(void(float64_2d, float64, float64, float64, float64, float64_2d, float64_1d, int64_1d,
           float64_1d, int64, float64_2d, int64_1d), cache=True, nogil=True, parallel=True)
def dense_accelerations(bodies, G, softening, theta, min_dist_sq, centers, masses, level_offsets,
                        level_sizes, max_depth, acc_out, visits_out):
    """(Numba Kernel) Dense-grid walk for every body in parallel."""
    inv_theta = 1.0 / theta
    no_record = np.empty(0, dtype=np.int64)
    for i in prange(bodies.shape[0]):
        acc = np.zeros(3, dtype=np.float64)
        path = np.zeros(max_depth + 1, dtype=np.int64)
        record_count = np.zeros(1, dtype=np.int64)
        visits_out[i] = accumulate_dense_accel(bodies[i, POS_X], bodies[i, POS_Y], bodies[i, POS_Z],
                                               G, softening, inv_theta, min_dist_sq,
                                               centers, masses, level_offsets, level_sizes, max_depth,
                                               acc, path, no_record, record_count)
        acc_out[i, 0] = acc[0]
        acc_out[i, 1] = acc[1]
        acc_out[i, 2] = acc[2]


# --- Direct Summation (reference) ---
@njit(void(float64_2d, float64, float64, float64_2d), cache=True, nogil=True, parallel=True)
def direct_sum_accelerations(bodies, G, softening, acc_out):
    """(Numba Kernel) O(N^2) accelerations with the cell-tree interaction floor."""
    n = bodies.shape[0]
    for i in prange(n):
        ax = 0.0; ay = 0.0; az = 0.0
        px = bodies[i, POS_X]; py = bodies[i, POS_Y]; pz = bodies[i, POS_Z]
        for j in range(n):
            if j == i:
                continue
            m = bodies[j, MASS_IDX]
            if m <= 0.0:
                continue
            rx = bodies[j, POS_X] - px
            ry = bodies[j, POS_Y] - py
            rz = bodies[j, POS_Z] - pz
            dist_sq = max(rx * rx + ry * ry + rz * rz, softening)
            if dist_sq > softening:
                f = G * m / dist_sq / sqrt(dist_sq)
                ax += f * rx; ay += f * ry; az += f * rz
        acc_out[i, 0] = ax
        acc_out[i, 1] = ay
        acc_out[i, 2] = az


@njit(float64(float64_2d, float64, float64), cache=True, nogil=True, parallel=True)
def direct_potential_energy(bodies, G, softening):
    """(Numba Kernel) Total pair potential -G*mi*mj/sqrt(max(r^2, softening))."""
    n = bodies.shape[0]
    total = 0.0
    for i in prange(n):
        mi = bodies[i, MASS_IDX]
        px = bodies[i, POS_X]; py = bodies[i, POS_Y]; pz = bodies[i, POS_Z]
        for j in range(i + 1, n):
            rx = bodies[j, POS_X] - px
            ry = bodies[j, POS_Y] - py
            rz = bodies[j, POS_Z] - pz
            dist_sq = max(rx * rx + ry * ry + rz * rz, softening)
            total += -G * mi * bodies[j, MASS_IDX] / sqrt(dist_sq)
    return total


# --- Python wrappers ---
def _positions_c(bodies: np.ndarray) -> np.ndarray:
    return np.require(bodies, dtype=np.float64, requirements=['C'])


def evaluate_cell_tree(bodies, tree, G, softening, theta):
    """Returns ((N, 3) accelerations, total visits) for every body against a CellTree."""
    bodies_c = _positions_c(bodies)
    n = bodies_c.shape[0]
    acc = np.zeros((n, 3), dtype=np.float64)
    visits = np.zeros(n, dtype=np.int64)
    if n > 0:
        cell_tree_accelerations(bodies_c, float(G), float(softening), float(theta),
                                tree.coms, tree.sizes, tree.masses, tree.first_child, acc, visits)
    return acc, int(visits.sum())


def cell_tree_point_masses(pos, tree, G, softening, theta, max_cells=4096):
    """
    Walks the cell tree for a single position. Returns (acceleration, visits,
    indices of cells used as point masses).
    """
    acc = np.zeros(3, dtype=np.float64)
    counts = np.zeros(2, dtype=np.int64)
    record = np.full(int(max_cells), -1, dtype=np.int64)
    accumulate_cell_tree_accel(float(pos[0]), float(pos[1]), float(pos[2]), float(G), float(softening),
                               1.0 / float(theta), 0, tree.coms, tree.sizes, tree.masses, tree.first_child,
                               acc, counts, record)
    return acc, int(counts[0]), record[:counts[1]].copy()


def evaluate_dense(bodies, grid, G, softening, theta):
    """Returns ((N, 3) accelerations, total visits) for every body against a filled DenseOctree."""
    bodies_c = _positions_c(bodies)
    n = bodies_c.shape[0]
    acc = np.zeros((n, 3), dtype=np.float64)
    visits = np.zeros(n, dtype=np.int64)
    if n > 0:
        dense_accelerations(bodies_c, float(G), float(softening), float(theta),
                            dense_min_dist_sq(grid, softening), grid.centers, grid.masses,
                            grid.level_offsets, grid.level_sizes, grid.max_depth, acc, visits)
    return acc, int(visits.sum())


def dense_point_masses(pos, grid, G, softening, theta, max_cells=4096):
    """Dense-grid counterpart of cell_tree_point_masses (flat cell indices)."""
    acc = np.zeros(3, dtype=np.float64)
    path = np.zeros(grid.max_depth + 1, dtype=np.int64)
    record = np.full(int(max_cells), -1, dtype=np.int64)
    record_count = np.zeros(1, dtype=np.int64)
    visits = accumulate_dense_accel(float(pos[0]), float(pos[1]), float(pos[2]), float(G), float(softening),
                                    1.0 / float(theta), dense_min_dist_sq(grid, softening),
                                    grid.centers, grid.masses, grid.level_offsets, grid.level_sizes,
                                    grid.max_depth, acc, path, record, record_count)
    return acc, int(visits), record[:record_count[0]].copy()


def dense_min_dist_sq(grid, softening) -> float:
    return max(float(softening), grid.min_cell_size ** 2)


def direct_accelerations(bodies, G, softening) -> np.ndarray:
    bodies_c = _positions_c(bodies)
    acc = np.zeros((bodies_c.shape[0], 3), dtype=np.float64)
    if bodies_c.shape[0] > 0:
        direct_sum_accelerations(bodies_c, float(G), float(softening), acc)
    return acc


def potential_energy(bodies, G, softening) -> float:
    bodies_c = _positions_c(bodies)
    if bodies_c.shape[0] < 2:
        return 0.0
    return float(direct_potential_energy(bodies_c, float(G), float(softening)))
