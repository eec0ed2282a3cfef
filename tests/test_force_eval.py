# bhgrav/tests/test_force_eval.py
"""
Tests for Barnes-Hut force evaluation.

Validates:
1. Exact two-body acceleration and force symmetry
2. Small theta reproduces the direct sum
3. Visits decrease as theta opens fewer cells
4. Dense-grid walk against bodies placed on cell centers
5. Debug point-mass lists and potential energy
"""

import numpy as np
import pytest

from conftest import make_bodies, random_bodies
from gravsim.octree.cell_tree import create_octree
from gravsim.octree.dense_grid import DenseOctree, grid_coords
from gravsim.octree.morton import encode_coords
from gravsim.octree.force_eval import (
    evaluate_cell_tree,
    cell_tree_point_masses,
    evaluate_dense,
    dense_point_masses,
    dense_min_dist_sq,
    direct_accelerations,
    potential_energy,
)


class TestCellTreeForces:
    """Recursive walk over the adaptive tree."""

    def test_two_body_exact(self):
        bodies = make_bodies([[-5.0, 0.0, 0.0], [5.0, 0.0, 0.0]])
        tree = create_octree(bodies, size=40.0)
        acc, visits = evaluate_cell_tree(bodies, tree, G=1.0, softening=0.01, theta=0.5)
        np.testing.assert_allclose(acc[0], [0.01, 0.0, 0.0], rtol=1e-12)
        np.testing.assert_allclose(acc[1], [-0.01, 0.0, 0.0], rtol=1e-12)
        assert visits > 0

    def test_equal_and_opposite(self):
        bodies = make_bodies([[1.0, 2.0, -0.5], [-2.0, 0.5, 1.5]], masses=[3.0, 0.5])
        tree = create_octree(bodies, size=16.0)
        acc, _ = evaluate_cell_tree(bodies, tree, G=2.0, softening=0.0, theta=0.5)
        force = acc * bodies[:, 11:12]
        np.testing.assert_allclose(force[0], -force[1], rtol=1e-12)

    def test_small_theta_matches_direct_sum(self):
        bodies = random_bodies(150, 4.0, seed=21)
        tree = create_octree(bodies, size=16.0)
        acc, _ = evaluate_cell_tree(bodies, tree, G=10.0, softening=0.5, theta=1e-4)
        np.testing.assert_allclose(acc, direct_accelerations(bodies, 10.0, 0.5), rtol=1e-9, atol=1e-12)

    def test_moderate_theta_close_to_direct_sum(self):
        bodies = random_bodies(300, 4.0, seed=22)
        tree = create_octree(bodies, size=16.0)
        acc, _ = evaluate_cell_tree(bodies, tree, G=1.0, softening=0.05, theta=0.3)
        direct = direct_accelerations(bodies, 1.0, 0.05)
        err = np.linalg.norm(acc - direct, axis=1) / np.linalg.norm(direct, axis=1)
        assert np.median(err) < 0.01

    def test_visits_monotone_in_theta(self):
        bodies = random_bodies(400, 5.0, seed=23)
        tree = create_octree(bodies, size=20.0)
        visits = [evaluate_cell_tree(bodies, tree, 1.0, 0.1, theta)[1] for theta in (0.2, 0.5, 1.0, 1.5)]
        assert all(a >= b for a, b in zip(visits, visits[1:]))
        assert visits[0] > visits[-1]

    def test_softening_floor_skips_close_pairs(self):
        bodies = make_bodies([[0.0, 0.0, 0.0], [0.1, 0.0, 0.0]])
        tree = create_octree(bodies, size=4.0)
        acc, _ = evaluate_cell_tree(bodies, tree, G=1.0, softening=0.5, theta=0.5)
        np.testing.assert_array_equal(acc, 0.0)

    def test_point_mass_list(self):
        bodies = make_bodies([[-5.0, 0.0, 0.0], [5.0, 0.0, 0.0], [5.0, 4.0, 0.0]])
        tree = create_octree(bodies, size=40.0)
        acc, visits, cells = cell_tree_point_masses(bodies[0, 0:3], tree, 1.0, 0.01, 0.5)
        full, _ = evaluate_cell_tree(bodies, tree, 1.0, 0.01, 0.5)
        np.testing.assert_allclose(acc, full[0], rtol=1e-12)
        assert len(cells) >= 1
        assert sum(tree.masses[c] for c in cells) == pytest.approx(2.0)


class TestDenseForces:
    """Iterative walk over the dense grid."""

    def test_two_body_on_cell_centers(self):
        # depth 4 over [-8, 8]: deepest cells are 2 wide, centers on odd coordinates
        grid = DenseOctree(4, 4.0)
        bodies = make_bodies([[-5.0, 1.0, 1.0], [5.0, 1.0, 1.0]])
        grid.rebuild(bodies)
        acc, _ = evaluate_dense(bodies, grid, G=1.0, softening=0.01, theta=0.1)
        np.testing.assert_allclose(acc[0], [0.01, 0.0, 0.0], rtol=1e-12, atol=1e-15)
        np.testing.assert_allclose(acc[1], [-0.01, 0.0, 0.0], rtol=1e-12, atol=1e-15)

    def test_min_dist_sq_floor(self):
        grid = DenseOctree(4, 4.0)
        assert dense_min_dist_sq(grid, 0.5) == pytest.approx(4.0)
        assert dense_min_dist_sq(grid, 9.0) == pytest.approx(9.0)

    def test_own_cell_excluded(self):
        grid = DenseOctree(3, 1.0)
        bodies = make_bodies([[0.2, 0.2, 0.2]])
        grid.rebuild(bodies)
        acc, _ = evaluate_dense(bodies, grid, G=1.0, softening=0.0, theta=0.5)
        np.testing.assert_array_equal(acc, 0.0)

    def test_small_theta_matches_snapped_direct_sum(self):
        # bodies moved onto their deepest cell centers see exactly the direct sum
        bodies = random_bodies(200, 4.0, seed=24)
        grid = DenseOctree(5, 4.0)
        grid.rebuild(bodies)
        keys = encode_coords(grid_coords(bodies[:, 0:3], grid.space_limit, grid.max_depth))
        snapped = bodies.copy()
        snapped[:, 0:3] = grid.centers[grid.level_offsets[grid.max_depth] + keys]
        acc, _ = evaluate_dense(snapped, grid, G=1.0, softening=0.05, theta=1e-4)
        direct = direct_accelerations(snapped, 1.0, dense_min_dist_sq(grid, 0.05))
        np.testing.assert_allclose(acc, direct, rtol=1e-9, atol=1e-12)

    def test_visits_monotone_in_theta(self):
        bodies = random_bodies(300, 4.0, seed=25)
        grid = DenseOctree(5, 4.0)
        grid.rebuild(bodies)
        visits = [evaluate_dense(bodies, grid, 1.0, 0.1, theta)[1] for theta in (0.2, 0.5, 1.0, 1.5)]
        assert all(a >= b for a, b in zip(visits, visits[1:]))

    def test_point_mass_list(self):
        grid = DenseOctree(4, 4.0)
        bodies = make_bodies([[-5.0, 1.0, 1.0], [5.0, 1.0, 1.0], [5.0, 5.0, 1.0]])
        grid.rebuild(bodies)
        acc, _, cells = dense_point_masses(bodies[0, 0:3], grid, 1.0, 0.01, 0.5)
        full, _ = evaluate_dense(bodies, grid, 1.0, 0.01, 0.5)
        np.testing.assert_allclose(acc, full[0], rtol=1e-12)
        summaries = grid.summaries_for(cells)
        assert sum(mass for _, _, mass in summaries) == pytest.approx(2.0)


class TestDirectSum:

    def test_pair_potential(self):
        bodies = make_bodies([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0]], masses=[1.0, 3.0])
        assert potential_energy(bodies, 2.0, 0.01) == pytest.approx(-3.0)

    def test_potential_floor(self):
        bodies = make_bodies([[0.0, 0.0, 0.0], [0.1, 0.0, 0.0]])
        assert potential_energy(bodies, 1.0, 0.25) == pytest.approx(-2.0)

    def test_single_body(self):
        assert potential_energy(make_bodies([[1.0, 1.0, 1.0]]), 1.0, 0.1) == 0.0

    def test_momentum_conserved(self):
        bodies = random_bodies(50, 3.0, seed=26)
        acc = direct_accelerations(bodies, 1.0, 0.1)
        np.testing.assert_allclose((acc * bodies[:, 11:12]).sum(axis=0), 0.0, atol=1e-10)
