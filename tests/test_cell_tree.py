# bhgrav/tests/test_cell_tree.py
"""
Tests for the adaptive (arena) octree.

Validates:
1. Center of mass and total mass aggregation
2. Structural invariant (0 or 8 children, aggregates equal subtree sums)
3. Depth cap for coincident bodies
4. Arena growth and out-of-root bodies
"""

import numpy as np
import pytest

from conftest import make_bodies, random_bodies
from gravsim.octree.cell_tree import CellTree, create_octree
from gravsim.constants import NO_CHILD


def _check_structure(tree: CellTree):
    """Every used cell is a leaf or has 8 children whose masses sum to its own."""
    for cell in range(tree.n_cells):
        assert tree.masses[cell] >= 0.0
        children = tree.children(cell)
        if tree.is_leaf(cell):
            assert len(children) == 0
            continue
        assert len(children) == 8
        child_masses = tree.masses[list(children)]
        assert child_masses.sum() == pytest.approx(tree.masses[cell])
        com = (tree.coms[list(children)] * child_masses[:, None]).sum(axis=0) / child_masses.sum()
        np.testing.assert_allclose(com, tree.coms[cell], atol=1e-9)
        for child in children:
            assert tree.sizes[child] == pytest.approx(tree.sizes[cell] / 2)
            assert tree.depths[child] == tree.depths[cell] + 1


class TestAggregation:
    """Mass and center-of-mass bookkeeping."""

    def test_two_body_center_of_mass(self):
        tree = create_octree(make_bodies([[-1.0, 0.0, 0.0], [1.0, 0.0, 0.0]]), size=8.0)
        np.testing.assert_allclose(tree.center_of_mass(), [0.0, 0.0, 0.0])
        assert tree.total_mass() == pytest.approx(2.0)

    def test_weighted_center_of_mass(self):
        tree = create_octree(make_bodies([[0.0, 0.0, 0.0], [3.0, 0.0, 0.0]], masses=[2.0, 1.0]), size=8.0)
        np.testing.assert_allclose(tree.center_of_mass(), [1.0, 0.0, 0.0])

    def test_single_body_is_root_leaf(self):
        tree = CellTree(4.0)
        tree.insert_body((0.5, -0.5, 1.0), mass=3.0)
        assert tree.n_cells == 1
        assert tree.is_leaf(tree.root)
        np.testing.assert_allclose(tree.center_of_mass(), [0.5, -0.5, 1.0])

    def test_random_bodies_total_mass(self):
        bodies = random_bodies(400, 5.0, seed=11)
        tree = create_octree(bodies, size=20.0)
        assert tree.total_mass() == pytest.approx(bodies[:, 11].sum())
        expected_com = (bodies[:, 0:3] * bodies[:, 11:12]).sum(axis=0) / bodies[:, 11].sum()
        np.testing.assert_allclose(tree.center_of_mass(), expected_com, atol=1e-9)
        assert tree.leaf_count() == 400


class TestStructure:
    """Shape of the tree after insertion."""

    def test_structural_invariant(self):
        tree = create_octree(random_bodies(300, 5.0, seed=12), size=20.0)
        _check_structure(tree)

    def test_split_separates_octants(self):
        tree = create_octree(make_bodies([[-1.0, -1.0, -1.0], [1.0, 1.0, 1.0]]), size=8.0)
        children = tree.children(tree.root)
        assert len(children) == 8
        # child 0 is the all-low octant, child 7 the all-high one
        assert tree.masses[children[0]] == pytest.approx(1.0)
        assert tree.masses[children[7]] == pytest.approx(1.0)
        np.testing.assert_allclose(tree.centers[children[7]], [2.0, 2.0, 2.0])

    def test_coincident_bodies_stop_at_max_depth(self):
        bodies = make_bodies([[0.3, 0.3, 0.3]] * 3)
        tree = create_octree(bodies, size=4.0, max_depth=5)
        assert tree.total_mass() == pytest.approx(3.0)
        assert tree.capped_insertions == 2
        assert tree.depths[:tree.n_cells].max() == 5
        _check_structure(tree)

    def test_outside_root_dropped(self):
        tree = create_octree(make_bodies([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0]]), size=4.0)
        assert tree.dropped_bodies == 1
        assert tree.total_mass() == pytest.approx(1.0)

    def test_arena_grows(self):
        tree = CellTree(20.0, max_depth=16, capacity=1)
        start_capacity = tree.capacity
        bodies = random_bodies(2000, 9.0, seed=13)
        tree.insert_bodies(bodies)
        assert tree.capacity > start_capacity
        assert tree.total_mass() == pytest.approx(bodies[:, 11].sum())
        _check_structure(tree)

    def test_reset_keeps_allocation(self):
        tree = create_octree(random_bodies(100, 2.0), size=8.0)
        capacity = tree.capacity
        tree.reset()
        assert tree.n_cells == 1
        assert tree.total_mass() == 0.0
        assert tree.first_child[0] == NO_CHILD
        assert tree.capacity == capacity


class TestValidation:

    def test_bad_size(self):
        with pytest.raises(ValueError):
            CellTree(0.0)

    def test_bad_depth(self):
        with pytest.raises(ValueError):
            CellTree(1.0, max_depth=-1)

    def test_bad_body_shape(self):
        with pytest.raises(ValueError):
            CellTree(1.0).insert_bodies(np.zeros((3, 4)))
