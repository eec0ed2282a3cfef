# bhgrav/tests/test_dense_grid.py
"""
Tests for the dense fixed-depth octree.

Validates:
1. Level layout and cell centers
2. Mass / count conservation across levels
3. Parent cells aggregate their children
4. Bodies outside the grid are dropped and counted
"""

import numpy as np
import pytest

from conftest import make_bodies, random_bodies
from gravsim.octree.dense_grid import DenseOctree, grid_coords
from gravsim.octree.morton import morton_encode
from gravsim.constants import FILL_MODE_COUNT


class TestLayout:
    """Offsets, sizes and centers computed at build time."""

    def test_level_offsets(self):
        grid = DenseOctree(4, 1.0)
        np.testing.assert_array_equal(grid.level_offsets, [0, 1, 9, 73])
        assert grid.total_cells == 585

    def test_cell_sizes(self):
        grid = DenseOctree(3, 2.0)
        assert grid.extent == pytest.approx(8.0)
        np.testing.assert_allclose(grid.level_sizes, [8.0, 4.0, 2.0])
        assert grid.min_cell_size == pytest.approx(2.0)

    def test_centers(self):
        grid = DenseOctree(3, 1.0)
        np.testing.assert_allclose(grid.centers[0], [0.0, 0.0, 0.0])
        level1 = grid.level_centers(1)
        np.testing.assert_allclose(level1[0], [-1.0, -1.0, -1.0])
        np.testing.assert_allclose(level1[1], [1.0, -1.0, -1.0])
        np.testing.assert_allclose(level1[7], [1.0, 1.0, 1.0])

    def test_deepest_center_matches_key(self):
        grid = DenseOctree(4, 1.0)
        # level 3 cells are 0.5 wide, grid starts at -2
        key = morton_encode(2, 5, 7)
        center, size, _ = grid.cell_summary(3, key)
        assert size == pytest.approx(0.5)
        np.testing.assert_allclose(center, [-0.75, 0.75, 1.75])

    @pytest.mark.parametrize("depth", [0, 11])
    def test_invalid_depth(self, depth):
        with pytest.raises(ValueError):
            DenseOctree(depth, 1.0)

    def test_invalid_fill_mode(self):
        with pytest.raises(ValueError):
            DenseOctree(3, 1.0, fill_mode="volume")

    def test_invalid_space_limit(self):
        with pytest.raises(ValueError):
            DenseOctree(3, 0.0)

    def test_cell_index_out_of_range(self):
        grid = DenseOctree(3, 1.0)
        assert grid.cell_index(2, 5) == 14
        with pytest.raises(IndexError):
            grid.cell_index(3, 0)
        with pytest.raises(IndexError):
            grid.cell_index(1, 8)


class TestFill:
    """Mass accumulation from the deepest level up to the root."""

    def test_root_holds_total_mass(self):
        bodies = random_bodies(500, 3.0, seed=1)
        grid = DenseOctree(5, 3.0)
        assert grid.rebuild(bodies) == 0
        assert grid.root_mass() == pytest.approx(bodies[:, 11].sum())

    def test_count_mode_root_is_n(self):
        bodies = random_bodies(300, 3.0, seed=2)
        grid = DenseOctree(5, 3.0, fill_mode=FILL_MODE_COUNT)
        grid.rebuild(bodies)
        assert grid.root_mass() == pytest.approx(300.0)

    def test_every_level_conserves_mass(self):
        bodies = random_bodies(200, 2.0, seed=3)
        grid = DenseOctree(4, 2.0)
        grid.rebuild(bodies)
        total = bodies[:, 11].sum()
        for level in range(grid.depth):
            assert grid.level_masses(level).sum() == pytest.approx(total)

    def test_parent_equals_sum_of_children(self):
        bodies = random_bodies(200, 2.0, seed=4)
        grid = DenseOctree(4, 2.0)
        grid.rebuild(bodies)
        for level in range(grid.depth - 1):
            parents = grid.level_masses(level)
            children = grid.level_masses(level + 1).reshape(-1, 8).sum(axis=1)
            np.testing.assert_allclose(parents, children)

    def test_body_lands_in_its_deepest_cell(self):
        grid = DenseOctree(4, 1.0)
        pos = np.array([[0.3, -1.1, 1.9]])
        grid.rebuild(make_bodies(pos, masses=[2.5]))
        gx, gy, gz = grid_coords(pos, 1.0, grid.max_depth)[0]
        assert grid.level_masses(grid.max_depth)[morton_encode(gx, gy, gz)] == pytest.approx(2.5)
        assert grid.occupied_cells() == grid.depth

    def test_outside_bodies_dropped(self):
        bodies = make_bodies([[0.0, 0.0, 0.0], [2.5, 0.0, 0.0], [0.0, -3.0, 0.0]])
        grid = DenseOctree(3, 1.0)
        assert grid.rebuild(bodies) == 2
        assert grid.dropped_bodies == 2
        assert grid.root_mass() == pytest.approx(1.0)

    def test_clear_resets_masses(self):
        grid = DenseOctree(3, 1.0)
        grid.rebuild(random_bodies(20, 1.0))
        grid.clear()
        assert grid.occupied_cells() == 0
        assert grid.dropped_bodies == 0

    def test_summaries_for(self):
        grid = DenseOctree(3, 1.0)
        grid.rebuild(make_bodies([[0.5, 0.5, 0.5]]))
        summaries = grid.summaries_for(np.array([0, grid.cell_index(1, 7)]))
        assert summaries[0] == ((0.0, 0.0, 0.0), 4.0, 1.0)
        assert summaries[1] == ((1.0, 1.0, 1.0), 2.0, 1.0)
