# bhgrav/gravsim/physics/gravity/gravity_cell_tree.py
"""
Barnes-Hut gravity on the adaptive cell tree, Numba kernels on the CPU.

Every call to compute_forces() empties the arena tree, inserts all bodies and
walks the tree recursively for each body, using cell centers of mass.
Potential energy uses the direct pair sum.
"""

import numpy as np
import traceback
from typing import List, Optional

from gravsim.physics.base.gravity import GravityModel, CellSummary
from gravsim.body_data import BodyData
from gravsim.octree.cell_tree import CellTree
from gravsim.octree.force_eval import evaluate_cell_tree, cell_tree_point_masses, potential_energy
from gravsim.constants import ACC_SLICE, POS_SLICE, DEFAULT_MAX_TREE_DEPTH


class GravityCellTreeNumba(GravityModel):
    """
    Adaptive octree gravity model.

    The root cell is centered at the origin with edge 4 * space_limit, so it
    covers the same region as the dense grid. Bodies outside it are skipped
    for the step and counted in `dropped_bodies`.
    """

    def __init__(self, config: dict = None):
        super().__init__(config)
        self.N: int = 0
        self.tree: Optional[CellTree] = None

    def setup(self, bd: BodyData):
        super().setup(bd)
        self.N = bd.get_n()
        self._read_common_params()
        try:
            self.space_limit = float(self.config['space_limit'])
            self.max_tree_depth = int(self.config.get('max_tree_depth', DEFAULT_MAX_TREE_DEPTH))
        except KeyError as e: raise ValueError(f"Missing required config key for GravityCellTreeNumba: {e}")
        except (ValueError, TypeError) as e: raise ValueError(f"Invalid config value for GravityCellTreeNumba: {e}")
        if self.space_limit <= 0: raise ValueError("space_limit must be positive.")

        self.tree = CellTree(4.0 * self.space_limit, max_depth=self.max_tree_depth,
                             capacity=4 * self.N + 8 * (self.max_tree_depth + 1) + 1)
        print("GravityCellTreeNumba Setup:")
        print(f"  N = {self.N}, G = {self.G:.3e}, Softening = {self.softening:.3f}, Theta = {self.theta:.2f}")
        print(f"  Root size = {self.tree.size:.2f}, Max depth = {self.max_tree_depth}")

    def build_tree(self, bodies: np.ndarray) -> CellTree:
        self.tree.reset()
        self.tree.insert_bodies(bodies)
        self.dropped_bodies = self.tree.dropped_bodies
        return self.tree

    def compute_forces(self, bd: BodyData):
        if self.tree is None: raise RuntimeError("GravityCellTreeNumba.compute_forces() called before setup().")
        bodies = bd.get_bodies("cpu", writeable=True)
        try:
            self.build_tree(bodies)
            acc, visits = evaluate_cell_tree(bodies, self.tree, self.G, self.softening, self.theta)
            bodies[:, ACC_SLICE] = acc
            self.cells_used = visits
        finally:
            bd.release_writeable()

    def compute_potential_energy(self, bd: BodyData) -> float:
        try:
            return potential_energy(bd.get_bodies("cpu"), self.G, self.softening)
        except Exception as e:
            print(f"ERROR during Numba direct PE calculation: {e}")
            traceback.print_exc()
            return 0.0

    def debug_cells(self, bd: BodyData, body_idx: int) -> List[CellSummary]:
        if self.tree is None or not (0 <= body_idx < self.N): return []
        pos = bd.get_bodies("cpu")[body_idx, POS_SLICE]
        _, _, cells = cell_tree_point_masses(pos, self.tree, self.G, self.softening, self.theta)
        return [self.tree.cell_summary(int(c)) for c in cells]

    def cleanup(self):
        self.tree = None
