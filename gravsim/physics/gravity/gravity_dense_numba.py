# bhgrav/gravsim/physics/gravity/gravity_dense_numba.py
"""
Barnes-Hut gravity on the fixed-depth dense octree, Numba kernels on the CPU.

The grid is built once in setup() (cell centers never change); each step
clears and refills the cell masses and walks the grid iteratively per body.
"""

import traceback
from typing import List, Optional

from gravsim.physics.base.gravity import GravityModel, CellSummary
from gravsim.body_data import BodyData
from gravsim.octree.dense_grid import DenseOctree
from gravsim.octree.force_eval import evaluate_dense, dense_point_masses, potential_energy
from gravsim.constants import ACC_SLICE, POS_SLICE, FILL_MODE_MASS


class GravityDenseNumba(GravityModel):
    """Dense octree gravity model (cell centers as expansion points)."""

    def __init__(self, config: dict = None):
        super().__init__(config)
        self.N: int = 0
        self.grid: Optional[DenseOctree] = None

    def setup(self, bd: BodyData):
        super().setup(bd)
        self.N = bd.get_n()
        self._read_common_params()
        try:
            space_limit = float(self.config['space_limit'])
            depth = int(self.config['octree_depth'])
            fill_mode = self.config.get('dense_fill_mode', FILL_MODE_MASS)
        except KeyError as e: raise ValueError(f"Missing required config key for GravityDenseNumba: {e}")
        except (ValueError, TypeError) as e: raise ValueError(f"Invalid config value for GravityDenseNumba: {e}")

        self.grid = DenseOctree(depth, space_limit, fill_mode)
        print("GravityDenseNumba Setup:")
        print(f"  N = {self.N}, G = {self.G:.3e}, Softening = {self.softening:.3f}, Theta = {self.theta:.2f}")
        print(f"  Depth = {depth}, Cells = {self.grid.total_cells}, Min cell = {self.grid.min_cell_size:.3f}, Fill = {fill_mode}")

    def compute_forces(self, bd: BodyData):
        if self.grid is None: raise RuntimeError("GravityDenseNumba.compute_forces() called before setup().")
        bodies = bd.get_bodies("cpu", writeable=True)
        try:
            self.dropped_bodies = self.grid.rebuild(bodies)
            acc, visits = evaluate_dense(bodies, self.grid, self.G, self.softening, self.theta)
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
        if self.grid is None or not (0 <= body_idx < self.N): return []
        pos = bd.get_bodies("cpu")[body_idx, POS_SLICE]
        _, _, cells = dense_point_masses(pos, self.grid, self.G, self.softening, self.theta)
        return self.grid.summaries_for(cells)

    def cleanup(self):
        self.grid = None
