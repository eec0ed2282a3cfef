# bhgrav/gravsim/physics/gravity/gravity_dense_taichi.py
"""
Dense octree Barnes-Hut gravity using Taichi kernels (GPU or multi-core CPU).

Each step runs three kernels, each a barrier for the next:
  clear  - zero every cell mass and the step counters,
  fill   - route every body to its deepest cell and atomically add its weight
           to that cell and all of its ancestors,
  force  - one iterative path walk per body, writing the acceleration slots
           of the front body field in place.
Cell centers are computed once on the host (DenseOctree) and uploaded.
"""

import numpy as np
import traceback
from typing import Dict, List, Optional

from gravsim.physics.base.gravity import GravityModel, CellSummary
from gravsim.body_data import BodyData
from gravsim.octree.dense_grid import DenseOctree
from gravsim.octree.force_eval import dense_point_masses, dense_min_dist_sq
from gravsim.constants import (POS_X, POS_Y, POS_Z, ACC_X, ACC_Y, ACC_Z, MASS_IDX, POS_SLICE,
                               FILL_MODE_MASS)

# --- Conditional Taichi Import ---
try:
    import taichi as ti
    from taichi.lang.util import to_numpy_type
    HAVE_TAICHI = True
except ImportError:
    ti = None
    to_numpy_type = None
    HAVE_TAICHI = False

# fparams slots
FP_G, FP_SOFTENING, FP_INV_THETA, FP_MIN_DIST_SQ, FP_SPACE_LIMIT = 0, 1, 2, 3, 4
N_FPARAMS = 5
# iparams slots
IP_MAX_DEPTH, IP_USE_MASS = 0, 1
N_IPARAMS = 2
# counters slots
CNT_DROPPED, CNT_VISITS = 0, 1

# ==============================
# --- Taichi Kernels ---
# ==============================

if HAVE_TAICHI:
    @ti.func
    def _spread_bits_ti(v):
        v = (v | (v << 16)) & 0x030000ff
        v = (v | (v << 8)) & 0x0300f00f
        v = (v | (v << 4)) & 0x030c30c3
        v = (v | (v << 2)) & 0x09249249
        return v

    @ti.func
    def morton_encode_ti(x, y, z):
        """(Taichi Func) Same key layout as the Numba morton_encode."""
        return _spread_bits_ti(x) | (_spread_bits_ti(y) << 1) | (_spread_bits_ti(z) << 2)

    @ti.kernel
    def clear_dense_ti_kernel(masses: ti.template(), counters: ti.template()):
        """(Taichi Kernel) Zeroes cell masses and the per-step counters."""
        for i in masses:
            masses[i] = 0.0
        for c in counters:
            counters[c] = 0

    @ti.kernel
    def fill_dense_ti_kernel(bodies: ti.template(), masses: ti.template(), level_offsets: ti.template(),
                             fparams: ti.template(), iparams: ti.template(), counters: ti.template()):
        """(Taichi Kernel) Atomically accumulates body weights from the deepest level up to the root."""
        for i in range(bodies.shape[0]):
            space_limit = fparams[FP_SPACE_LIMIT]
            max_depth = iparams[IP_MAX_DEPTH]
            dim = 1 << max_depth
            cell_size = 4.0 * space_limit / dim
            gx = ti.cast(ti.floor((bodies[i, POS_X] + 2.0 * space_limit) / cell_size), ti.i32)
            gy = ti.cast(ti.floor((bodies[i, POS_Y] + 2.0 * space_limit) / cell_size), ti.i32)
            gz = ti.cast(ti.floor((bodies[i, POS_Z] + 2.0 * space_limit) / cell_size), ti.i32)
            if gx < 0 or gy < 0 or gz < 0 or gx >= dim or gy >= dim or gz >= dim:
                ti.atomic_add(counters[CNT_DROPPED], 1)
            else:
                key = morton_encode_ti(gx, gy, gz)
                weight = ti.select(iparams[IP_USE_MASS] != 0, bodies[i, MASS_IDX], 1.0)
                d = max_depth
                while d >= 0:
                    ti.atomic_add(masses[level_offsets[d] + key], weight)
                    key = key >> 3
                    d -= 1

    @ti.kernel
    def dense_forces_ti_kernel(bodies: ti.template(), centers: ti.template(), masses: ti.template(),
                               level_offsets: ti.template(), level_sizes: ti.template(), path: ti.template(),
                               fparams: ti.template(), iparams: ti.template(), counters: ti.template()):
        """(Taichi Kernel) Iterative per-body path walk; path[i, d] is the body's cursor at depth d."""
        for i in range(bodies.shape[0]):
            G = fparams[FP_G]
            softening = fparams[FP_SOFTENING]
            inv_theta = fparams[FP_INV_THETA]
            min_dist_sq = fparams[FP_MIN_DIST_SQ]
            max_depth = iparams[IP_MAX_DEPTH]
            px = bodies[i, POS_X]
            py = bodies[i, POS_Y]
            pz = bodies[i, POS_Z]
            ax = 0.0
            ay = 0.0
            az = 0.0
            visits = 0
            depth = 0
            path[i, 0] = 0
            done = False
            while not done:
                key = path[i, depth]
                node = level_offsets[depth] + key
                m = masses[node]
                c = centers[node]
                rx = c[0] - px
                ry = c[1] - py
                rz = c[2] - pz
                dist_sq = ti.max(rx * rx + ry * ry + rz * rz, softening)
                s = level_sizes[depth] * inv_theta
                visits += 1
                if m > 0.0 and depth < max_depth and dist_sq <= s * s:
                    depth += 1
                    path[i, depth] = key << 3
                else:
                    if m > 0.0 and dist_sq > min_dist_sq:
                        f = G * m / dist_sq / ti.sqrt(dist_sq)
                        ax += f * rx
                        ay += f * ry
                        az += f * rz
                    # next sibling, backtracking past exhausted levels
                    while True:
                        if depth == 0:
                            done = True
                            break
                        path[i, depth] += 1
                        if (path[i, depth] & 7) != 0:
                            break
                        depth -= 1
            bodies[i, ACC_X] = ax
            bodies[i, ACC_Y] = ay
            bodies[i, ACC_Z] = az
            ti.atomic_add(counters[CNT_VISITS], visits)

    @ti.kernel
    def potential_n2_ti_kernel(bodies: ti.template(), fparams: ti.template()) -> ti.f64:
        """(Taichi Kernel) Pair potential -G*mi*mj/sqrt(max(r^2, softening)) summed over i < j."""
        total_potential = ti.cast(0.0, ti.f64)
        for i in range(bodies.shape[0]):
            G = fparams[FP_G]
            softening = fparams[FP_SOFTENING]
            mass_i = bodies[i, MASS_IDX]
            for j in range(i + 1, bodies.shape[0]):
                rx = bodies[j, POS_X] - bodies[i, POS_X]
                ry = bodies[j, POS_Y] - bodies[i, POS_Y]
                rz = bodies[j, POS_Z] - bodies[i, POS_Z]
                dist_sq = ti.max(rx * rx + ry * ry + rz * rz, softening)
                ti.atomic_add(total_potential, ti.cast(-G * mass_i * bodies[j, MASS_IDX] / ti.sqrt(dist_sq), ti.f64))
        return total_potential

# ==============================
# --- Python Class Definition ---
# ==============================

class GravityDenseTaichi(GravityModel):
    """Dense octree gravity model running clear/fill/force as Taichi kernels on the front body field."""

    def __init__(self, config: Optional[Dict] = None):
        super().__init__(config)
        if not HAVE_TAICHI:
            raise ImportError("Taichi is required for GravityDenseTaichi but not found.")
        try: self.ti_fp_dtype = ti.lang.impl.current_cfg().default_fp
        except Exception as e: raise RuntimeError("Taichi not initialized before GravityDenseTaichi init?") from e
        self.np_fp_dtype = to_numpy_type(self.ti_fp_dtype)
        self.N: int = 0
        self.grid: Optional[DenseOctree] = None
        self.ti_centers = None
        self.ti_masses = None
        self.ti_level_offsets = None
        self.ti_level_sizes = None
        self.ti_path = None
        self.ti_fparams = None
        self.ti_iparams = None
        self.ti_counters = None

    def setup(self, bd: BodyData):
        """Validates config, builds cell centers on the host and allocates the Taichi fields."""
        super().setup(bd)
        self.N = bd.get_n()
        self._read_common_params()
        try:
            space_limit = float(self.config['space_limit'])
            depth = int(self.config.get('octree_depth_taichi', self.config['octree_depth']))
            fill_mode = self.config.get('dense_fill_mode', FILL_MODE_MASS)
        except KeyError as e: raise ValueError(f"Missing required config key for GravityDenseTaichi: {e}")
        except (ValueError, TypeError) as e: raise ValueError(f"Invalid config value for GravityDenseTaichi: {e}")
        if self.N == 0: raise ValueError("GravityDenseTaichi needs at least one body.")

        self.grid = DenseOctree(depth, space_limit, fill_mode)
        try:
            total = self.grid.total_cells
            self.ti_centers = ti.Vector.field(3, dtype=self.ti_fp_dtype, shape=total)
            self.ti_masses = ti.field(dtype=self.ti_fp_dtype, shape=total)
            self.ti_level_offsets = ti.field(dtype=ti.i32, shape=depth)
            self.ti_level_sizes = ti.field(dtype=self.ti_fp_dtype, shape=depth)
            self.ti_path = ti.field(dtype=ti.i32, shape=(self.N, depth))
            self.ti_fparams = ti.field(dtype=self.ti_fp_dtype, shape=N_FPARAMS)
            self.ti_iparams = ti.field(dtype=ti.i32, shape=N_IPARAMS)
            self.ti_counters = ti.field(dtype=ti.i32, shape=2)

            self.ti_centers.from_numpy(self.grid.centers.astype(self.np_fp_dtype))
            self.ti_level_offsets.from_numpy(self.grid.level_offsets.astype(np.int32))
            self.ti_level_sizes.from_numpy(self.grid.level_sizes.astype(self.np_fp_dtype))
            self._write_params()
        except Exception as e:
            print(f"ERROR allocating Taichi fields for GravityDenseTaichi: {e}")
            traceback.print_exc()
            self.cleanup()
            raise

        bd.ensure("gpu:ti")
        print("GravityDenseTaichi Setup:")
        print(f"  N = {self.N}, G = {self.G:.3e}, Softening = {self.softening:.3f}, Theta = {self.theta:.2f}, TaichiFP = {self.ti_fp_dtype}")
        print(f"  Depth = {depth}, Cells = {self.grid.total_cells}, Fill = {fill_mode}")

    def _write_params(self):
        fparams = np.zeros(N_FPARAMS, dtype=self.np_fp_dtype)
        fparams[FP_G] = self.G
        fparams[FP_SOFTENING] = self.softening
        fparams[FP_INV_THETA] = 1.0 / self.theta
        fparams[FP_MIN_DIST_SQ] = dense_min_dist_sq(self.grid, self.softening)
        fparams[FP_SPACE_LIMIT] = self.grid.space_limit
        self.ti_fparams.from_numpy(fparams)
        self.ti_iparams.from_numpy(np.array([self.grid.max_depth, int(self.grid.fill_mode == FILL_MODE_MASS)],
                                             dtype=np.int32))

    def update_config(self, config: Dict):
        super().update_config(config)
        if self.grid is not None and self.ti_fparams is not None:
            self._read_common_params()
            self._write_params()

    def compute_forces(self, bd: BodyData):
        if self.grid is None: raise RuntimeError("GravityDenseTaichi.compute_forces() called before setup().")
        bodies = bd.get_bodies("gpu:ti")
        clear_dense_ti_kernel(self.ti_masses, self.ti_counters)
        fill_dense_ti_kernel(bodies, self.ti_masses, self.ti_level_offsets,
                             self.ti_fparams, self.ti_iparams, self.ti_counters)
        dense_forces_ti_kernel(bodies, self.ti_centers, self.ti_masses, self.ti_level_offsets,
                               self.ti_level_sizes, self.ti_path, self.ti_fparams, self.ti_iparams,
                               self.ti_counters)
        bd.mark_modified("gpu:ti")
        counters = self.ti_counters.to_numpy()
        self.dropped_bodies = int(counters[CNT_DROPPED])
        self.cells_used = int(counters[CNT_VISITS])

    def compute_potential_energy(self, bd: BodyData) -> float:
        if self.N < 2: return 0.0
        try:
            return float(potential_n2_ti_kernel(bd.get_bodies("gpu:ti"), self.ti_fparams))
        except Exception as e:
            print(f"ERROR during Taichi PE calculation: {e}")
            traceback.print_exc()
            return 0.0

    def get_cell_masses(self) -> np.ndarray:
        """Copy of the cell masses filled by the last step (float64)."""
        return self.ti_masses.to_numpy().astype(np.float64)

    def debug_cells(self, bd: BodyData, body_idx: int) -> List[CellSummary]:
        """Replays the debug body's walk on the host against the last filled masses."""
        if self.grid is None or not (0 <= body_idx < self.N): return []
        self.grid.masses[:] = self.get_cell_masses()
        pos = np.asarray(bd.get_bodies("cpu")[body_idx, POS_SLICE], dtype=np.float64)
        _, _, cells = dense_point_masses(pos, self.grid, self.G, self.softening, self.theta)
        return self.grid.summaries_for(cells)

    def cleanup(self):
        self.ti_centers = None
        self.ti_masses = None
        self.ti_level_offsets = None
        self.ti_level_sizes = None
        self.ti_path = None
        self.ti_fparams = None
        self.ti_iparams = None
        self.ti_counters = None
        self.grid = None
