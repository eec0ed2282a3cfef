# bhgrav/gravsim/physics/gravity/gravity_pp_cpu.py
import traceback

from gravsim.physics.base.gravity import GravityModel
from gravsim.body_data import BodyData
from gravsim.octree.force_eval import direct_accelerations, potential_energy
from gravsim.constants import ACC_SLICE


class GravityPPCpu(GravityModel):
    """Direct body-body N^2 gravity (Numba). Exact reference for the tree models."""
    def setup(self, bd: BodyData):
        super().setup(bd)
        self.N = bd.get_n()
        try:
            self.G = float(self.config['G'])
            self.softening = float(self.config['softening'])
        except KeyError as e: raise ValueError(f"Missing required config key for GravityPPCpu: {e}")
        except (ValueError, TypeError) as e: raise ValueError(f"Invalid config value for GravityPPCpu: {e}")
        if self.softening < 0: raise ValueError("Softening must be >= 0.")
        print(f"GravityPPCpu Setup: N={self.N}, G={self.G}, Softening={self.softening}")

    def compute_forces(self, bd: BodyData):
        bodies = bd.get_bodies("cpu", writeable=True)
        try:
            bodies[:, ACC_SLICE] = direct_accelerations(bodies, self.G, self.softening)
            self.cells_used = self.N * max(self.N - 1, 0)
            self.dropped_bodies = 0
        finally:
            bd.release_writeable()

    def compute_potential_energy(self, bd: BodyData) -> float:
        try:
            return potential_energy(bd.get_bodies("cpu"), self.G, self.softening)
        except Exception as e:
            print(f"ERROR during Numba direct PE calculation: {e}")
            traceback.print_exc()
            return 0.0
