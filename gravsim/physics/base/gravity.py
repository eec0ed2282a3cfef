# bhgrav/gravsim/physics/base/gravity.py
"""
defines the ABC for gravitational interaction models
"""

from abc import abstractmethod
from typing import List, Tuple

from gravsim.physics.base.physics import PhysicsModel
from gravsim.body_data import BodyData

CellSummary = Tuple[Tuple[float, float, float], float, float]

class GravityModel(PhysicsModel):
    """
    ABC for gravitational acceleration and potential energy models.

    compute_forces() writes accelerations into the acceleration slots of the
    body records. After each call `cells_used` holds the total number of cell
    visits and `dropped_bodies` the number of bodies that fell outside the tree.
    """

    def __init__(self, config: dict = None):
        super().__init__(config)
        self.cells_used: int = 0
        self.dropped_bodies: int = 0

    @abstractmethod
    def compute_forces(self, bd: BodyData):
        pass

    @abstractmethod
    def compute_potential_energy(self, bd: BodyData) -> float:
        pass

    def debug_cells(self, bd: BodyData, body_idx: int) -> List[CellSummary]:
        """(center, size, mass) of the cells used as point masses for one body."""
        return []

    def setup(self, bd: BodyData):
        super().setup(bd)
        if 'G' not in self.config:
             print(f"Warning ({self.__class__.__name__}): Gravitational constant 'G' not found in config.")

    def _read_common_params(self):
        """Reads and validates G / softening / theta from the config."""
        try:
            self.G = float(self.config['G'])
            self.softening = float(self.config['softening'])
            self.theta = float(self.config['theta'])
        except KeyError as e: raise ValueError(f"Missing required config key for {self.__class__.__name__}: {e}")
        except (ValueError, TypeError) as e: raise ValueError(f"Invalid config value for {self.__class__.__name__}: {e}")
        if self.softening < 0: raise ValueError("Softening must be >= 0.")
        if self.theta <= 0: raise ValueError("Theta must be > 0.")
