# bhgrav/gravsim/integrators/base.py
"""
Defines the Abstract Base Class (ABC) for all time integrators.
"""
from abc import ABC, abstractmethod
from typing import Callable, Optional, Dict

import numpy as np

from gravsim.body_data import BodyData

class Integrator(ABC):
    """abstract base class for time integration schemes."""

    def setup(self, bd: BodyData, config: Optional[Dict] = None):
        """optional setup method."""
        pass

    @abstractmethod
    def step(self, bd: BodyData, dt: float, forces_cb: Callable[[], None],
             config: Optional[Dict] = None, current_step: int = -1):
        """
        one integration step; forces_cb() recomputes accelerations from the
        current positions and writes them into the body records
        """
        pass

    def cleanup(self):
        pass

    @staticmethod
    def pinned_body(config: Optional[Dict], n: int) -> int:
        """Index of the body held fixed by kicks and drift, -1 if none."""
        idx = int((config or {}).get('_pinned_body', -1))
        return idx if 0 <= idx < n else -1

    @staticmethod
    def movable_mask(config: Optional[Dict], n: int) -> np.ndarray:
        mask = np.ones(n, dtype=bool)
        pinned = Integrator.pinned_body(config, n)
        if pinned >= 0: mask[pinned] = False
        return mask
