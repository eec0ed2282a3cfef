# bhgrav/gravsim/physics/base/physics.py
"""
Base class of every model the PhysicsManager can select.

A model owns its tree storage (dense grid, cell arena, Taichi fields) and
reads its parameters from a private copy of the settings dict.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from gravsim.body_data import BodyData


class PhysicsModel(ABC):
    """Lifecycle: __init__(config) -> setup(bd) -> compute passes -> cleanup()."""

    def __init__(self, config: Optional[Dict] = None):
        self.config: Dict = dict(config) if config else {}
        self._is_setup: bool = False

    @abstractmethod
    def setup(self, bd: BodyData):
        """
        Validates the model's parameters and allocates its storage for bd.get_n()
        bodies. Raises ValueError on bad configuration. Subclasses call
        super().setup(bd) first.
        """
        self._is_setup = True

    def is_ready(self) -> bool:
        return self._is_setup

    def update_config(self, config: Dict):
        """Merges changed settings; models caching derived values override this."""
        if config:
            self.config.update(config)

    def cleanup(self):
        """Drops tree storage; the instance must be set up again before reuse."""
        self._is_setup = False
