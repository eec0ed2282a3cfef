# bhgrav/gravsim/integrator_manager.py
"""
Selects the active time integrator and advances the bodies with it.

The integrator never computes forces itself: it calls the Simulator's
force callback between its drift and its second kick.
"""

from typing import Callable, Dict, List, Optional
import traceback

from gravsim.integrators.base import Integrator
from gravsim.body_data import BodyData
from gravsim.utils import dynamic_import, check_backend_availability
from gravconfig.available_integrators import AVAILABLE_INTEGRATORS


class IntegratorManager:
    """Owns the active Integrator instance; `config` is shared with the Simulator."""

    def __init__(self, bd: BodyData, forces_cb: Callable[[], None], config: dict,
                 backend_availability_flags: Optional[Dict[str, bool]] = None):
        self._bd = bd
        self._forces_cb = forces_cb
        self._config = config
        self._taichi_ok = bool((backend_availability_flags or {}).get("taichi", False))
        self._available_integrators: Dict[str, Dict] = {d['id']: d for d in AVAILABLE_INTEGRATORS}
        self._active_integrator: Optional[Integrator] = None
        self._active_integrator_id: Optional[str] = None

    def get_available_integrators(self) -> List[Dict]:
        return list(self._available_integrators.values())

    def select_integrator(self, integrator_id: str):
        """Raises ValueError for an unknown id or an uninitialised backend."""
        integrator_def = self._available_integrators.get(integrator_id)
        if integrator_def is None:
            raise ValueError(f"Unknown integrator ID: '{integrator_id}'. Available: {list(self._available_integrators)}")
        required = integrator_def.get("required_backend", "numpy")
        if not check_backend_availability(required, taichi_init_flag=self._taichi_ok):
            raise ValueError(f"Cannot select integrator '{integrator_id}': backend '{required}' unavailable.")

        print(f"Selecting integrator: '{integrator_def['name']}' ({integrator_id})...")
        try:
            new_integrator = dynamic_import(integrator_def['module'], integrator_def['class'])()
            new_integrator.setup(self._bd, self._config)
        except Exception as e:
            print(f"ERROR: Failed to set up integrator '{integrator_id}': {e}"); traceback.print_exc()
            self.cleanup()
            raise
        if self._active_integrator is not None:
            try: self._active_integrator.cleanup()
            except Exception as e_clean: print(f"Warn: Error cleaning up old integrator: {e_clean}")
        self._active_integrator = new_integrator
        self._active_integrator_id = integrator_id

    def get_active_integrator_info(self) -> Optional[Dict]:
        return self._available_integrators.get(self._active_integrator_id)

    def advance(self, dt: float, current_step: int):
        if self._active_integrator is None:
            raise RuntimeError("Attempted to advance simulation without an active integrator.")
        self._active_integrator.step(self._bd, dt, self._forces_cb, self._config, current_step)

    def update_config(self, new_config: dict):
        """Merges live changes; integrators read dt and the pinned body on every step."""
        self._config.update(new_config)

    def cleanup(self):
        if self._active_integrator is not None:
            self._active_integrator.cleanup()
        self._active_integrator = None
        self._active_integrator_id = None
