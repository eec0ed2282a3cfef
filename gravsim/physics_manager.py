# bhgrav/gravsim/physics_manager.py
"""
Selects the active gravity model and runs its force pass.

Model definitions come from gravconfig/available_models.py; each one names
the backend it needs ("numpy" or "gpu:ti"), which is checked against what
main.py (or the test fixtures) managed to initialise.
"""

from typing import Dict, List, Optional
import traceback

from gravsim.body_data import BodyData
from gravsim.physics.base.physics import PhysicsModel
from gravsim.physics.base.gravity import GravityModel
from gravsim.utils import dynamic_import, check_backend_availability
from gravconfig.available_models import AVAILABLE_MODELS


class PhysicsManager:
    """Holds one active model per model type (only "gravity" here)."""

    MODEL_TYPES = ["gravity"]

    def __init__(self, bd: BodyData, initial_config: dict, backend_availability_flags: Dict[str, bool]):
        self._bd = bd
        self._config = dict(initial_config)
        self._taichi_ok = bool(backend_availability_flags.get("taichi", False))
        self._available_models: Dict[str, Dict[str, Dict]] = {}
        self._active_models: Dict[str, Optional[PhysicsModel]] = dict.fromkeys(self.MODEL_TYPES)
        self._active_model_ids: Dict[str, Optional[str]] = dict.fromkeys(self.MODEL_TYPES)
        self._load_available_models()

    def _load_available_models(self):
        for model_type in self.MODEL_TYPES:
            defs = {}
            for model_def in AVAILABLE_MODELS.get(model_type, []):
                model_def = dict(model_def)
                model_def['_backend_available'] = check_backend_availability(
                    model_def.get("required_backend", "numpy"), taichi_init_flag=self._taichi_ok)
                defs[model_def['id']] = model_def
            self._available_models[model_type] = defs

    def get_available_models(self) -> Dict[str, List[Dict]]:
        return {mtype: list(defs.values()) for mtype, defs in self._available_models.items()}

    def select_model(self, model_type: str, model_id: str):
        """
        Instantiates and sets up `model_id` as the active `model_type` model.

        Raises ValueError for an unknown type or id, or when the model's backend
        was not initialised. Setup failures leave no active model and re-raise.
        """
        if model_type not in self.MODEL_TYPES:
            raise ValueError(f"Unknown physics model type: '{model_type}'. Valid: {self.MODEL_TYPES}")
        candidates = self._available_models[model_type]
        if model_id not in candidates:
            raise ValueError(f"Unknown {model_type} model '{model_id}'. Available: {list(candidates)}")
        model_def = candidates[model_id]
        if not model_def['_backend_available']:
            raise ValueError(f"Cannot select '{model_id}': backend '{model_def.get('required_backend')}' unavailable.")

        print(f"Selecting {model_type} model: '{model_def.get('name', model_id)}' ({model_id})...")
        old_model = self._active_models[model_type]
        try:
            ModelClass = dynamic_import(model_def['module'], model_def['class'])
            new_model = ModelClass(config=self._config)
            new_model.setup(self._bd)
        except Exception as e:
            print(f"ERROR: Failed to set up model '{model_id}': {e}"); traceback.print_exc()
            self._active_models[model_type] = None
            self._active_model_ids[model_type] = None
            raise

        if old_model is not None:
            try: old_model.cleanup()
            except Exception as e_clean: print(f"Warn: Error cleaning up '{self._active_model_ids[model_type]}': {e_clean}")
        self._active_models[model_type] = new_model
        self._active_model_ids[model_type] = model_id

    def get_active_model(self, model_type: str) -> Optional[PhysicsModel]:
        return self._active_models.get(model_type)

    def get_gravity_model(self) -> Optional[GravityModel]:
        return self._active_models["gravity"]

    def compute_all_physics(self, compute_forces: bool = True):
        """
        One force evaluation: tree clear/fill/build and accelerations for every body.
        Errors are logged and propagate to the integrator.
        """
        if not compute_forces: return
        model = self._active_models["gravity"]
        if model is None:
            raise RuntimeError("No active gravity model to compute forces.")
        try:
            model.compute_forces(self._bd)
        except Exception as e:
            print(f"ERROR during gravity.compute_forces: {e}"); traceback.print_exc()
            raise

    def get_active_models_info(self) -> Dict[str, Optional[Dict]]:
        return {mtype: self._available_models[mtype].get(mid)
                for mtype, mid in self._active_model_ids.items() if mid}

    def update_config(self, new_config: dict):
        """Merges live parameter changes into the manager and the active models."""
        self._config.update(new_config)
        for model in self._active_models.values():
            if model is not None: model.update_config(new_config)

    def cleanup_models(self):
        for model_type, model in self._active_models.items():
            if model is None: continue
            try: model.cleanup()
            except Exception as e: print(f"Warn: Error cleaning up '{model_type}' model: {e}")
        self._active_models = dict.fromkeys(self.MODEL_TYPES)
        self._active_model_ids = dict.fromkeys(self.MODEL_TYPES)
