# bhgrav/gravsim/simulator.py
"""
Simulation driver.

States: Uninitialized -> Ready -> Stepping -> Ready, and Error when setup or
a step fails. The Simulator owns:
- the validated settings dict (`_config`),
- BodyData, the PhysicsManager (gravity model) and the IntegratorManager,
- time / step counters and the debug cell list of `debug_body_idx`,
- the per-interval graph data consumed by gravsim.plotting.

Parameters flagged `reseed` in PARAM_DEFS restart the run with a freshly
seeded body array; `live` ones are applied in place.
"""

import numpy as np
import time
import traceback
from typing import Dict, Any, Optional, List

from gravsim.body_data import BodyData
from gravsim.physics_manager import PhysicsManager
from gravsim.integrator_manager import IntegratorManager
from gravsim.physics.base.gravity import CellSummary
from gravsim.seeding import seed_bodies
from gravsim import diagnostics
from gravsim.constants import BODY_STRIDE
from gravsim.utils import format_value_scientific
from gravconfig.param_defs import PARAM_DEFS, validate_param, validate_settings
from gravconfig.default_settings import space_limit_for

SIM_VERSION = "1.0"

STATUS_UNINITIALIZED = "Uninitialized"
STATUS_READY = "Ready"
STATUS_STEPPING = "Stepping"
STATUS_ERROR = "Error"

REQUIRED_KEYS = ('N', 'dt', 'G', 'softening', 'theta', 'space_limit_factor')

# plot toggle -> graph data series it needs
GRAPH_SERIES = {
    'plot_energy_components': ('total_ke', 'total_pe', 'total_energy'),
    'plot_energy_drift': ('energy_drift_percent',),
    'plot_momentum': ('total_px', 'total_py', 'total_pz'),
    'plot_angular_momentum': ('total_lx', 'total_ly', 'total_lz'),
    'plot_com_velocity': ('com_vx', 'com_vy', 'com_vz'),
    'plot_min_max_separation': ('min_separation', 'max_separation'),
    'plot_tree_cells': ('cells_used',),
    'plot_dropped_bodies': ('dropped_bodies',),
    'plot_step_timing': ('step_duration_ms',),
}


class Simulator:
    """Runs one Barnes-Hut N-body simulation and reports on it."""

    def __init__(self, initial_settings: Dict[str, Any], backend_availability_flags: Dict[str, bool],
                 initial_bodies: Optional[np.ndarray] = None):
        """
        Builds every component and computes the initial accelerations.

        args:
            initial_settings: settings dict (see gravconfig/default_settings.py).
            backend_availability_flags: {"numpy": bool, "taichi": bool} from startup.
            initial_bodies: optional (N, 12) array used instead of the seeded
                distribution; N is taken from its first dimension.

        raises ValueError on invalid settings; the status is then Error.
        """
        print(f"\n===== Initializing Simulator v{SIM_VERSION} =====")
        t0 = time.perf_counter()
        self._config: Dict[str, Any] = {}
        self._status_msg = STATUS_UNINITIALIZED
        self._backend_flags = dict(backend_availability_flags)
        use_f64 = bool(initial_settings.get('USE_DOUBLE_PRECISION', True))
        self._effective_np_float_type = initial_settings.get('_effective_np_float_type',
                                                             np.float64 if use_f64 else np.float32)

        self._time = 0.0
        self._dt = 0.01
        self._steps_taken = 0
        self._last_step_duration = 0.0
        self._debug_cells: List[CellSummary] = []

        self._graph_data: Optional[Dict[str, Any]] = None
        self._graph_settings: Dict = {}
        self._graph_interval = 10
        self._initial_energy: Optional[float] = None

        self._bd: Optional[BodyData] = None
        self._physics_manager: Optional[PhysicsManager] = None
        self._integrator_manager: Optional[IntegratorManager] = None

        try:
            self._initialize(initial_settings, initial_bodies)
        except Exception as e:
            self._status_msg = STATUS_ERROR
            print(f"\n!!! FATAL ERROR during Simulator Initialization: {e} !!!"); traceback.print_exc()
            self._release_components()
            raise
        print(f"===== Simulator Ready ({time.perf_counter() - t0:.3f} s): N={self.get_body_count()}, "
              f"dt={self._dt:.2e}, Precision={np.dtype(self._effective_np_float_type).name} =====")

    def _initialize(self, settings: Dict[str, Any], initial_bodies: Optional[np.ndarray],
                    gravity_id: Optional[str] = None, integrator_id: Optional[str] = None):
        """Uninitialized -> Ready."""
        settings = dict(settings)
        if initial_bodies is not None:
            initial_bodies = np.asarray(initial_bodies)
            if initial_bodies.ndim != 2 or initial_bodies.shape[1] != BODY_STRIDE:
                raise ValueError(f"initial_bodies must have shape (N, {BODY_STRIDE}), got {initial_bodies.shape}")
            settings['N'] = int(initial_bodies.shape[0])
        print("1. Validating settings...")
        self._configure(settings)

        N = int(self._config['N'])
        print(f"2. Allocating body data (N={N})...")
        self._bd = BodyData(N, allow_implicit_transfers=True, numpy_precision=self._effective_np_float_type,
                            taichi_is_active=self._backend_flags.get("taichi", False))

        print("3. Placing bodies...")
        if initial_bodies is None:
            rng = np.random.default_rng(self._config.get('random_seed'))
            initial_bodies = seed_bodies(N, self._config, rng, dtype=self._effective_np_float_type)
        else:
            self._config['_pinned_body'] = int(settings.get('_pinned_body', -1))
        self._bd.set_bodies(initial_bodies)

        print("4. Selecting gravity model and integrator...")
        self._physics_manager = PhysicsManager(self._bd, self._config, self._backend_flags)
        self._integrator_manager = IntegratorManager(self._bd, self._recompute_forces, self._config,
                                                     self._backend_flags)
        self._physics_manager.select_model("gravity", gravity_id or self._config.get('default_gravity_model'))
        self._integrator_manager.select_integrator(integrator_id or self._config.get('default_integrator'))

        print("5. Initial accelerations...")
        self._recompute_forces()
        self._update_debug_cells()

        self._initial_energy = self._get_energy_components()["Total"]
        print(f"6. Initial energy: {format_value_scientific(self._initial_energy, 6)}")
        self.collect_graph_data(force_collect=True)
        self._status_msg = STATUS_READY

    def _configure(self, settings: Dict[str, Any]):
        self._config = validate_settings(settings)
        missing = [k for k in REQUIRED_KEYS if k not in self._config]
        if missing: raise ValueError(f"Missing required config keys: {missing}")
        self._config['space_limit'] = space_limit_for(self._config['N'], self._config['space_limit_factor'])
        self._config.setdefault('_pinned_body', -1)
        self._dt = float(self._config['dt'])
        graph_settings = self._config.get('GRAPH_SETTINGS')
        self._graph_settings = graph_settings if isinstance(graph_settings, dict) else {}
        self._graph_interval = max(1, int(self._graph_settings.get('plot_interval_steps', 10)))
        self._reset_graph_data()

    def _release_components(self):
        for name, owner, method in (("integrator", self._integrator_manager, "cleanup"),
                                    ("models", self._physics_manager, "cleanup_models"),
                                    ("body buffers", self._bd, "cleanup_gpu_resources")):
            if owner is None: continue
            try: getattr(owner, method)()
            except Exception as e: print(f"Warn: Error releasing {name}: {e}")
        self._bd = None; self._physics_manager = None; self._integrator_manager = None

    # diagnostics
    def _plot_enabled(self, key: str, default: bool = False) -> bool:
        return bool(self._graph_settings.get(key, default))

    def _reset_graph_data(self):
        """Empty series for every enabled plot; None when plotting is off."""
        if not self._plot_enabled('enable_plotting', True):
            self._graph_data = None
            return
        self._graph_data = {'time': [], 'step': []}
        for toggle, keys in GRAPH_SERIES.items():
            if self._plot_enabled(toggle):
                self._graph_data.update({k: [] for k in keys})
        self._graph_data['final_snapshot'] = {}

    def _get_energy_components(self) -> Dict[str, float]:
        """KE from the body array, PE from the active gravity model."""
        if not self._bd or self._bd.get_n() == 0:
            return {"KE": 0.0, "PE": 0.0, "Total": 0.0}
        ke = diagnostics.kinetic_energy(self._bd.get_bodies("cpu"))
        gravity_model = self._physics_manager.get_gravity_model() if self._physics_manager else None
        pe = float(gravity_model.compute_potential_energy(self._bd)) if gravity_model else 0.0
        return {"KE": ke, "PE": pe, "Total": ke + pe}

    def _graph_sample(self) -> Dict[str, float]:
        """One value per graph series for the current state."""
        bodies = self._bd.get_bodies("cpu")
        energy = self._get_energy_components()
        drift = 0.0
        if self._initial_energy is not None and abs(self._initial_energy) > 1e-25:
            drift = (energy["Total"] - self._initial_energy) / abs(self._initial_energy) * 100.0
        p = diagnostics.linear_momentum(bodies)
        L = diagnostics.angular_momentum(bodies)
        _, com_v = diagnostics.center_of_mass(bodies)
        min_sep, max_sep = diagnostics.separation_range(bodies, int(self._graph_settings.get('separation_max_n', 5000)))
        gravity_model = self._physics_manager.get_gravity_model()
        return {
            'total_ke': energy["KE"], 'total_pe': energy["PE"], 'total_energy': energy["Total"],
            'energy_drift_percent': drift,
            'total_px': p[0], 'total_py': p[1], 'total_pz': p[2],
            'total_lx': L[0], 'total_ly': L[1], 'total_lz': L[2],
            'com_vx': com_v[0], 'com_vy': com_v[1], 'com_vz': com_v[2],
            'min_separation': np.nan if min_sep is None else min_sep,
            'max_separation': np.nan if max_sep is None else max_sep,
            'cells_used': gravity_model.cells_used if gravity_model else 0,
            'dropped_bodies': gravity_model.dropped_bodies if gravity_model else 0,
            'step_duration_ms': self._last_step_duration * 1000.0,
        }

    def collect_graph_data(self, force_collect: bool = False):
        """Appends a sample every `plot_interval_steps` steps (or now, if forced)."""
        if self._graph_data is None or not self._bd or self._bd.get_n() == 0: return
        if not force_collect and self._steps_taken % self._graph_interval != 0: return
        gd = self._graph_data
        try:
            sample = self._graph_sample()
        except Exception as e:
            print(f"ERROR graph collect step {self._steps_taken}: {e}"); traceback.print_exc()
            return
        gd['time'].append(self._time)
        gd['step'].append(self._steps_taken)
        for key, value in sample.items():
            if key in gd: gd[key].append(float(value))

    def _collect_final_snapshot_data(self):
        if self._graph_data is None: return
        snapshot = {}
        if self._bd and self._bd.get_n() > 0:
            snapshot = diagnostics.radial_snapshot(self._bd.get_bodies("cpu"))
        self._graph_data['final_snapshot'] = snapshot

    # stepping
    def _recompute_forces(self):
        """Force callback handed to the integrator: tree rebuild plus accelerations."""
        self._physics_manager.compute_all_physics(compute_forces=True)

    def _update_debug_cells(self):
        idx = int(self._config.get('debug_body_idx', -1))
        gravity_model = self._physics_manager.get_gravity_model() if self._physics_manager else None
        if gravity_model is None or not (0 <= idx < self.get_body_count()):
            self._debug_cells = []
        else:
            self._debug_cells = gravity_model.debug_cells(self._bd, idx)

    def advance_one_step(self, dt: Optional[float] = None) -> bool:
        """
        Ready -> Stepping -> Ready. `dt` overrides the configured step for this
        call only. Returns False (status Error) if the step fails, and False
        without stepping when the status is not Ready.
        """
        if self._status_msg != STATUS_READY or self._integrator_manager is None:
            print(f"Sim Info: Cannot advance, status is '{self._status_msg}'.")
            return False
        step_dt = self._dt if dt is None else float(dt)
        t0 = time.perf_counter()
        self._status_msg = STATUS_STEPPING
        try:
            self._integrator_manager.advance(step_dt, current_step=self._steps_taken)
            self._time += step_dt
            self._steps_taken += 1
            self._update_debug_cells()
        except Exception as e:
            print(f"ERROR during simulation step {self._steps_taken}: {e}"); traceback.print_exc()
            self._status_msg = STATUS_ERROR
            return False
        finally:
            self._last_step_duration = time.perf_counter() - t0
        self._status_msg = STATUS_READY
        self.collect_graph_data()
        return True

    # parameter changes
    def set_parameter(self, key: str, value) -> bool:
        """
        Validates and applies one parameter; returns True if it restarted the run.
        Raises ValueError for unknown keys or out-of-range values.
        """
        value = validate_param(key, value)
        if PARAM_DEFS[key]['reseed']:
            print(f"Parameter '{key}' = {value} requires re-seeding. Restarting...")
            self.restart({**self._config, key: value})
            return True

        if key == 'debug_body_idx' and value >= self.get_body_count():
            raise ValueError(f"debug_body_idx {value} out of range for N={self.get_body_count()}")
        self._config[key] = value
        if key == 'dt': self._dt = float(value)
        if self._physics_manager: self._physics_manager.update_config({key: value})
        if self._integrator_manager: self._integrator_manager.update_config({key: value})
        if key == 'debug_body_idx' and self._status_msg == STATUS_READY:
            self._update_debug_cells()
        print(f"Parameter '{key}' updated live to {value}.")
        return False

    def restart(self, new_settings: Optional[Dict[str, Any]] = None,
                gravity_id: Optional[str] = None, integrator_id: Optional[str] = None):
        """Full re-initialisation: fresh body array, gravity model, tree and integrator."""
        t0 = time.perf_counter()
        print("\n===== Restarting Simulation =====")
        settings = dict(self._config if new_settings is None else new_settings)
        settings.pop('_pinned_body', None)
        settings.setdefault('_effective_np_float_type', self._effective_np_float_type)
        kept_graph_data = None
        if self._graph_data is not None and not self._graph_settings.get('clear_data_on_restart', True):
            kept_graph_data = self._graph_data

        self._release_components()
        self._status_msg = STATUS_UNINITIALIZED
        self._time = 0.0; self._steps_taken = 0
        self._initial_energy = None
        try:
            self._initialize(settings, None, gravity_id=gravity_id, integrator_id=integrator_id)
        except Exception as e:
            self._status_msg = STATUS_ERROR
            print(f"ERROR during restart: {e}"); traceback.print_exc()
            self._release_components()
            raise
        if kept_graph_data is not None and self._graph_data is not None:
            for k, v in self._graph_data.items():
                if isinstance(v, list) and isinstance(kept_graph_data.get(k), list):
                    self._graph_data[k] = kept_graph_data[k] + v
        print(f"===== Restart Complete ({time.perf_counter() - t0:.3f} s) =====")

    # getters
    def get_body_count(self) -> int:
        return self._bd.get_n() if self._bd is not None else int(self._config.get('N', 0))

    def get_bodies(self) -> np.ndarray:
        """Copy of the current (N, 12) body array on the cpu."""
        if self._bd is None: raise RuntimeError("Simulator has no body data.")
        return self._bd.get_bodies("cpu").copy()

    def get_debug_cells(self) -> List[CellSummary]:
        """(center, size, mass) of the cells used as point masses for `debug_body_idx`."""
        return list(self._debug_cells)

    def get_time(self) -> float: return self._time
    def get_dt(self) -> float: return self._dt
    def get_steps_taken(self) -> int: return self._steps_taken
    def get_status_message(self) -> str: return self._status_msg
    def get_config(self) -> Dict[str, Any]: return dict(self._config)
    def get_energy(self) -> Dict[str, float]: return self._get_energy_components()

    def get_active_models_info(self) -> Dict[str, Optional[Dict]]:
        return self._physics_manager.get_active_models_info() if self._physics_manager else {}

    def get_active_integrator_info(self) -> Optional[Dict]:
        return self._integrator_manager.get_active_integrator_info() if self._integrator_manager else None

    def get_graph_data(self, include_final_snapshot: bool = False) -> Optional[Dict[str, Any]]:
        if include_final_snapshot: self._collect_final_snapshot_data()
        return self._graph_data

    def get_graph_settings(self) -> Dict: return self._graph_settings

    def cleanup(self):
        print("Cleaning up simulator...")
        self._release_components()
        self._status_msg = STATUS_UNINITIALIZED
