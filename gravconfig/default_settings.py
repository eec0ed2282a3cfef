# bhgrav/gravconfig/default_settings.py

# NOTE: Taichi on the Metal API has no float64; set USE_DOUBLE_PRECISION to False there.

DEFAULT_SETTINGS = {
    # --- Simulation Control ---
    'dt': 0.01,                   # Simulation time step
    'max_steps': -1,              # Steps run by main.py (-1 for unlimited)
    'USE_DOUBLE_PRECISION': True, # User preference, effective value determined in main.py
    'default_taichi_arch': 'gpu', # Preferred Taichi backend arch
    'status_interval_steps': 50,  # main.py status line interval

    # --- Initial Conditions ---
    'N': 1000,                    # Number of bodies
    'space_limit_factor': 5.0,    # space_limit L = N^(1/3) * k
    'spawn_min_frac': 0.5,        # Bodies spawn in the shell [frac * L, L]
    'spin': 25.0,                 # vx = y * spin / 100, vy = -x * spin / 100
    'body_mass': 1.0,
    'black_hole_mass': 0.0,       # > 0 pins a body of this mass at the origin
    'random_seed': None,

    # --- Gravity Parameters ---
    'G': 10.0,
    'softening': 0.5,             # Squared-distance floor
    'theta': 0.5,                 # Barnes-Hut opening angle

    # --- Tree Parameters ---
    'octree_depth': 8,            # Dense octree levels, CPU model
    'octree_depth_taichi': 9,     # Dense octree levels, Taichi model
    'max_tree_depth': 32,         # Adaptive octree depth cap
    'dense_fill_mode': 'mass',    # 'mass' or 'count'
    'debug_body_idx': -1,         # Body whose point-mass cells are collected (-1 = off)

    # --- Model Defaults ---
    'default_gravity_model': 'gravity_dense_numba',
    'default_integrator': 'leapfrog',

    # --- Graphing Settings ---
    'GRAPH_SETTINGS': {
        'enable_plotting': True,
        'plot_interval_steps': 10,
        'output_dir': 'output',
        'clear_data_on_restart': True,
        'plot_energy_components': True,
        'plot_energy_drift': True,
        'plot_momentum': True,
        'plot_angular_momentum': True,
        'plot_com_velocity': True,
        'plot_min_max_separation': True,
        'separation_max_n': 5000,
        'plot_tree_cells': True,
        'plot_dropped_bodies': True,
        'plot_step_timing': True,
        'plot_hist_speed': True,
        'plot_profile_speed': True,
        'plot_profile_density': True,
        'histogram_bins': 50,
        'radial_profile_bins': 30,
    },
    # 'space_limit' calculated below
}


# --- Calculate Derived Defaults ---

def space_limit_for(N, space_limit_factor) -> float:
    """Domain half-extent L = N^(1/3) * k."""
    return float(N) ** (1.0 / 3.0) * float(space_limit_factor)

DEFAULT_SETTINGS['space_limit'] = space_limit_for(DEFAULT_SETTINGS['N'], DEFAULT_SETTINGS['space_limit_factor'])
print(f"DEFAULT_SETTINGS: Calculated space_limit = {DEFAULT_SETTINGS['space_limit']:.1f} from N={DEFAULT_SETTINGS['N']}, k={DEFAULT_SETTINGS['space_limit_factor']:.1f}")


# --- Model/Integrator Validation ---
from gravconfig.available_models import AVAILABLE_MODELS
from gravconfig.available_integrators import AVAILABLE_INTEGRATORS
from gravconfig.param_defs import validate_settings

if not any(m['id'] == DEFAULT_SETTINGS['default_gravity_model'] for m in AVAILABLE_MODELS.get('gravity', [])):
    raise ValueError(f"Default gravity model ID '{DEFAULT_SETTINGS['default_gravity_model']}' is not defined in available_models.py")
if not any(i['id'] == DEFAULT_SETTINGS['default_integrator'] for i in AVAILABLE_INTEGRATORS):
    raise ValueError(f"Default integrator ID '{DEFAULT_SETTINGS['default_integrator']}' is not defined in available_integrators.py")
validate_settings(DEFAULT_SETTINGS)
