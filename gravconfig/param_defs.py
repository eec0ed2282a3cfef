# bhgrav/gravconfig/param_defs.py
"""
Parameter definitions: ranges, display formats and change behaviour.

'live' parameters are applied to the running simulation in place; 'reseed'
parameters restart it with a freshly seeded body array and new trees.
"""

import numbers

from gravsim.constants import FILL_MODES, MAX_DENSE_DEPTH

PARAM_DEFS = {
      # --- Initial Conditions ---
      'N':                  {'label':'Bodies (N)',          'min':2,    'max':1000000, 'step':100,  'val':1000, 'fmt':"{:d}",   'live':False, 'reseed':True},
      'space_limit_factor': {'label':'Space Limit Factor k','min':0.1,  'max':100.0,   'step':0.1,  'val':5.0,  'fmt':"{:.1f}", 'live':False, 'reseed':True},
      'spawn_min_frac':     {'label':'Spawn Min Radius (xL)','min':0.0, 'max':1.0,     'step':0.05, 'val':0.5,  'fmt':"{:.2f}", 'live':False, 'reseed':True},
      'spin':               {'label':'Initial Spin',        'min':-1000.0,'max':1000.0,'step':1.0,  'val':25.0, 'fmt':"{:.1f}", 'live':False, 'reseed':True},
      'body_mass':          {'label':'Body Mass',           'min':1e-6, 'max':1e6,     'step':0.1,  'val':1.0,  'fmt':"{:.2f}", 'live':False, 'reseed':True},
      'black_hole_mass':    {'label':'Black Hole Mass',     'min':0.0,  'max':1e9,     'step':100.0,'val':0.0,  'fmt':"{:.1f}", 'live':False, 'reseed':True},

      # --- Gravity Parameters ---
      'G':                  {'label':'Gravity (G)',         'min':0.0,  'max':1000.0,  'step':0.1,  'val':10.0, 'fmt':"{:.2f}", 'live':False, 'reseed':True},
      'softening':          {'label':'Softening (dist^2)',  'min':0.0,  'max':100.0,   'step':0.01, 'val':0.5,  'fmt':"{:.3f}", 'live':False, 'reseed':True},
      'theta':              {'label':'BH Theta',            'min':0.0,  'max':2.0,     'step':0.05, 'val':0.5,  'fmt':"{:.2f}", 'live':False, 'reseed':True},

      # --- Tree Parameters ---
      'octree_depth':       {'label':'Dense Depth (CPU)',   'min':1,    'max':MAX_DENSE_DEPTH, 'step':1, 'val':8, 'fmt':"{:d}", 'live':False, 'reseed':True},
      'octree_depth_taichi':{'label':'Dense Depth (Taichi)','min':1,    'max':MAX_DENSE_DEPTH, 'step':1, 'val':9, 'fmt':"{:d}", 'live':False, 'reseed':True},
      'max_tree_depth':     {'label':'Adaptive Max Depth',  'min':1,    'max':64,      'step':1,    'val':32,   'fmt':"{:d}",   'live':False, 'reseed':True},

      # --- Numerical / Simulation Control ---
      'dt':                 {'label':'Timestep (dt)',       'min':1e-7, 'max':1.0,     'step':1e-3, 'val':0.01, 'fmt':"{:.1e}", 'live':True,  'reseed':False},
      'debug_body_idx':     {'label':'Debug Body',          'min':-1,   'max':10000000,'step':1,    'val':-1,   'fmt':"{:d}",   'live':True,  'reseed':False},
}

# --- VALIDATION ---
for _key, _pdef in PARAM_DEFS.items():
    if _pdef['live'] == _pdef['reseed']:
        raise ValueError(f"PARAM_DEFS['{_key}'] must be exactly one of live / reseed.")
    if not (_pdef['min'] <= _pdef['val'] <= _pdef['max']):
        raise ValueError(f"PARAM_DEFS['{_key}'] default {_pdef['val']} outside [{_pdef['min']}, {_pdef['max']}].")


def is_integer_param(key: str) -> bool:
    return PARAM_DEFS[key]['fmt'] == "{:d}"


def validate_param(key: str, value):
    """Returns `value` coerced to the parameter's type; raises ValueError if unknown or out of range."""
    if key not in PARAM_DEFS:
        raise ValueError(f"Unknown parameter '{key}'. Valid: {list(PARAM_DEFS.keys())}")
    pdef = PARAM_DEFS[key]
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ValueError(f"Parameter '{key}' must be numeric, got {value!r}")
    if is_integer_param(key):
        if float(value) != int(value):
            raise ValueError(f"Parameter '{key}' must be an integer, got {value!r}")
        value = int(value)
    else:
        value = float(value)
    if not (pdef['min'] <= value <= pdef['max']):
        raise ValueError(f"Parameter '{key}'={value} outside [{pdef['min']}, {pdef['max']}]")
    if key == 'theta' and value <= 0:
        raise ValueError("Parameter 'theta' must be > 0")
    return value


def validate_settings(cfg: dict) -> dict:
    """Validates every known parameter in `cfg` in place and returns it."""
    for key in PARAM_DEFS:
        if key in cfg and cfg[key] is not None:
            cfg[key] = validate_param(key, cfg[key])
    fill_mode = cfg.get('dense_fill_mode')
    if fill_mode is not None and fill_mode not in FILL_MODES:
        raise ValueError(f"Unknown dense_fill_mode '{fill_mode}'. Valid: {FILL_MODES}")
    if 'debug_body_idx' in cfg and 'N' in cfg and cfg['debug_body_idx'] >= cfg['N']:
        raise ValueError(f"debug_body_idx {cfg['debug_body_idx']} out of range for N={cfg['N']}")
    return cfg
