# bhgrav/gravsim/utils.py
"""Helpers shared by the managers, models and the runner."""

import functools
import importlib
import time

import numpy as np

# (backend_id, taichi_ok) -> bool
_backend_availability_cache = {}

KNOWN_BACKENDS = ("numpy", "gpu:ti")


def timing_decorator(func):
    """Prints the wall time of each call in ms."""
    @functools.wraps(func)
    def timed(*args, **kwargs):
        t0 = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            print(f"Timing: {func.__qualname__:<28} {(time.perf_counter() - t0) * 1e3:8.3f} ms")
    return timed


def dynamic_import(module_name: str, class_name: str):
    """Looks up `class_name` in `module_name` for the model / integrator registries."""
    try:
        return getattr(importlib.import_module(module_name), class_name)
    except ImportError:
        print(f"ERROR: Registry module '{module_name}' could not be imported.")
        raise
    except AttributeError:
        print(f"ERROR: '{module_name}' has no class '{class_name}'.")
        raise


def check_backend_availability(backend_id: str, taichi_init_flag: bool = False) -> bool:
    """
    True if `backend_id` can run in this process. "numpy" (NumPy + Numba) is
    always usable; "gpu:ti" only after a successful ti.init().
    """
    cache_key = (backend_id, bool(taichi_init_flag))
    if cache_key not in _backend_availability_cache:
        if backend_id not in KNOWN_BACKENDS:
            print(f"Warn: Unknown backend '{backend_id}', treating as unavailable.")
        _backend_availability_cache[cache_key] = (
            backend_id == "numpy" or (backend_id == "gpu:ti" and bool(taichi_init_flag)))
    return _backend_availability_cache[cache_key]


def format_value_scientific(value, precision=2):
    """Scientific notation for status lines; '-' for missing or non-finite values."""
    if not isinstance(value, (int, float, np.number)) or not np.isfinite(value):
        return "-"
    if abs(value) < 1e-15:
        return f"{0.0:.{precision}e}"
    return f"{value:.{precision}e}"
