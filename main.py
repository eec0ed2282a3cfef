# bhgrav/main.py
"""
main.py is the headless entry point for running a simulation.

1. Library Initialization: determines effective compute precision from the
   user preference and what the hardware supports, and initializes Taichi
   (trying the preferred arch / precision first, then falling back).
2. Settings: applies command line overrides on top of DEFAULT_SETTINGS and
   validates them.
3. Simulation Loop: builds the Simulator, advances it for the requested
   number of steps and prints a status line every `status_interval_steps`.
   Ctrl+C stops the loop cleanly.
4. PDF Generation: writes the diagnostic plots collected during the run.
"""
import time
import traceback
import argparse
import numpy as np
import sys
import os

# --- Project Setup ---
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from gravsim.simulator import Simulator, SIM_VERSION, STATUS_ERROR
from gravsim.plotting import generate_plots_pdf
from gravsim.utils import format_value_scientific
from gravconfig.default_settings import DEFAULT_SETTINGS as initial_default_settings
from gravconfig.param_defs import validate_settings

# ============================================
# --- Library Initialization and Detection ---
# ============================================

def init_taichi(use_double_precision: bool, arch_name: str):
    """
    Initializes Taichi, trying progressively less demanding configurations.
    Returns (initialized, supports_f64).
    """
    try:
        import taichi as ti
    except ImportError:
        print("Taichi: Library not found. Data-parallel backend disabled.")
        return False, False

    print("Taichi: Attempting Initialization...")
    preferred_fp = ti.f64 if use_double_precision else ti.f32
    try:
        preferred_arch = getattr(ti, arch_name)
    except AttributeError:
        print(f"  Warning: Invalid default_taichi_arch '{arch_name}'. Falling back to cpu.")
        preferred_arch = ti.cpu

    init_attempts = [
        {"arch": preferred_arch, "default_fp": preferred_fp},
        {"arch": preferred_arch, "default_fp": ti.f32} if preferred_fp == ti.f64 else None,
        {"arch": ti.cpu, "default_fp": preferred_fp} if preferred_arch != ti.cpu else None,
        {"arch": ti.cpu, "default_fp": ti.f32} if preferred_arch != ti.cpu else None,
    ]
    for attempt_cfg in init_attempts:
        if attempt_cfg is None: continue
        try:
            ti.init(default_ip=ti.i32, **attempt_cfg)
        except Exception as e_init:
            print(f"  Taichi init failed ({attempt_cfg}): {e_init}")
            continue
        cfg = ti.lang.impl.current_cfg()
        supports_f64 = cfg.default_fp == ti.f64
        print(f"  Taichi: OK (Arch={cfg.arch}, FP={cfg.default_fp})")
        return True, supports_f64

    print("  Taichi: Initialization FAILED.")
    return False, False


def effective_precision(use_double_precision: bool, taichi_ok: bool, taichi_f64: bool) -> bool:
    """float64 unless the user asked for float32 or Taichi could only start in float32."""
    if taichi_ok and use_double_precision and not taichi_f64:
        print("  WARNING: Requested f64, but the Taichi backend lacks support. Using f32.")
        return False
    return use_double_precision


# ===================
# --- Command Line ---
# ===================

def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=f"bhgrav v{SIM_VERSION}: Barnes-Hut octree N-body gravity simulation.",
    )
    parser.add_argument("--steps", type=int, default=None,
                        help="Number of steps to run (default: max_steps, or 1000 if unlimited)")
    parser.add_argument("--N", type=int, default=None, help="Number of bodies")
    parser.add_argument("--dt", type=float, default=None, help="Time step")
    parser.add_argument("--theta", type=float, default=None, help="Barnes-Hut opening angle")
    parser.add_argument("--gravity", default=None,
                        help="Gravity model id (see gravconfig/available_models.py)")
    parser.add_argument("--integrator", default=None,
                        help="Integrator id (see gravconfig/available_integrators.py)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for the initial distribution")
    parser.add_argument("--black-hole-mass", type=float, default=None, help="Pinned central mass (0 = off)")
    parser.add_argument("--no-taichi", action="store_true", help="Skip Taichi initialization")
    parser.add_argument("--no-plots", action="store_true", help="Skip the PDF report")
    parser.add_argument("--output-dir", default=None, help="Directory for the PDF report")
    return parser


def build_settings(args: argparse.Namespace, effective_f64: bool) -> dict:
    settings = dict(initial_default_settings)
    settings['GRAPH_SETTINGS'] = dict(initial_default_settings['GRAPH_SETTINGS'])
    overrides = {'N': args.N, 'dt': args.dt, 'theta': args.theta, 'random_seed': args.seed,
                 'black_hole_mass': args.black_hole_mass,
                 'default_gravity_model': args.gravity, 'default_integrator': args.integrator}
    settings.update({k: v for k, v in overrides.items() if v is not None})
    if args.no_plots: settings['GRAPH_SETTINGS']['enable_plotting'] = False
    if args.output_dir: settings['GRAPH_SETTINGS']['output_dir'] = args.output_dir
    settings['USE_DOUBLE_PRECISION'] = effective_f64
    settings['_effective_np_float_type'] = np.float64 if effective_f64 else np.float32
    return validate_settings(settings)


def run(sim: Simulator, n_steps: int, status_interval: int) -> int:
    """Advances the simulation; returns the number of completed steps."""
    loop_start = time.perf_counter()
    completed = 0
    try:
        for _ in range(n_steps):
            if not sim.advance_one_step():
                print(f"Simulation stopped at step {sim.get_steps_taken()} ({sim.get_status_message()}).")
                break
            completed += 1
            if status_interval > 0 and sim.get_steps_taken() % status_interval == 0:
                energy = sim.get_energy()
                elapsed = time.perf_counter() - loop_start
                print(f"Step {sim.get_steps_taken():>7d} | t={sim.get_time():.4f} | "
                      f"E={format_value_scientific(energy['Total'], 6)} | "
                      f"{completed / max(elapsed, 1e-9):.1f} steps/s")
    except KeyboardInterrupt:
        print("\nCtrl+C detected. Stopping simulation loop...")
    return completed


def main(argv=None) -> int:
    args = create_parser().parse_args(argv)

    print("\n--- Initializing Libraries ---")
    use_f64 = bool(initial_default_settings.get('USE_DOUBLE_PRECISION', True))
    taichi_ok, taichi_f64 = (False, False) if args.no_taichi else init_taichi(
        use_f64, initial_default_settings.get('default_taichi_arch', 'gpu'))
    effective_f64 = effective_precision(use_f64, taichi_ok, taichi_f64)
    backend_flags = {"numpy": True, "taichi": taichi_ok}

    try:
        settings = build_settings(args, effective_f64)
        sim = Simulator(settings, backend_flags)
    except Exception as e:
        print(f"FATAL: Could not create simulator: {e}")
        traceback.print_exc()
        return 1

    max_steps = int(settings.get('max_steps', -1))
    n_steps = args.steps if args.steps is not None else (max_steps if max_steps > 0 else 1000)
    completed = run(sim, n_steps, int(settings.get('status_interval_steps', 50)))
    print(f"Completed {completed} steps, t={sim.get_time():.4f}.")

    graph_settings = sim.get_graph_settings()
    graph_data = sim.get_graph_data(include_final_snapshot=True)
    if graph_data and graph_settings.get('enable_plotting', True):
        output_dir = graph_settings.get('output_dir', 'output')
        if not os.path.isabs(output_dir): output_dir = os.path.join(PROJECT_ROOT, output_dir)
        generate_plots_pdf(graph_data, graph_settings, output_dir)

    failed = sim.get_status_message() == STATUS_ERROR
    sim.cleanup()
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
