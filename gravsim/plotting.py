# bhgrav/gravsim/plotting.py
"""
Writes the diagnostic plots collected by the Simulator to a multi-page PDF.

Time series (energy, momentum, tree statistics, timing) come from the
per-interval graph data; histograms and radial profiles come from the
final snapshot (speeds, radii from the center of mass, masses).
"""

import matplotlib
matplotlib.use('Agg') # non-interactive backend, must precede pyplot
import matplotlib.pyplot as plt
from matplotlib.backends.backend_pdf import PdfPages
import numpy as np
import os
import datetime
import traceback
from typing import Dict, Any, List, Optional

# styling
TITLE_FONTSIZE = 10
LABEL_FONTSIZE = 8
TICK_FONTSIZE = 7
LEGEND_FONTSIZE = 7
MARKER_SIZE = 3
LINE_WIDTH = 1.5
GRID_ALPHA = 0.6

PDF_PREFIX = "bhgrav_graphs_"


def _get_plot_setting(graph_settings: Dict, key: str, default: bool = False) -> bool:
    return bool(graph_settings.get(key, default))

def _no_data(ax: plt.Axes, title: str, text: str = "No Data"):
    ax.text(0.5, 0.5, text, ha='center', va='center', transform=ax.transAxes)
    ax.set_title(title, fontsize=TITLE_FONTSIZE); ax.grid(False)

def _style(ax: plt.Axes, title: str, xlabel: str, ylabel: str):
    ax.set_title(title, fontsize=TITLE_FONTSIZE)
    ax.set_xlabel(xlabel, fontsize=LABEL_FONTSIZE)
    ax.set_ylabel(ylabel, fontsize=LABEL_FONTSIZE)
    ax.grid(True, linestyle=':', alpha=GRID_ALPHA)
    ax.tick_params(axis='both', which='major', labelsize=TICK_FONTSIZE)

def _series(graph_data: Dict, keys: List[str]) -> Optional[Dict[str, np.ndarray]]:
    """
    numpy arrays for `keys` trimmed to a common length, or None if any key is
    missing or empty.
    """
    out = {}
    for k in keys:
        values = graph_data.get(k)
        if not isinstance(values, list) or len(values) == 0:
            return None
        out[k] = np.asarray(values, dtype=np.float64)
    n = min(len(v) for v in out.values())
    return {k: v[:n] for k, v in out.items()}


def _plot_time_series(ax: plt.Axes, graph_data: Dict, series: Dict[str, str], title: str, ylabel: str,
                      yscale: str = 'linear'):
    """
    one or more time series against simulation time.

    args:
        series: legend label -> graph data key.
    """
    data = _series(graph_data, ['time'] + list(series.values()))
    if data is None:
        _no_data(ax, title); return
    t = data['time']
    plotted = False
    for label, key in series.items():
        values = data[key]
        ok = np.isfinite(values)
        if yscale == 'log': ok &= values > 0
        if np.any(ok):
            ax.plot(t[ok], values[ok], label=label, lw=LINE_WIDTH)
            plotted = True
    if not plotted:
        _no_data(ax, title, "No Valid Data"); return
    _style(ax, title, "Simulation Time", ylabel)
    if len(series) > 1: ax.legend(fontsize=LEGEND_FONTSIZE)
    ax.set_yscale(yscale)


def _plot_histogram(ax: plt.Axes, values: Optional[np.ndarray], bins: int, title: str, xlabel: str):
    if values is None or values.size == 0:
        _no_data(ax, title); return
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        _no_data(ax, title, "No Finite Data"); return
    ax.hist(finite, bins=bins)
    _style(ax, title, xlabel, "Number of Bodies")


def _radial_bins(radii: np.ndarray, bins: int) -> Optional[np.ndarray]:
    if radii.size == 0: return None
    r_max = np.max(radii)
    if not np.isfinite(r_max) or r_max <= 0:
        return None
    return np.linspace(0.0, r_max, bins + 1)


def _plot_mean_profile(ax: plt.Axes, radii: Optional[np.ndarray], values: Optional[np.ndarray], bins: int,
                       title: str, ylabel: str):
    """mean of `values` in radial shells around the center of mass."""
    if radii is None or values is None or radii.size == 0 or radii.shape != values.shape:
        _no_data(ax, title, "No/Mismatched Data"); return
    mask = np.isfinite(radii) & np.isfinite(values)
    radii, values = radii[mask], values[mask]
    edges = _radial_bins(radii, bins)
    if edges is None:
        _no_data(ax, title, "No Radial Range"); return
    sums, _ = np.histogram(radii, bins=edges, weights=values)
    counts, _ = np.histogram(radii, bins=edges)
    centers = 0.5 * (edges[:-1] + edges[1:])
    filled = counts > 0
    ax.plot(centers[filled], sums[filled] / counts[filled], 'o-', markersize=MARKER_SIZE, lw=LINE_WIDTH)
    _style(ax, title, "Radius from CoM", ylabel)


def _plot_density_profile(ax: plt.Axes, radii: Optional[np.ndarray], masses: Optional[np.ndarray], bins: int,
                          title: str):
    """shell mass divided by shell volume."""
    if radii is None or masses is None or radii.size == 0 or radii.shape != masses.shape:
        _no_data(ax, title, "No/Mismatched Data"); return
    mask = np.isfinite(radii) & np.isfinite(masses)
    radii, masses = radii[mask], masses[mask]
    edges = _radial_bins(radii, bins)
    if edges is None:
        _no_data(ax, title, "No Radial Range"); return
    shell_mass, _ = np.histogram(radii, bins=edges, weights=masses)
    shell_volume = 4.0 / 3.0 * np.pi * (edges[1:]**3 - edges[:-1]**3)
    density = shell_mass / shell_volume
    centers = 0.5 * (edges[:-1] + edges[1:])
    filled = density > 0
    if not np.any(filled):
        _no_data(ax, title, "No Points in Bins"); return
    ax.plot(centers[filled], density[filled], 'o-', markersize=MARKER_SIZE, lw=LINE_WIDTH)
    _style(ax, title, "Radius from CoM", "Mass Density")
    ax.set_yscale('log')


def _plot_pages(graph_data: Dict[str, Any], graph_settings: Dict) -> List[Dict]:
    snapshot = graph_data.get('final_snapshot') or {}
    hist_bins = int(graph_settings.get('histogram_bins', 50))
    radial_bins = int(graph_settings.get('radial_profile_bins', 30))
    return [
        {
            "title": "Energy Diagnostics", "rows": 1, "cols": 2, "figsize": (10, 4),
            "subplots": [
                ("plot_energy_components", lambda ax: _plot_time_series(
                    ax, graph_data, {'KE': 'total_ke', 'PE': 'total_pe', 'Total': 'total_energy'},
                    "Energy Components", "Energy")),
                ("plot_energy_drift", lambda ax: _plot_time_series(
                    ax, graph_data, {'Drift': 'energy_drift_percent'}, "Total Energy Drift", "Drift (%)")),
            ]
        },
        {
            "title": "Momentum", "rows": 1, "cols": 3, "figsize": (12, 4),
            "subplots": [
                ("plot_momentum", lambda ax: _plot_time_series(
                    ax, graph_data, {'Px': 'total_px', 'Py': 'total_py', 'Pz': 'total_pz'},
                    "Linear Momentum", "Momentum")),
                ("plot_angular_momentum", lambda ax: _plot_time_series(
                    ax, graph_data, {'Lx': 'total_lx', 'Ly': 'total_ly', 'Lz': 'total_lz'},
                    "Angular Momentum (CoM)", "Ang. Momentum")),
                ("plot_com_velocity", lambda ax: _plot_time_series(
                    ax, graph_data, {'Vx': 'com_vx', 'Vy': 'com_vy', 'Vz': 'com_vz'},
                    "Center of Mass Velocity", "Velocity")),
            ]
        },
        {
            "title": "Tree & Performance", "rows": 2, "cols": 2, "figsize": (10, 7),
            "subplots": [
                ("plot_min_max_separation", lambda ax: _plot_time_series(
                    ax, graph_data, {'Min': 'min_separation', 'Max': 'max_separation'},
                    "Body Separation", "Distance", yscale='log')),
                ("plot_tree_cells", lambda ax: _plot_time_series(
                    ax, graph_data, {'Cells': 'cells_used'}, "Cell Visits per Force Pass", "Cells")),
                ("plot_dropped_bodies", lambda ax: _plot_time_series(
                    ax, graph_data, {'Dropped': 'dropped_bodies'}, "Bodies Outside the Tree", "Bodies")),
                ("plot_step_timing", lambda ax: _plot_time_series(
                    ax, graph_data, {'Step': 'step_duration_ms'}, "Step Duration", "Time (ms)")),
            ]
        },
        {
            "title": "Final State", "rows": 1, "cols": 3, "figsize": (12, 4),
            "subplots": [
                ("plot_hist_speed", lambda ax: _plot_histogram(
                    ax, snapshot.get('speeds'), hist_bins, "Speed Distribution", "Speed")),
                ("plot_profile_speed", lambda ax: _plot_mean_profile(
                    ax, snapshot.get('radii'), snapshot.get('speeds'), radial_bins, "Speed Profile", "Mean Speed")),
                ("plot_profile_density", lambda ax: _plot_density_profile(
                    ax, snapshot.get('radii'), snapshot.get('masses'), radial_bins, "Density Profile")),
            ]
        },
    ]


def generate_plots_pdf(graph_data: Dict[str, Any], graph_settings: Dict, output_dir: str) -> str:
    """
    Generates a multi-page PDF of the enabled diagnostic plots.

    Returns the path of the written file, or "" if there was nothing to plot
    or generation failed.
    """
    if not graph_data: print("Plotting Error: No graph data provided."); return ""
    os.makedirs(output_dir, exist_ok=True)
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    pdf_filename = os.path.join(output_dir, f"{PDF_PREFIX}{timestamp}.pdf")
    print(f"Generating plots PDF: {os.path.normpath(pdf_filename)}")

    try:
        pages_written = 0
        with PdfPages(pdf_filename) as pdf:
            for page in _plot_pages(graph_data, graph_settings):
                enabled = [(key, draw) for key, draw in page["subplots"] if _get_plot_setting(graph_settings, key)]
                if not enabled: continue

                fig, axes = plt.subplots(page["rows"], page["cols"], figsize=page["figsize"])
                fig.suptitle(page["title"], fontsize=14)
                axes = np.atleast_1d(axes).flatten()
                for ax, (key, draw) in zip(axes, enabled):
                    try:
                        draw(ax)
                    except Exception as e_plot:
                        print(f"ERROR plotting '{key}': {e_plot}"); traceback.print_exc()
                        ax.cla(); _no_data(ax, key, "Plotting Error")
                for ax in axes[len(enabled):]:
                    ax.axis('off')

                plt.tight_layout(rect=[0, 0.03, 1, 0.95])
                pdf.savefig(fig)
                plt.close(fig)
                pages_written += 1

            if pages_written == 0:
                fig = plt.figure(figsize=(6, 2))
                fig.text(0.5, 0.5, "All plots disabled", ha='center', va='center')
                pdf.savefig(fig); plt.close(fig)

        print(f"Successfully generated PDF: {pdf_filename}")
        return pdf_filename

    except Exception as e:
        print(f"ERROR during PDF generation process: {e}"); traceback.print_exc()
        if os.path.exists(pdf_filename):
            try: os.remove(pdf_filename)
            except OSError: pass
        return ""
