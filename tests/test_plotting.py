# bhgrav/tests/test_plotting.py
"""Tests for the PDF report writer."""

import os

from gravsim.simulator import Simulator
from gravsim.plotting import generate_plots_pdf, PDF_PREFIX

CPU_FLAGS = {"numpy": True, "taichi": False}


class TestGeneratePlots:

    def test_writes_pdf(self, small_settings, tmp_path):
        sim = Simulator(small_settings, CPU_FLAGS)
        for _ in range(6):
            sim.advance_one_step()
        path = generate_plots_pdf(sim.get_graph_data(include_final_snapshot=True),
                                  sim.get_graph_settings(), str(tmp_path))
        assert os.path.basename(path).startswith(PDF_PREFIX)
        assert os.path.getsize(path) > 0

    def test_all_plots_disabled(self, small_settings, tmp_path):
        sim = Simulator(small_settings, CPU_FLAGS)
        sim.advance_one_step()
        settings = {k: False if k.startswith('plot_') else v for k, v in sim.get_graph_settings().items()}
        path = generate_plots_pdf(sim.get_graph_data(), settings, str(tmp_path / "out"))
        assert os.path.isfile(path)

    def test_no_data(self, tmp_path):
        assert generate_plots_pdf({}, {}, str(tmp_path)) == ""
        assert generate_plots_pdf(None, {}, str(tmp_path)) == ""

    def test_partial_series(self, tmp_path):
        graph_data = {'time': [0.0, 1.0], 'step': [0, 1], 'total_ke': [1.0, 1.1], 'total_pe': [],
                      'total_energy': [1.0, 1.1], 'final_snapshot': {}}
        settings = {'plot_energy_components': True, 'plot_hist_speed': True}
        path = generate_plots_pdf(graph_data, settings, str(tmp_path))
        assert path.endswith(".pdf")
