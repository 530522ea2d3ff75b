import os

import matplotlib.pyplot as plt

from pn_inspiral.evolution import orbital_evolution
from pn_inspiral.plotting import FigureConfig, plot_inspiral, set_paper_style
from pn_inspiral.state import omega_of_v


def test_plot_inspiral_writes_figure(tmp_path):
    M = 1.2
    res = orbital_evolution(1.0, 0.2, (0.1, 0.0, 0.3), (0.0, 0.0, 0.0), omega_of_v(0.3, M),
                            Omega_1=omega_of_v(0.29, M), Omega_e=omega_of_v(0.32, M), pn_order=2)
    path = os.path.join(str(tmp_path), "figs", "inspiral.png")
    fig = plot_inspiral(res, FigureConfig(dpi=80), path=path)
    assert os.path.exists(path) and os.path.getsize(path) > 0
    assert len(fig.axes) == 3


def test_paper_style_sets_only_what_the_figure_uses():
    cfg = FigureConfig(fontsize=9.0, figsize=(3.0, 5.0))
    set_paper_style(cfg)
    assert plt.rcParams["font.size"] == 9.0
    assert plt.rcParams["legend.fontsize"] == 7.0
    assert tuple(plt.rcParams["figure.figsize"]) == (3.0, 5.0)
    assert not hasattr(cfg, "fmt"), "output format follows the file extension"
