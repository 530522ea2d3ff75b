from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

import matplotlib
matplotlib.use("Agg", force=True)  # headless
import matplotlib.pyplot as plt

from .evolution import InspiralResult


@dataclass(frozen=True)
class FigureConfig:
    dpi: int = 300            # raster paths only
    fontsize: float = 10.0
    use_tex: bool = False
    tight: bool = True
    pad_inches: float = 0.02

    # three stacked panels, single column
    figsize: Tuple[float, float] = (3.4, 5.6)


def set_paper_style(cfg: FigureConfig) -> None:
    """Set Matplotlib rcParams for publication-friendly figures."""
    plt.rcParams.update({
        "figure.figsize": cfg.figsize,
        "savefig.dpi": cfg.dpi,
        "font.size": cfg.fontsize,
        "axes.labelsize": cfg.fontsize,
        "legend.fontsize": max(6.0, cfg.fontsize - 2.0),
        "xtick.labelsize": max(6.0, cfg.fontsize - 2.0),
        "ytick.labelsize": max(6.0, cfg.fontsize - 2.0),
        "xtick.direction": "in",
        "ytick.direction": "in",
        "legend.frameon": False,
        "lines.linewidth": 1.2,
        "pdf.fonttype": 42,
    })
    if cfg.use_tex:
        plt.rcParams.update({
            "text.usetex": True,
            "font.family": "serif",
            "font.serif": ["Computer Modern Roman"],
        })


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def savefig(fig: plt.Figure, path: str, cfg: FigureConfig) -> None:
    kwargs = {}
    if cfg.tight:
        kwargs["bbox_inches"] = "tight"
        kwargs["pad_inches"] = cfg.pad_inches
    if path.lower().endswith((".png", ".jpg", ".jpeg", ".tif", ".tiff")):
        kwargs["dpi"] = cfg.dpi
    fig.savefig(path, **kwargs)


def plot_inspiral(result: InspiralResult, cfg: FigureConfig = FigureConfig(),
                  path: Optional[str] = None) -> plt.Figure:
    """v(t), Phi(t) and the spin components of one evolution.

    The initial condition (t = 0) is marked on every panel. Saved to path
    when given; the figure is returned either way.
    """
    set_paper_style(cfg)
    t = result.t
    fig, axes = plt.subplots(3, 1, sharex=True, figsize=cfg.figsize)

    ax = axes[0]
    ax.plot(t, result["v"], color="k")
    ax.set_ylabel(r"$v$")

    ax = axes[1]
    ax.plot(t, result["Phi"] / (2 * np.pi), color="k")
    ax.set_ylabel("orbits")

    ax = axes[2]
    for body, ls in (("chi1", "-"), ("chi2", "--")):
        for comp, color in zip("xyz", ("C0", "C1", "C2")):
            ax.plot(t, result[f"{body}{comp}"], ls=ls, color=color,
                    label=rf"$\chi_{{{body[-1]},{comp}}}$")
    ax.set_ylabel(r"$\chi$")
    ax.set_xlabel(r"$t / M$")
    ax.legend(ncol=3, loc="best")

    for ax in axes:
        ax.axvline(0.0, color="0.6", lw=0.6, ls=":")

    if path is not None:
        ensure_dir(os.path.dirname(path) or ".")
        savefig(fig, path, cfg)
    return fig
