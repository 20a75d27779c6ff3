"""Forest-style effect-size figures.

One row per group: the pooled estimate with its confidence interval,
the significance stars above the point and the number of experiments
below it. Groups run top to bottom in label order. Optional row facets
split the figure by a second grouping (family, developmental stage).
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Mapping, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from ..config.labels import AXIS_TITLES
from ..utils.logging import get_logger
from .common import mm_to_inches, save_pdf

logger = get_logger(__name__)


def facet_levels(dataset: pd.DataFrame, facet: str, order: Optional[Mapping[str, str]] = None) -> List[str]:
    """Facet values present in ``dataset``, in ``order`` then alphabetically."""
    present = set(dataset[facet].astype(str))
    order = order or {}
    return [k for k in order if k in present] + sorted(present - set(order))


def _draw_rows(ax: plt.Axes, group: pd.DataFrame, categories: List[str]) -> None:
    labels = [c for c in categories if c in set(group["label"].astype(str))]
    # first label at the top
    ypos = {label: len(labels) - i for i, label in enumerate(labels)}
    for _, row in group.iterrows():
        y = ypos[str(row["label"])]
        if pd.notna(row["estimate"]):
            est = float(row["estimate"])
            xerr = np.array([[est - row["ci_lb"]], [row["ci_ub"] - est]])
            ax.errorbar(
                est, y, xerr=xerr, fmt="o", color="black", markersize=3.5,
                elinewidth=1.0, capsize=2.0, zorder=3,
            )
            ax.text(est, y + 0.18, row["significance"], ha="center", va="bottom", fontsize=7)
            ax.text(est, y - 0.18, f"n = {row['n']}", ha="center", va="top", fontsize=6)
        else:
            ax.text(0, y, f"no estimate (n = {row['n']})", ha="center", va="center",
                    fontsize=6, color="grey")
    ax.axvline(0, color="grey", linestyle="--", linewidth=0.8, zorder=1)
    ax.set_yticks(list(ypos.values()))
    ax.set_yticklabels(list(ypos.keys()), fontsize=7)
    ax.set_ylim(0.4, len(labels) + 0.6)
    ax.tick_params(axis="x", labelsize=7)


def build_forest_figure(
    dataset: pd.DataFrame,
    size_mm: Tuple[float, float],
    facet: Optional[str] = None,
    facet_order: Optional[Mapping[str, str]] = None,
    title: Optional[str] = None,
    xlabel: str = AXIS_TITLES["yi"],
) -> plt.Figure:
    """Draw a forest-style figure from a plot dataset.

    Args:
        dataset: Output of :func:`~bivalve_meta.meta.extraction.build_plot_dataset`.
        size_mm: Page size (width, height) in millimetres.
        facet: Optional column splitting the figure into row panels.
        facet_order: Ordered mapping of facet values to panel titles.
        title: Optional figure title.
        xlabel: Horizontal axis title.

    Returns:
        The open figure; the caller saves or closes it.
    """
    categories = [str(c) for c in dataset["label"].cat.categories]
    if facet is None:
        panels = [(None, dataset)]
    else:
        panels = [
            ((facet_order or {}).get(level, level), dataset[dataset[facet].astype(str) == level])
            for level in facet_levels(dataset, facet, facet_order)
        ]
    if not panels or dataset.empty:
        logger.warning("No groups to draw")
        panels = [(None, dataset)]

    heights = [max(group["label"].nunique(), 1) for _, group in panels]
    fig, axes = plt.subplots(
        nrows=len(panels),
        ncols=1,
        sharex=True,
        squeeze=False,
        figsize=mm_to_inches(size_mm),
        gridspec_kw={"height_ratios": heights},
    )
    for ax, (panel_title, group) in zip(axes[:, 0], panels):
        _draw_rows(ax, group, categories)
        if panel_title is not None:
            ax.text(1.01, 0.5, panel_title, transform=ax.transAxes, rotation=-90,
                    ha="left", va="center", fontsize=7, fontweight="bold")
    axes[-1, 0].set_xlabel(xlabel, fontsize=8)
    if title:
        fig.suptitle(title, fontsize=9)
    fig.tight_layout()
    return fig


def plot_forest(
    dataset: pd.DataFrame,
    output_path: Path,
    size_mm: Tuple[float, float],
    facet: Optional[str] = None,
    facet_order: Optional[Mapping[str, str]] = None,
    title: Optional[str] = None,
    xlabel: str = AXIS_TITLES["yi"],
) -> Path:
    """Render :func:`build_forest_figure` to ``output_path`` as a PDF."""
    fig = build_forest_figure(dataset, size_mm, facet, facet_order, title, xlabel)
    return save_pdf(fig, output_path, size_mm)
