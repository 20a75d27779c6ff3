"""Time-calibrated family tree beside per-family experiment counts."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Tuple

import matplotlib.pyplot as plt
from Bio.Phylo.BaseTree import Clade, Tree

from ..config.labels import AXIS_TITLES
from ..phylo.tree import align_counts_to_tips, tip_names
from ..utils.logging import get_logger
from .common import mm_to_inches, save_pdf

logger = get_logger(__name__)


@dataclass
class TreeLayout:
    """Coordinates of a rectangular tree drawing.

    ``y`` runs from 1 at the first tip downwards; ``age`` is the distance
    back from the youngest tip (0 = present).
    """

    tips: List[str]
    y: Dict[Clade, float]
    age: Dict[Clade, float]


def tree_layout(tree: Tree) -> TreeLayout:
    depths = tree.depths()
    if not max(depths.values()):
        logger.debug("Tree has no branch lengths; drawing with unit lengths")
        depths = tree.depths(unit_branch_lengths=True)
    height = max(depths[tip] for tip in tree.get_terminals())

    y: Dict[Clade, float] = {}
    for i, tip in enumerate(tree.get_terminals(), start=1):
        y[tip] = float(i)

    def place(clade: Clade) -> float:
        if clade in y:
            return y[clade]
        child_y = [place(child) for child in clade.clades]
        y[clade] = (child_y[0] + child_y[-1]) / 2.0
        return y[clade]

    place(tree.root)
    age = {clade: height - depth for clade, depth in depths.items()}
    return TreeLayout(tips=tip_names(tree), y=y, age=age)


def _draw_tree(ax: plt.Axes, tree: Tree, layout: TreeLayout) -> None:
    for clade in tree.find_clades(order="preorder"):
        if not clade.clades:
            continue
        x = layout.age[clade]
        ys = [layout.y[child] for child in clade.clades]
        ax.plot([x, x], [min(ys), max(ys)], color="black", linewidth=0.8)
        for child in clade.clades:
            ax.plot([x, layout.age[child]], [layout.y[child]] * 2, color="black", linewidth=0.8)
    ax.invert_xaxis()
    ax.set_xlabel(AXIS_TITLES["age"], fontsize=8)
    ax.tick_params(axis="x", labelsize=7)
    ax.tick_params(axis="y", left=False, labelleft=False)
    for side in ("top", "right", "left"):
        ax.spines[side].set_visible(False)


def build_phylogeny_figure(
    tree: Tree,
    counts: Mapping[str, int],
    size_mm: Tuple[float, float],
) -> plt.Figure:
    """Draw ``tree`` with a bar of experiment counts aligned to each tip.

    Families absent from ``counts`` get an empty bar; families present in
    the experiment table have bold labels.
    """
    layout = tree_layout(tree)
    aligned = align_counts_to_tips(layout.tips, counts)
    missing = aligned.loc[~aligned["in_table"], "Family"].tolist()
    if missing:
        logger.info(f"{len(missing)} tips have no experiments: {', '.join(missing)}")

    fig, (ax_tree, ax_bar) = plt.subplots(
        nrows=1,
        ncols=2,
        sharey=True,
        figsize=mm_to_inches(size_mm),
        gridspec_kw={"width_ratios": [3, 2]},
    )
    _draw_tree(ax_tree, tree, layout)

    ax_bar.barh(aligned["y"], aligned["n"], height=0.6, color="0.35")
    ax_bar.set_yticks(aligned["y"])
    ax_bar.set_yticklabels(aligned["Family"], fontsize=7)
    ax_bar.tick_params(axis="y", labelleft=True, length=0)
    for tick, bold in zip(ax_bar.get_yticklabels(), aligned["in_table"]):
        tick.set_fontweight("bold" if bold else "normal")
    ax_bar.set_xlabel(AXIS_TITLES["n"], fontsize=8)
    ax_bar.tick_params(axis="x", labelsize=7)
    for side in ("top", "right"):
        ax_bar.spines[side].set_visible(False)
    ax_bar.set_ylim(len(aligned) + 0.5, 0.5)

    fig.tight_layout()
    return fig


def plot_phylogeny(
    tree: Tree,
    counts: Mapping[str, int],
    output_path: Path,
    size_mm: Tuple[float, float],
) -> Path:
    """Render :func:`build_phylogeny_figure` to ``output_path`` as a PDF."""
    fig = build_phylogeny_figure(tree, counts, size_mm)
    return save_pdf(fig, output_path, size_mm)
