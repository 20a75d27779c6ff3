"""Effect size against publication year, one panel per stressor."""

from __future__ import annotations

import math
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from ..config.labels import AXIS_TITLES
from ..meta.effect_sizes import VI, YI
from ..meta.model import MetaAnalysisResult
from ..meta.partition import usable_rows
from ..utils.logging import get_logger
from .common import mm_to_inches, save_pdf

logger = get_logger(__name__)

YEAR = "Year"


def trend_curve(
    result: MetaAnalysisResult,
    years: Optional[Sequence[float]] = None,
    n_points: int = 100,
) -> pd.DataFrame:
    """Prediction and confidence band on an even grid of years.

    The grid spans ``years`` when given, otherwise the range of years the
    model was fitted on.
    """
    if years is not None and len(years):
        lo, hi = float(np.min(years)), float(np.max(years))
    elif result.covariate_range is not None:
        lo, hi = result.covariate_range
    else:
        raise ValueError(f"No covariate range for {result.label!r}")
    return result.predict(np.linspace(lo, hi, n_points))


def _point_sizes(vi: pd.Series) -> np.ndarray:
    # marker area proportional to inverse-variance weight
    w = 1.0 / vi.to_numpy(dtype=float)
    return 8.0 + 60.0 * w / w.max()


def build_trend_figure(
    table: pd.DataFrame,
    fits: Mapping[str, MetaAnalysisResult],
    size_mm: Tuple[float, float],
    labels: Optional[Mapping[str, str]] = None,
    n_points: int = 100,
    stressor_key: str = "Stressor",
) -> plt.Figure:
    """Scatter of effect sizes by year with the fitted trend per stressor.

    Args:
        table: Effect-size table.
        fits: Year models keyed by stressor (only these panels are drawn).
        size_mm: Page size (width, height) in millimetres.
        labels: Ordered stressor labels; fixes the panel order.
        n_points: Grid size for the fitted curve.
        stressor_key: Column holding the stressor.

    Returns:
        The open figure; the caller saves or closes it.
    """
    labels = labels or {}
    order = [s for s in labels if s in fits] + sorted(s for s in fits if s not in labels)
    if not order:
        logger.warning("No year trends were fitted; the trend figure has no panels")

    ncols = 2 if len(order) > 1 else 1
    nrows = max(math.ceil(len(order) / ncols), 1)
    fig, axes = plt.subplots(
        nrows=nrows, ncols=ncols, squeeze=False, sharey=True, figsize=mm_to_inches(size_mm)
    )
    data = usable_rows(table)
    for ax in axes.flat[len(order):]:
        ax.set_visible(False)

    for ax, stressor in zip(axes.flat, order):
        result = fits[stressor]
        points = data.loc[data[stressor_key].astype(str) == stressor]
        curve = trend_curve(result, n_points=n_points)

        ax.scatter(points[YEAR], points[YI], s=_point_sizes(points[VI]), color="0.4",
                   alpha=0.5, edgecolors="none")
        ax.fill_between(curve[YEAR], curve["ci_lb"], curve["ci_ub"], color="tab:blue",
                        alpha=0.2, linewidth=0)
        ax.plot(curve[YEAR], curve["pred"], color="tab:blue", linewidth=1.2)
        ax.axhline(0, color="grey", linestyle="--", linewidth=0.8)

        slope = result.coefficients.loc[result.coefficients["term"] == YEAR]
        title = labels.get(stressor, stressor)
        if not slope.empty:
            title += f" (k = {result.k}, p = {float(slope['pval'].iloc[0]):.3f})"
        ax.set_title(title, fontsize=8)
        ax.tick_params(labelsize=7)

    for ax in axes[-1, :]:
        ax.set_xlabel(AXIS_TITLES[YEAR], fontsize=8)
    for ax in axes[:, 0]:
        ax.set_ylabel(AXIS_TITLES["yi"], fontsize=8)
    fig.tight_layout()
    return fig


def plot_trends(
    table: pd.DataFrame,
    fits: Mapping[str, MetaAnalysisResult],
    output_path: Path,
    size_mm: Tuple[float, float],
    labels: Optional[Mapping[str, str]] = None,
    n_points: int = 100,
    stressor_key: str = "Stressor",
) -> Path:
    """Render :func:`build_trend_figure` to ``output_path`` as a PDF."""
    fig = build_trend_figure(table, fits, size_mm, labels, n_points, stressor_key)
    return save_pdf(fig, output_path, size_mm)
