"""Meta‑analysis utilities.

This package computes log response ratios, fits multilevel random-effects
models (study and species-within-study random intercepts, REML) per
grouping of interest, and prepares the fitted coefficients for plotting.
"""

from .effect_sizes import compute_effect_sizes, is_valid_effect  # noqa: F401
from .extraction import build_plot_dataset, ordered_labels, significance_label  # noqa: F401
from .model import MetaAnalysisResult, Moderator, fit_meta  # noqa: F401
from .partition import (  # noqa: F401
    PartitionedFit,
    count_experiments,
    filter_min_count,
    fit_per_partition,
)
