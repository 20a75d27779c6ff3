"""Turn fitted coefficients into plotting-ready tables."""

from __future__ import annotations

import math
from typing import Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from ..utils.logging import get_logger

logger = get_logger(__name__)

ESTIMATE_COLUMNS = ["estimate", "ci_lb", "ci_ub", "pval"]


def significance_label(p: Optional[float]) -> str:
    """Stars for a p-value: ``***`` < 0.001, ``**`` < 0.01, ``*`` < 0.05."""
    if p is None or (isinstance(p, float) and math.isnan(p)):
        return ""
    if p < 0.001:
        return "***"
    if p < 0.01:
        return "**"
    if p < 0.05:
        return "*"
    return ""


def ordered_labels(keys: Iterable[str], labels: Optional[Mapping[str, str]] = None) -> List[str]:
    """Display labels for ``keys`` in mapping order, unmapped keys last (sorted)."""
    labels = labels or {}
    present = {str(k) for k in keys}
    ordered = [labels[k] for k in labels if k in present]
    ordered += sorted(k for k in present if k not in labels)
    return ordered


def build_plot_dataset(
    coefficients: pd.DataFrame,
    counts: pd.DataFrame,
    keys: Sequence[str],
    labels: Optional[Mapping[str, str]] = None,
    label_key: Optional[str] = None,
) -> pd.DataFrame:
    """Join coefficients to experiment counts and display labels.

    Args:
        coefficients: Coefficient table with the ``keys`` columns and
            ``estimate``, ``ci_lb``, ``ci_ub``, ``pval``.
        counts: Table with the ``keys`` columns and ``n``.
        keys: Group columns shared by both tables.
        labels: Ordered mapping from ``label_key`` values to display labels.
        label_key: Column whose values are labelled (default: last key).

    Returns:
        Outer join of both tables. Groups without a fitted coefficient
        keep their count and a missing estimate; fitted groups without a
        count get ``n = 0``. ``label`` is an ordered categorical.
    """
    keys = list(keys)
    label_key = label_key or keys[-1]

    coef = coefficients.reindex(columns=keys + ESTIMATE_COLUMNS).copy()
    n = counts[keys + ["n"]].copy()
    for frame in (coef, n):
        for key in keys:
            frame[key] = frame[key].astype(str)

    merged = coef.merge(n, on=keys, how="outer")
    merged["n"] = merged["n"].fillna(0).astype(int)
    merged["significance"] = merged["pval"].map(significance_label)

    n_unfitted = int(merged["estimate"].isna().sum())
    if n_unfitted:
        logger.debug(f"{n_unfitted} groups have counts but no fitted coefficient")

    raw = merged[label_key]
    mapped = raw.map(lambda key: (labels or {}).get(key, key))
    categories = ordered_labels(raw.unique(), labels)
    merged["label"] = pd.Categorical(mapped, categories=categories, ordered=True)
    merged = merged.sort_values([k for k in keys if k != label_key] + ["label"])
    return merged.reset_index(drop=True)
