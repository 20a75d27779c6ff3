"""Grouping helpers shared by every per-group analysis.

The family, developmental-stage and stressor-trend analyses are all the
same operation: drop groups with too few usable experiments, then fit one
model per remaining group. :func:`fit_per_partition` does exactly that and
keeps a record of every group it did not fit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Union

import numpy as np
import pandas as pd

from ..core.exceptions import InsufficientDataError
from ..utils.logging import get_logger
from .effect_sizes import VI, YI
from .model import MetaAnalysisResult, Moderator, fit_meta

logger = get_logger(__name__)

Keys = Union[str, Sequence[str]]


def _as_list(keys: Keys) -> List[str]:
    return [keys] if isinstance(keys, str) else list(keys)


def usable_rows(table: pd.DataFrame) -> pd.DataFrame:
    """Rows with a finite effect size and positive sampling variance."""
    mask = np.isfinite(table[YI]) & np.isfinite(table[VI]) & (table[VI] > 0)
    return table.loc[mask]


def count_experiments(table: pd.DataFrame, keys: Keys) -> pd.DataFrame:
    """Number of usable experiments per group, as columns ``keys + ['n']``."""
    keys = _as_list(keys)
    usable = usable_rows(table).dropna(subset=keys)
    if usable.empty:
        return pd.DataFrame({**{k: pd.Series(dtype=object) for k in keys}, "n": pd.Series(dtype=int)})
    counts = usable.groupby(keys, sort=True).size().reset_index(name="n")
    counts["n"] = counts["n"].astype(int)
    return counts


def filter_min_count(table: pd.DataFrame, key: str, min_count: int) -> pd.DataFrame:
    """Keep rows of ``key`` levels with more than ``min_count`` usable experiments.

    Rows without a usable effect size are dropped as well.
    """
    counts = count_experiments(table, key)
    kept = counts.loc[counts["n"] > min_count, key]
    dropped = counts.loc[counts["n"] <= min_count]
    for _, row in dropped.iterrows():
        logger.warning(
            f"Excluding {key}={row[key]!r}: {row['n']} experiments (need more than {min_count})"
        )
    usable = usable_rows(table)
    return usable.loc[usable[key].isin(kept)]


@dataclass
class PartitionedFit:
    """Per-level results of :func:`fit_per_partition`."""

    partition_key: str
    results: Dict[str, MetaAnalysisResult] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)

    def coefficients(self) -> pd.DataFrame:
        """All coefficient tables stacked, with the partition level as a column."""
        frames = []
        for level, result in self.results.items():
            coef = result.coefficients.copy()
            coef.insert(0, self.partition_key, level)
            frames.append(coef)
        if not frames:
            return pd.DataFrame(columns=[self.partition_key, "term", "estimate", "ci_lb", "ci_ub", "pval"])
        return pd.concat(frames, ignore_index=True)

    def skipped_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {self.partition_key: list(self.skipped), "reason": list(self.skipped.values())}
        )


def fit_per_partition(
    table: pd.DataFrame,
    partition_key: str,
    min_count: int,
    moderator: Moderator,
    ci_level: float = 0.95,
) -> PartitionedFit:
    """Fit ``moderator`` separately within each level of ``partition_key``.

    Levels with ``min_count`` or fewer usable experiments are not fitted.
    Levels whose fit raises :class:`InsufficientDataError` are recorded in
    ``skipped``; a :class:`~bivalve_meta.core.exceptions.ModelFitError`
    propagates to the caller.
    """
    outcome = PartitionedFit(partition_key=partition_key)
    counts = count_experiments(table, partition_key)
    for _, row in counts.loc[counts["n"] <= min_count].iterrows():
        outcome.skipped[str(row[partition_key])] = (
            f"{row['n']} experiments (need more than {min_count})"
        )

    subset = filter_min_count(table, partition_key, min_count)
    for level, group in subset.groupby(partition_key, sort=True):
        label = f"{partition_key}={level}"
        try:
            outcome.results[str(level)] = fit_meta(group, moderator, label=label, ci_level=ci_level)
        except InsufficientDataError as e:
            logger.warning(f"Skipping {label}: {e.reason}")
            outcome.skipped[str(level)] = e.reason
    logger.info(
        f"Partition by {partition_key}: {len(outcome.results)} fitted, "
        f"{len(outcome.skipped)} skipped"
    )
    return outcome
