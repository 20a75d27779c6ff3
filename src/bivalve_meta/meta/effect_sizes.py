"""Log response ratio (ratio of means) effect sizes.

For each experiment the effect size is ``yi = ln(mean_t / mean_c)`` with
the delta-method sampling variance::

    vi = sd_t**2 / (n_t * mean_t**2) + sd_c**2 / (n_c * mean_c**2)

Reported dispersions are first converted to standard deviations according
to their variance-type tag. Rows that cannot produce a finite, well-defined
effect size get ``NaN`` in both columns and drop out of model fitting.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from ..core.models import VarianceType
from ..utils.logging import get_logger

logger = get_logger(__name__)

YI = "yi"
VI = "vi"


def to_standard_deviation(value: pd.Series, kind: pd.Series, n: pd.Series) -> pd.Series:
    """Convert reported dispersion values to standard deviations.

    Args:
        value: Reported dispersion.
        kind: Variance-type tag per row (``SD``, ``SE`` or ``VAR``).
        n: Sample size per row, used to scale standard errors.

    Returns:
        Standard deviations; ``NaN`` where the tag is missing.
    """
    value = pd.to_numeric(value, errors="coerce")
    n = pd.to_numeric(n, errors="coerce")
    kind = kind.astype(object).map(lambda k: getattr(k, "value", k))
    sd = pd.Series(np.nan, index=value.index, dtype=float)
    is_sd = kind == VarianceType.SD.value
    is_se = kind == VarianceType.SE.value
    is_var = kind == VarianceType.VAR.value
    sd[is_sd] = value[is_sd]
    with np.errstate(invalid="ignore"):
        sd[is_se] = value[is_se] * np.sqrt(n[is_se])
        sd[is_var] = np.sqrt(value[is_var])
    return sd


def _standard_deviations(table: pd.DataFrame):
    sd_c = to_standard_deviation(
        table["control_variance"], table["control_variance_type"], table["Sample_size_control"]
    )
    sd_t = to_standard_deviation(
        table["treatment_variance"], table["treatment_variance_type"], table["Sample_size_treatment"]
    )
    return sd_c, sd_t


def is_valid_effect(table: pd.DataFrame) -> pd.Series:
    """Mask of rows whose means, sample sizes and dispersions are all usable."""
    sd_c, sd_t = _standard_deviations(table)
    parts = [
        table["control_mean"],
        table["treatment_mean"],
        table["Sample_size_control"],
        table["Sample_size_treatment"],
        sd_c,
        sd_t,
    ]
    mask = pd.Series(True, index=table.index)
    for part in parts:
        part = pd.to_numeric(part, errors="coerce")
        mask &= np.isfinite(part) & (part > 0)
    return mask


def compute_effect_sizes(table: pd.DataFrame) -> pd.DataFrame:
    """Add ``yi`` and ``vi`` columns to a copy of the experiment table.

    The result has the same rows in the same order as ``table``.
    """
    df = table.copy()
    valid = is_valid_effect(df)
    sd_c, sd_t = _standard_deviations(df)

    m_c = df["control_mean"].astype(float)
    m_t = df["treatment_mean"].astype(float)
    n_c = df["Sample_size_control"].astype(float)
    n_t = df["Sample_size_treatment"].astype(float)

    yi = pd.Series(np.nan, index=df.index, dtype=float)
    vi = pd.Series(np.nan, index=df.index, dtype=float)
    yi[valid] = np.log(m_t[valid] / m_c[valid])
    vi[valid] = sd_t[valid] ** 2 / (n_t[valid] * m_t[valid] ** 2) + sd_c[valid] ** 2 / (
        n_c[valid] * m_c[valid] ** 2
    )
    df[YI] = yi
    df[VI] = vi

    n_invalid = int((~valid).sum())
    if n_invalid:
        logger.warning(f"{n_invalid} of {len(df)} experiments have no usable effect size")
    logger.info(f"Computed lnRR effect sizes for {int(valid.sum())} experiments")
    return df
