"""Multilevel random-effects meta-regression.

The model for ``k`` effect sizes is::

    yi = X b + u_study + u_species(study) + e_i,   e_i ~ N(0, vi)

with random intercepts for study and for species nested within study.
Variance components are estimated by restricted maximum likelihood,
coefficients by generalised least squares, and coefficient tests use a
t distribution with ``k - p`` degrees of freedom. This is the structure
of ``rma.mv(yi, vi, mods, random = ~ 1 | Study/Species, test = "t")``.

Moderators are described by :class:`Moderator`; a categorical moderator
(or a cross of two) is coded without an intercept so each coefficient is
the pooled effect of one level.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import linalg, optimize, stats

from ..core.exceptions import InsufficientDataError, ModelFitError
from ..utils.logging import get_logger
from .effect_sizes import VI, YI

logger = get_logger(__name__)

SQRT_VI = "sqrt_vi"
STUDY = "Study"
SPECIES = "Species"

# Variance components at or below this value are reported as zero.
_SIGMA2_FLOOR = 1e-10


class ModeratorKind(str, Enum):
    CATEGORICAL = "categorical"
    CROSS = "cross"
    CONTINUOUS = "continuous"


@dataclass(frozen=True)
class Moderator:
    """Fixed-effects part of a model."""

    kind: ModeratorKind
    variables: Tuple[str, ...]

    @classmethod
    def categorical(cls, variable: str) -> "Moderator":
        return cls(ModeratorKind.CATEGORICAL, (variable,))

    @classmethod
    def cross(cls, first: str, second: str) -> "Moderator":
        return cls(ModeratorKind.CROSS, (first, second))

    @classmethod
    def continuous(cls, variable: str) -> "Moderator":
        return cls(ModeratorKind.CONTINUOUS, (variable,))

    @classmethod
    def precision(cls) -> "Moderator":
        """Regression on ``sqrt(vi)``: a test for small-study effects."""
        return cls(ModeratorKind.CONTINUOUS, (SQRT_VI,))

    @property
    def has_intercept(self) -> bool:
        return self.kind == ModeratorKind.CONTINUOUS

    @property
    def level_columns(self) -> List[str]:
        """Columns of the coefficient table that hold factor levels."""
        return [] if self.has_intercept else list(self.variables)

    def formula(self) -> str:
        if self.kind == ModeratorKind.CONTINUOUS:
            return f"~ {self.variables[0]}"
        return f"~ {':'.join(self.variables)} - 1"

    def values(self, data: pd.DataFrame, variable: str) -> pd.Series:
        if variable == SQRT_VI and variable not in data.columns:
            return np.sqrt(data[VI])
        return data[variable]

    def usable(self, data: pd.DataFrame) -> pd.Series:
        """Rows with a defined value for every moderator variable."""
        mask = pd.Series(True, index=data.index)
        for variable in self.variables:
            values = self.values(data, variable)
            if self.kind == ModeratorKind.CONTINUOUS:
                values = pd.to_numeric(values, errors="coerce")
                mask &= np.isfinite(values)
            else:
                mask &= values.notna()
        return mask

    def design(self, data: pd.DataFrame) -> Tuple[np.ndarray, pd.DataFrame]:
        """Build the design matrix and a table describing its columns."""
        if self.kind == ModeratorKind.CONTINUOUS:
            variable = self.variables[0]
            x = pd.to_numeric(self.values(data, variable), errors="coerce").to_numpy(dtype=float)
            X = np.column_stack([np.ones(len(x)), x])
            return X, pd.DataFrame({"term": ["intrcpt", variable]})

        keys = list(zip(*(data[v].astype(str) for v in self.variables)))
        levels = sorted(set(keys))
        index = {level: j for j, level in enumerate(levels)}
        X = np.zeros((len(keys), len(levels)))
        for i, key in enumerate(keys):
            X[i, index[key]] = 1.0
        terms = pd.DataFrame(levels, columns=list(self.variables))
        terms.insert(
            0,
            "term",
            [":".join(f"{v}[{lvl}]" for v, lvl in zip(self.variables, level)) for level in levels],
        )
        return X, terms


@dataclass(frozen=True, eq=False)
class MetaAnalysisResult:
    """A fitted multilevel model; never modified after fitting."""

    label: str
    moderator: Moderator
    coefficients: pd.DataFrame
    sigma2: Dict[str, float]
    k: int
    n_studies: int
    df: int
    qe: float
    qe_pval: float
    qm: float
    qm_pval: float
    log_lik: float
    ci_level: float
    covariate_range: Optional[Tuple[float, float]] = None
    beta: np.ndarray = field(default=None, repr=False)
    vb: np.ndarray = field(default=None, repr=False)

    def predict(self, values: Sequence[float]) -> pd.DataFrame:
        """Predicted effect and confidence band at covariate ``values``.

        Only defined for continuous moderators.
        """
        if self.moderator.kind != ModeratorKind.CONTINUOUS:
            raise ValueError("predict() requires a continuous moderator")
        x = np.asarray(values, dtype=float)
        Xnew = np.column_stack([np.ones(len(x)), x])
        pred = Xnew @ self.beta
        se = np.sqrt(np.einsum("ij,jk,ik->i", Xnew, self.vb, Xnew))
        crit = stats.t.ppf((1 + self.ci_level) / 2, self.df)
        return pd.DataFrame(
            {
                self.moderator.variables[0]: x,
                "pred": pred,
                "se": se,
                "ci_lb": pred - crit * se,
                "ci_ub": pred + crit * se,
            }
        )

    def summary(self) -> str:
        lines = [
            f"Multilevel meta-analysis: {self.label}",
            f"  mods {self.moderator.formula()}, k = {self.k}, studies = {self.n_studies}",
            "  "
            + ", ".join(f"sigma2[{name}] = {value:.4f}" for name, value in self.sigma2.items()),
            f"  QE({self.df}) = {self.qe:.2f}, p = {self.qe_pval:.4g}",
            f"  QM = {self.qm:.2f}, p = {self.qm_pval:.4g}",
        ]
        for _, row in self.coefficients.iterrows():
            lines.append(
                f"  {row['term']}: {row['estimate']:.3f} "
                f"[{row['ci_lb']:.3f}, {row['ci_ub']:.3f}] p = {row['pval']:.4g}"
            )
        return "\n".join(lines)


def _grouping_matrices(data: pd.DataFrame) -> List[Tuple[str, np.ndarray]]:
    """Random-intercept covariance patterns ``Z Z'`` with more than one level."""
    study = data[STUDY].astype(str).to_numpy()
    nested = (data[STUDY].astype(str) + "/" + data[SPECIES].astype(str)).to_numpy()
    patterns = []
    for name, codes in ((STUDY, study), (f"{STUDY}/{SPECIES}", nested)):
        if len(set(codes)) < 2:
            logger.debug(f"Single level for {name}; variance component fixed at zero")
            continue
        patterns.append((name, (codes[:, None] == codes[None, :]).astype(float)))
    return patterns


def _marginal_cov(v: np.ndarray, patterns: Sequence[np.ndarray], sigma2: np.ndarray) -> np.ndarray:
    V = np.diag(v)
    for s, ZZ in zip(sigma2, patterns):
        V = V + s * ZZ
    return V


def _gls(y: np.ndarray, X: np.ndarray, V: np.ndarray):
    """GLS estimates; returns beta, vb, residual quadratic form and log-dets."""
    chol = linalg.cho_factor(V, lower=True)
    Vinv_X = linalg.cho_solve(chol, X)
    Vinv_y = linalg.cho_solve(chol, y)
    XtVX = X.T @ Vinv_X
    vb = linalg.inv(XtVX)
    beta = vb @ (X.T @ Vinv_y)
    resid = y - X @ beta
    quad = float(resid @ linalg.cho_solve(chol, resid))
    logdet_V = 2.0 * float(np.sum(np.log(np.diag(chol[0]))))
    logdet_XtVX = float(np.linalg.slogdet(XtVX)[1])
    return beta, vb, quad, logdet_V, logdet_XtVX


def _reml_loglik(y, X, v, patterns, sigma2) -> float:
    k, p = X.shape
    _, _, quad, logdet_V, logdet_XtVX = _gls(y, X, _marginal_cov(v, patterns, sigma2))
    logdet_XtX = float(np.linalg.slogdet(X.T @ X)[1])
    return -0.5 * ((k - p) * np.log(2 * np.pi) - logdet_XtX + logdet_V + logdet_XtVX + quad)


def _estimate_sigma2(label: str, y, X, v, patterns) -> Tuple[np.ndarray, float]:
    if not patterns:
        return np.zeros(0), _reml_loglik(y, X, v, patterns, np.zeros(0))

    spread = max(float(np.var(y)), 1e-4)
    start = np.full(len(patterns), np.log(spread / (len(patterns) + 1)))
    lower = np.log(_SIGMA2_FLOOR)
    upper = np.log(max(100.0 * spread, 10.0 * float(np.max(v)), 1.0))
    bounds = [(lower, upper)] * len(patterns)
    matrices = [ZZ for _, ZZ in patterns]

    def objective(theta: np.ndarray) -> float:
        return -_reml_loglik(y, X, v, matrices, np.exp(theta))

    def converged(res) -> bool:
        return bool(res.success) and np.all(np.isfinite(res.x)) and np.isfinite(res.fun)

    try:
        res = optimize.minimize(objective, np.clip(start, lower, upper), method="L-BFGS-B", bounds=bounds)
        if not converged(res) and np.all(np.isfinite(res.x)):
            # L-BFGS-B line searches can stall on flat likelihood surfaces
            logger.debug(f"{label}: L-BFGS-B stopped ({res.message}); retrying with Nelder-Mead")
            res = optimize.minimize(objective, np.clip(res.x, lower, upper), method="Nelder-Mead", bounds=bounds)
    except (linalg.LinAlgError, ValueError) as e:
        raise ModelFitError(label, f"REML optimisation raised {e}", e) from e
    if not converged(res):
        raise ModelFitError(label, f"REML optimisation did not converge ({res.message})")
    at_upper = np.isclose(res.x, upper)
    if np.any(at_upper):
        names = [name for (name, _), hit in zip(patterns, at_upper) if hit]
        logger.warning(
            f"{label}: variance component(s) {', '.join(names)} at the upper bound "
            f"{np.exp(upper):.4g}; estimate is capped"
        )
    sigma2 = np.exp(res.x)
    sigma2[sigma2 <= _SIGMA2_FLOOR * 1.0001] = 0.0
    return sigma2, float(-res.fun)


def _standardising_map(X: np.ndarray, moderator: Moderator) -> np.ndarray:
    """Matrix ``B`` such that ``X @ B`` has a centred, unit-spread covariate.

    Coefficients fitted on ``X @ B`` map back with ``B @ beta``. Factor
    designs are returned unchanged.
    """
    B = np.eye(X.shape[1])
    if moderator.kind != ModeratorKind.CONTINUOUS:
        return B
    center = float(np.mean(X[:, 1]))
    spread = float(np.std(X[:, 1])) or 1.0
    B[0, 1] = -center / spread
    B[1, 1] = 1.0 / spread
    return B


def fit_meta(
    table: pd.DataFrame,
    moderator: Moderator,
    label: str = "all experiments",
    ci_level: float = 0.95,
) -> MetaAnalysisResult:
    """Fit a multilevel random-effects model to ``table``.

    Args:
        table: Effect-size table with ``yi``, ``vi``, ``Study``, ``Species``
            and the moderator columns.
        moderator: Fixed-effects part of the model.
        label: Name of the subset, used in logs and error messages.
        ci_level: Confidence level of the reported intervals.

    Returns:
        The fitted :class:`MetaAnalysisResult`.

    Raises:
        InsufficientDataError: no usable rows, no residual degrees of
            freedom, or a rank-deficient design.
        ModelFitError: the REML optimisation failed.
    """
    finite = np.isfinite(table[YI]) & np.isfinite(table[VI]) & (table[VI] > 0)
    data = table.loc[finite]
    data = data.loc[moderator.usable(data)]
    k = len(data)
    if k == 0:
        raise InsufficientDataError(label, "no usable effect sizes")

    X, terms = moderator.design(data)
    p = X.shape[1]
    if k - p < 1:
        raise InsufficientDataError(label, f"{k} observations for {p} coefficients")
    B = _standardising_map(X, moderator)
    Xs = X @ B
    if np.linalg.matrix_rank(Xs) < p:
        raise InsufficientDataError(label, f"design for {moderator.formula()} is rank deficient")

    y = data[YI].to_numpy(dtype=float)
    v = data[VI].to_numpy(dtype=float)
    patterns = _grouping_matrices(data)
    sigma2, log_lik = _estimate_sigma2(label, y, Xs, v, patterns)

    try:
        V = _marginal_cov(v, [ZZ for _, ZZ in patterns], sigma2)
        beta_s, vb_s, _, _, _ = _gls(y, Xs, V)
    except linalg.LinAlgError as e:
        raise ModelFitError(label, f"singular covariance in final fit: {e}", e) from e
    # coefficients on the scale of the original covariate
    beta = B @ beta_s
    vb = B @ vb_s @ B.T

    df = k - p
    se = np.sqrt(np.diag(vb))
    if not np.all(np.isfinite(beta)) or not np.all(np.isfinite(se)):
        raise ModelFitError(label, "non-finite coefficient estimates")
    tval = beta / se
    pval = 2 * stats.t.sf(np.abs(tval), df)
    crit = stats.t.ppf((1 + ci_level) / 2, df)

    coefficients = terms.copy()
    coefficients["estimate"] = beta
    coefficients["se"] = se
    coefficients["tval"] = tval
    coefficients["df"] = df
    coefficients["pval"] = pval
    coefficients["ci_lb"] = beta - crit * se
    coefficients["ci_ub"] = beta + crit * se

    # Residual heterogeneity, from the fixed-effects fit with weights 1/vi.
    _, _, qe, _, _ = _gls(y, Xs, np.diag(v))
    qe_pval = float(stats.chi2.sf(qe, df))

    # Omnibus test of the moderators (intercept excluded), F form.
    idx = np.arange(1, p) if moderator.has_intercept else np.arange(p)
    b_sub = beta[idx]
    qm = float(b_sub @ linalg.solve(vb[np.ix_(idx, idx)], b_sub)) / len(idx)
    qm_pval = float(stats.f.sf(qm, len(idx), df))

    components = {STUDY: 0.0, f"{STUDY}/{SPECIES}": 0.0}
    for (name, _), value in zip(patterns, sigma2):
        components[name] = float(value)

    covariate_range = None
    if moderator.kind == ModeratorKind.CONTINUOUS:
        x = X[:, 1]
        covariate_range = (float(np.min(x)), float(np.max(x)))

    result = MetaAnalysisResult(
        label=label,
        moderator=moderator,
        coefficients=coefficients,
        sigma2=components,
        k=k,
        n_studies=int(data[STUDY].nunique()),
        df=df,
        qe=float(qe),
        qe_pval=qe_pval,
        qm=qm,
        qm_pval=qm_pval,
        log_lik=log_lik,
        ci_level=ci_level,
        covariate_range=covariate_range,
        beta=beta,
        vb=vb,
    )
    logger.info(
        f"Fitted {label} ({moderator.formula()}): k={k}, studies={result.n_studies}, "
        f"QM p={qm_pval:.3g}"
    )
    return result
