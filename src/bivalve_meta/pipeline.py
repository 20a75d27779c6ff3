"""End-to-end analysis run.

Stages run in order: load the experiment table, compute effect sizes,
fit the whole-group, family, developmental-stage, year-trend and
precision models, render the five figures and write the result tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .config.labels import FAMILY_LABELS, OUTGROUP_TAXA, STAGE_LABELS, STRESSOR_LABELS
from .config.settings import Settings
from .core.exceptions import InsufficientDataError
from .io.loader import load_experiments
from .io.paths import output_path, write_csv
from .meta.effect_sizes import compute_effect_sizes
from .meta.extraction import build_plot_dataset
from .meta.model import MetaAnalysisResult, Moderator, fit_meta
from .meta.partition import PartitionedFit, count_experiments, filter_min_count, fit_per_partition
from .phylo.tree import (
    audit_reference_counts,
    family_counts,
    load_reference_counts,
    load_tree,
    prune_tree,
)
from .plots.forest import plot_forest
from .plots.phylogeny import plot_phylogeny
from .plots.trend import plot_trends
from .utils.logging import get_logger

logger = get_logger(__name__)

STRESSOR = "Stressor"
FAMILY = "Family"
STAGE = "developmental_stage"
YEAR = "Year"

FIGURE_FILES = {
    "overall": "effect_sizes_overall.pdf",
    "family": "effect_sizes_family.pdf",
    "stage": "effect_sizes_stage.pdf",
    "trend": "stressor_year_trends.pdf",
    "phylogeny": "phylogeny_experiment_counts.pdf",
}
RESULTS_FILE = "model_results.csv"
SKIPPED_FILE = "skipped_groups.csv"
AUDIT_FILE = "family_count_audit.csv"


@dataclass
class AnalysisOutputs:
    """Everything a run produced."""

    figures: Dict[str, Path]
    results_path: Path
    skipped_path: Path
    coefficients: pd.DataFrame
    skipped: pd.DataFrame
    fits: Dict[str, MetaAnalysisResult] = field(default_factory=dict)
    count_mismatches: Optional[pd.DataFrame] = None


class _Collector:
    """Accumulates coefficient tables and skipped groups across analyses."""

    def __init__(self) -> None:
        self.coefficients: List[pd.DataFrame] = []
        self.skipped: List[Dict[str, str]] = []
        self.fits: Dict[str, MetaAnalysisResult] = {}

    def fit(self, analysis: str, table: pd.DataFrame, moderator: Moderator, label: str,
            ci_level: float) -> Optional[MetaAnalysisResult]:
        try:
            result = fit_meta(table, moderator, label=label, ci_level=ci_level)
        except InsufficientDataError as e:
            logger.warning(f"Skipping {analysis} model: {e}")
            self.skipped.append({"analysis": analysis, "group": label, "reason": e.reason})
            return None
        self.add(analysis, result.coefficients)
        self.fits[analysis] = result
        return result

    def add_partition(self, analysis: str, outcome: PartitionedFit) -> pd.DataFrame:
        coef = outcome.coefficients()
        self.add(analysis, coef)
        for level, reason in outcome.skipped.items():
            self.skipped.append(
                {"analysis": analysis, "group": f"{outcome.partition_key}={level}", "reason": reason}
            )
        for level, result in outcome.results.items():
            self.fits[f"{analysis}:{level}"] = result
        return coef

    def add(self, analysis: str, coefficients: pd.DataFrame) -> None:
        if coefficients.empty:
            return
        coef = coefficients.copy()
        coef.insert(0, "analysis", analysis)
        self.coefficients.append(coef)

    def coefficient_frame(self) -> pd.DataFrame:
        if not self.coefficients:
            return pd.DataFrame(columns=["analysis", "term", "estimate", "se", "pval"])
        return pd.concat(self.coefficients, ignore_index=True, sort=False)

    def skipped_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.skipped, columns=["analysis", "group", "reason"])


def _empty_coefficients(*columns: str) -> pd.DataFrame:
    return pd.DataFrame(columns=list(columns) + ["estimate", "ci_lb", "ci_ub", "pval"])


def run_analysis(settings: Settings) -> AnalysisOutputs:
    """Run every analysis and write figures and tables.

    Raises:
        DataLoadError: the experiment table or tree cannot be read.
        ModelFitError: a model fit did not converge.
        OutputError: a figure or table cannot be written.
    """
    ci = settings.ci_level
    figures_dir = Path(settings.figures_dir)
    figures: Dict[str, Path] = {}
    collector = _Collector()

    table = load_experiments(settings.data_path)
    effects = compute_effect_sizes(table)

    # Whole group, one pooled effect per stressor
    logger.info("Fitting whole-group model by stressor")
    overall = collector.fit("overall", effects, Moderator.categorical(STRESSOR), "all experiments", ci)
    dataset = build_plot_dataset(
        overall.coefficients if overall else _empty_coefficients(STRESSOR),
        count_experiments(effects, STRESSOR),
        [STRESSOR],
        STRESSOR_LABELS,
    )
    figures["overall"] = plot_forest(
        dataset,
        output_path(figures_dir, FIGURE_FILES["overall"]),
        settings.overall_figure_mm,
    )

    # Per family
    logger.info("Fitting stressor models per family")
    by_family = fit_per_partition(
        effects, FAMILY, settings.min_family_count, Moderator.categorical(STRESSOR), ci
    )
    family_coef = collector.add_partition("family", by_family)
    kept_families = filter_min_count(effects, FAMILY, settings.min_family_count)
    dataset = build_plot_dataset(
        family_coef,
        count_experiments(kept_families, [FAMILY, STRESSOR]),
        [FAMILY, STRESSOR],
        STRESSOR_LABELS,
        label_key=STRESSOR,
    )
    figures["family"] = plot_forest(
        dataset,
        output_path(figures_dir, FIGURE_FILES["family"]),
        settings.family_figure_mm,
        facet=FAMILY,
        facet_order=FAMILY_LABELS,
    )

    # Developmental stage, stressor crossed with stage
    logger.info("Fitting stressor x developmental stage model")
    staged = filter_min_count(effects, STAGE, settings.min_stage_count)
    stage_fit = collector.fit(
        "stage", staged, Moderator.cross(STRESSOR, STAGE), "developmental stage", ci
    )
    dataset = build_plot_dataset(
        stage_fit.coefficients if stage_fit else _empty_coefficients(STAGE, STRESSOR),
        count_experiments(staged, [STAGE, STRESSOR]),
        [STAGE, STRESSOR],
        STRESSOR_LABELS,
        label_key=STRESSOR,
    )
    figures["stage"] = plot_forest(
        dataset,
        output_path(figures_dir, FIGURE_FILES["stage"]),
        settings.stage_figure_mm,
        facet=STAGE,
        facet_order=STAGE_LABELS,
    )

    # Publication-year trend per stressor
    logger.info("Fitting publication-year trends per stressor")
    trends = fit_per_partition(
        effects, STRESSOR, settings.min_trend_count, Moderator.continuous(YEAR), ci
    )
    collector.add_partition("trend", trends)
    figures["trend"] = plot_trends(
        effects,
        trends.results,
        output_path(figures_dir, FIGURE_FILES["trend"]),
        settings.trend_figure_mm,
        labels=STRESSOR_LABELS,
        n_points=settings.trend_grid_points,
    )

    # Small-study effects
    collector.fit("precision", effects, Moderator.precision(), "precision test", ci)

    # Phylogeny with experiment counts per family
    tree = prune_tree(load_tree(settings.tree_path), OUTGROUP_TAXA)
    counts = family_counts(table)
    mismatches = None
    if settings.reference_counts_path is not None:
        mismatches = audit_reference_counts(counts, load_reference_counts(settings.reference_counts_path))
        write_csv(mismatches, settings.results_dir, AUDIT_FILE)
    figures["phylogeny"] = plot_phylogeny(
        tree,
        counts,
        output_path(figures_dir, FIGURE_FILES["phylogeny"]),
        settings.phylogeny_figure_mm,
    )

    coefficients = collector.coefficient_frame()
    skipped = collector.skipped_frame()
    results_path = write_csv(coefficients, settings.results_dir, RESULTS_FILE)
    skipped_path = write_csv(skipped, settings.results_dir, SKIPPED_FILE)
    logger.info(
        f"Analysis complete: {len(collector.fits)} models, {len(skipped)} skipped groups, "
        f"{len(figures)} figures"
    )
    return AnalysisOutputs(
        figures=figures,
        results_path=results_path,
        skipped_path=skipped_path,
        coefficients=coefficients,
        skipped=skipped,
        fits=collector.fits,
        count_mismatches=mismatches,
    )
