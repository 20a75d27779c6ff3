"""Unit tests for the PDF renderers."""

from pathlib import Path
from typing import List, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from bivalve_meta.core.exceptions import OutputError
from bivalve_meta.meta.extraction import build_plot_dataset
from bivalve_meta.meta.model import Moderator, fit_meta
from bivalve_meta.phylo.tree import parse_tree
from bivalve_meta.plots.common import mm_to_inches, save_pdf
from bivalve_meta.plots.forest import build_forest_figure, facet_levels, plot_forest
from bivalve_meta.plots.phylogeny import build_phylogeny_figure, plot_phylogeny
from bivalve_meta.plots.trend import build_trend_figure, plot_trends
from tests.conftest import effects_frame


def is_pdf(path: Path) -> bool:
    return path.exists() and path.read_bytes()[:5] == b"%PDF-"


def top_to_bottom(ax: plt.Axes) -> List[str]:
    """Y tick labels ordered from the top of the axis down."""
    pairs = zip(ax.get_yticks(), [t.get_text() for t in ax.get_yticklabels()])
    return [label for _, label in sorted(pairs, reverse=True)]


def assert_page_size(fig: plt.Figure, size_mm: Tuple[float, float]) -> None:
    width, height = fig.get_size_inches()
    assert (width, height) == pytest.approx((size_mm[0] / 25.4, size_mm[1] / 25.4))


@pytest.fixture
def stage_dataset() -> pd.DataFrame:
    coef = pd.DataFrame(
        {
            "developmental_stage": ["Larvae", "Adult"],
            "Stressor": ["O2", "O2"],
            "estimate": [-0.2, 0.1],
            "ci_lb": [-0.4, 0.0],
            "ci_ub": [0.0, 0.2],
            "pval": [0.04, 0.3],
        }
    )
    counts = pd.DataFrame(
        {
            "developmental_stage": ["Larvae", "Adult", "Adult"],
            "Stressor": ["O2", "O2", "pCO2"],
            "n": [5, 3, 2],
        }
    )
    return build_plot_dataset(
        coef, counts, ["developmental_stage", "Stressor"], label_key="Stressor"
    )


@pytest.fixture
def stressor_dataset() -> pd.DataFrame:
    coef = pd.DataFrame(
        {
            "Stressor": ["O2", "Temperature"],
            "estimate": [0.2, -0.3],
            "ci_lb": [0.1, -0.5],
            "ci_ub": [0.3, -0.1],
            "pval": [0.0001, 0.02],
        }
    )
    counts = pd.DataFrame({"Stressor": ["O2", "Temperature", "pCO2"], "n": [4, 10, 2]})
    labels = {"Temperature": "Temperature", "pCO2": "pCO2", "O2": "O2"}
    return build_plot_dataset(coef, counts, ["Stressor"], labels)


class TestCommon:
    """Tests for size conversion and saving."""

    def test_mm_to_inches(self) -> None:
        """Test millimetre page sizes convert to inches."""
        assert mm_to_inches((254.0, 127.0)) == pytest.approx((10.0, 5.0))

    def test_write_failure(self, tmp_path: Path) -> None:
        """Test an unwritable figure path raises OutputError."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        fig, _ = plt.subplots()
        with pytest.raises(OutputError):
            save_pdf(fig, blocker / "figure.pdf", (100, 100))

    def test_saved_page_size(self, tmp_path: Path) -> None:
        """Test save_pdf resizes the figure to the requested page."""
        fig, _ = plt.subplots(figsize=(3, 3))
        save_pdf(fig, tmp_path / "sized.pdf", (180, 150))
        assert_page_size(fig, (180, 150))


class TestForest:
    """Tests for the forest-style figures."""

    def test_facet_levels(self, stage_dataset: pd.DataFrame) -> None:
        """Test facets follow the given order and skip absent levels."""
        order = {"Larvae": "Larvae", "Juvenile": "Juvenile", "Adult": "Adult"}
        assert facet_levels(stage_dataset, "developmental_stage", order) == ["Larvae", "Adult"]

    def test_label_order_runs_top_to_bottom(self, stressor_dataset: pd.DataFrame) -> None:
        """Test the first label is drawn at the top of the axis."""
        fig = build_forest_figure(stressor_dataset, (120, 90))
        try:
            assert_page_size(fig, (120, 90))
            assert top_to_bottom(fig.axes[0]) == ["Temperature", "pCO2", "O2"]
        finally:
            plt.close(fig)

    def test_annotations(self, stressor_dataset: pd.DataFrame) -> None:
        """Test stars and counts are drawn, and unfitted groups show only a count."""
        fig = build_forest_figure(stressor_dataset, (120, 90))
        try:
            texts = [t.get_text() for t in fig.axes[0].texts]
            assert "***" in texts
            assert "n = 10" in texts
            assert "no estimate (n = 2)" in texts
        finally:
            plt.close(fig)

    def test_facet_panels(self, stage_dataset: pd.DataFrame) -> None:
        """Test one row panel per facet level in the given order."""
        fig = build_forest_figure(
            stage_dataset,
            (180, 200),
            facet="developmental_stage",
            facet_order={"Larvae": "Larvae", "Adult": "Adult"},
        )
        try:
            assert len(fig.axes) == 2
            assert "Larvae" in [t.get_text() for t in fig.axes[0].texts]
            assert top_to_bottom(fig.axes[1]) == ["O2", "pCO2"]
            assert_page_size(fig, (180, 200))
        finally:
            plt.close(fig)

    def test_faceted_pdf(self, stage_dataset: pd.DataFrame, tmp_path: Path) -> None:
        """Test plot_forest writes a PDF and returns its path."""
        path = plot_forest(
            stage_dataset,
            tmp_path / "stage.pdf",
            (180, 200),
            facet="developmental_stage",
            facet_order={"Larvae": "Larvae", "Adult": "Adult"},
        )
        assert is_pdf(path)

    def test_empty_dataset(self, tmp_path: Path) -> None:
        """Test an empty dataset still renders a page."""
        empty = build_plot_dataset(
            pd.DataFrame(columns=["Stressor", "estimate", "ci_lb", "ci_ub", "pval"]),
            pd.DataFrame({"Stressor": pd.Series(dtype=str), "n": pd.Series(dtype=int)}),
            ["Stressor"],
        )
        assert is_pdf(plot_forest(empty, tmp_path / "empty.pdf", (120, 90)))


class TestTrends:
    """Tests for the year-trend figure."""

    @pytest.fixture
    def trend_data(self):
        rng = np.random.default_rng(1)
        rows = [
            {"Stressor": stressor, "Year": year, "yi": slope * (year - 2000) + rng.normal(0, 0.01)}
            for stressor, slope in (("O2", 0.01), ("pCO2", -0.02))
            for year in range(1998, 2008)
        ]
        table = effects_frame(rows)
        fits = {
            stressor: fit_meta(group, Moderator.continuous("Year"), label=stressor)
            for stressor, group in table.groupby("Stressor")
        }
        return table, fits

    def test_panels_and_grid(self, trend_data) -> None:
        """Test one panel per stressor, each with a 100-point fitted curve."""
        table, fits = trend_data
        fig = build_trend_figure(table, fits, (180, 180), labels={"pCO2": "pCO2"})
        try:
            assert_page_size(fig, (180, 180))
            panels = [ax for ax in fig.axes if ax.get_visible()]
            assert [ax.get_title().split(" ")[0] for ax in panels] == ["pCO2", "O2"]
            for ax in panels:
                curves = [line for line in ax.get_lines() if len(line.get_xdata()) == 100]
                assert len(curves) == 1
                assert curves[0].get_xdata()[0] == pytest.approx(1998.0)
                assert curves[0].get_xdata()[-1] == pytest.approx(2007.0)
        finally:
            plt.close(fig)

    def test_writes_pdf(self, trend_data, tmp_path: Path) -> None:
        """Test plot_trends writes a PDF."""
        table, fits = trend_data
        path = plot_trends(table, fits, tmp_path / "trends.pdf", (180, 180))
        assert is_pdf(path)


class TestPhylogeny:
    """Tests for the tree and count bars figure."""

    def test_bars_and_labels(self, family_newick: str) -> None:
        """Test bars align to tips, absent families get zero bars and plain labels."""
        tree = parse_tree(family_newick)
        fig = build_phylogeny_figure(tree, {"Ostreidae": 12, "Veneridae": 3}, (180, 150))
        try:
            assert_page_size(fig, (180, 150))
            ax_bar = fig.axes[1]
            widths = [patch.get_width() for patch in ax_bar.patches]
            assert widths == [0, 12, 3, 0, 0, 0, 0]
            labels = [t.get_text() for t in ax_bar.get_yticklabels()]
            assert labels[:4] == ["Mytilidae", "Ostreidae", "Veneridae", "Cardiidae"]
            weights = [t.get_fontweight() for t in ax_bar.get_yticklabels()]
            assert weights[:4] == ["normal", "bold", "bold", "normal"]
            assert ax_bar.get_ylim() == pytest.approx((7.5, 0.5))
        finally:
            plt.close(fig)

    def test_age_axis_runs_back_in_time(self, family_newick: str) -> None:
        """Test the tree axis is inverted so the present is on the right."""
        fig = build_phylogeny_figure(parse_tree(family_newick), {}, (180, 150))
        try:
            left, right = fig.axes[0].get_xlim()
            assert left > right
        finally:
            plt.close(fig)

    def test_writes_pdf(self, family_newick: str, tmp_path: Path) -> None:
        """Test plot_phylogeny writes a PDF."""
        tree = parse_tree(family_newick)
        path = plot_phylogeny(tree, {"Ostreidae": 12}, tmp_path / "tree.pdf", (180, 150))
        assert is_pdf(path)
