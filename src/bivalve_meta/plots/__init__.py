"""PDF figure renderers."""

from .forest import build_forest_figure, plot_forest  # noqa: F401
from .phylogeny import TreeLayout, build_phylogeny_figure, plot_phylogeny, tree_layout  # noqa: F401
from .trend import build_trend_figure, plot_trends, trend_curve  # noqa: F401
