"""Family-level phylogeny: loading, pruning and joining experiment counts.

Trees are read with :mod:`Bio.Phylo`. Pruning works on a copy and removes
only tips that exist, so pruning an already-pruned tree is a no-op.
"""

from __future__ import annotations

import copy
from io import StringIO
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Union

import pandas as pd
from Bio import Phylo
from Bio.Phylo.BaseTree import Tree
from Bio.Phylo.NewickIO import NewickError

from ..core.exceptions import DataLoadError
from ..utils.logging import get_logger

logger = get_logger(__name__)


def load_tree(path: Union[str, Path]) -> Tree:
    """Read a single Newick tree from ``path``."""
    path = Path(path)
    if not path.exists():
        raise DataLoadError(f"Tree file not found: {path}")
    try:
        tree = Phylo.read(str(path), "newick")
    except (NewickError, ValueError) as e:
        raise DataLoadError(f"Could not parse Newick tree {path}: {e}") from e
    logger.info(f"Loaded tree with {tree.count_terminals()} tips from {path}")
    return tree


def parse_tree(newick: str) -> Tree:
    """Parse a Newick string (handy for tests and inline trees)."""
    try:
        return Phylo.read(StringIO(newick), "newick")
    except (NewickError, ValueError) as e:
        raise DataLoadError(f"Could not parse Newick tree: {e}") from e


def to_newick(tree: Tree) -> str:
    handle = StringIO()
    Phylo.write(tree, handle, "newick")
    return handle.getvalue().strip()


def tip_names(tree: Tree) -> List[str]:
    """Tip names in drawing order (top to bottom)."""
    return [tip.name for tip in tree.get_terminals()]


def prune_tree(tree: Tree, exclude: Iterable[str]) -> Tree:
    """Return a copy of ``tree`` without the tips named in ``exclude``.

    Names that are not tips of the tree are ignored. Internal nodes left
    with a single child are collapsed into that child.
    """
    pruned = copy.deepcopy(tree)
    exclude = set(exclude)
    present = set()
    for tip in list(pruned.get_terminals()):
        if tip.name in exclude:
            pruned.prune(tip)
            present.add(tip.name)
    absent = sorted(exclude - present)
    if absent:
        logger.debug(f"Taxa not in tree, nothing to prune: {absent}")
    if present:
        logger.info(f"Pruned {len(present)} taxa; {pruned.count_terminals()} tips remain")
    return pruned


def align_counts_to_tips(tips: List[str], counts: Mapping[str, int]) -> pd.DataFrame:
    """Experiment counts in tip order.

    Tips without experiments get ``n = 0`` and ``in_table = False``.
    ``y`` is the 1-based row used by the tree drawing.
    """
    rows = []
    for y, name in enumerate(tips, start=1):
        n = counts.get(name)
        rows.append(
            {
                "Family": name,
                "n": int(n) if n is not None else 0,
                "in_table": n is not None and int(n) > 0,
                "y": y,
            }
        )
    return pd.DataFrame(rows, columns=["Family", "n", "in_table", "y"])


def family_counts(table: pd.DataFrame) -> Dict[str, int]:
    """Number of experiment rows per family in the loaded table."""
    return {str(k): int(v) for k, v in table["Family"].value_counts().items()}


def load_reference_counts(path: Union[str, Path]) -> Dict[str, int]:
    """Read a hard-coded ``Family,n`` count table kept for comparison only."""
    path = Path(path)
    if not path.exists():
        raise DataLoadError(f"Reference count table not found: {path}")
    df = pd.read_csv(path)
    missing = [c for c in ("Family", "n") if c not in df.columns]
    if missing:
        raise DataLoadError(f"{path} is missing columns: {missing}")
    return {str(row["Family"]): int(row["n"]) for _, row in df.iterrows()}


def audit_reference_counts(
    computed: Mapping[str, int],
    reference: Optional[Mapping[str, int]],
) -> pd.DataFrame:
    """Families whose stale reference count differs from the computed one.

    The computed counts are always the ones plotted; this only reports.
    """
    columns = ["Family", "computed", "reference", "difference"]
    if not reference:
        return pd.DataFrame(columns=columns)
    rows = []
    for family in sorted(set(computed) | set(reference)):
        c = int(computed.get(family, 0))
        r = int(reference.get(family, 0))
        if c != r:
            rows.append({"Family": family, "computed": c, "reference": r, "difference": c - r})
    mismatches = pd.DataFrame(rows, columns=columns)
    if not mismatches.empty:
        logger.warning(
            f"Reference family counts disagree with the experiment table for "
            f"{len(mismatches)} families: {', '.join(mismatches['Family'])}"
        )
    return mismatches
