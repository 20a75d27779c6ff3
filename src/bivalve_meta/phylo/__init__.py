"""Phylogeny loading and pruning."""

from .tree import (
    align_counts_to_tips,
    audit_reference_counts,
    family_counts,
    load_reference_counts,
    load_tree,
    parse_tree,
    prune_tree,
    tip_names,
    to_newick,
)

__all__ = [
    "align_counts_to_tips",
    "audit_reference_counts",
    "family_counts",
    "load_reference_counts",
    "load_tree",
    "parse_tree",
    "prune_tree",
    "tip_names",
    "to_newick",
]
