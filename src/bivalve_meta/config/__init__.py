"""Configuration: runtime settings and display label maps."""

from .settings import Settings, settings
from .labels import FAMILY_LABELS, OUTGROUP_TAXA, STAGE_LABELS, STRESSOR_LABELS

__all__ = [
    "Settings",
    "settings",
    "FAMILY_LABELS",
    "OUTGROUP_TAXA",
    "STAGE_LABELS",
    "STRESSOR_LABELS",
]
