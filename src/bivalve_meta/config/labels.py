"""Display labels and orderings used by the figures.

Orderings are explicit: the order of each mapping is the top-to-bottom
order in which groups are drawn. Keys are the canonical values found in
the experiment table.
"""

from collections import OrderedDict
from typing import Dict, Tuple

# Stressor keys as written in the Stressor column, with mathtext labels.
STRESSOR_LABELS: "OrderedDict[str, str]" = OrderedDict(
    [
        ("Temperature", "Temperature"),
        ("pCO2", r"$p$CO$_2$"),
        ("O2", r"O$_2$"),
        ("Salinity", "Salinity"),
        ("Temperature:pCO2", r"Temperature $\times$ $p$CO$_2$"),
        ("Temperature:O2", r"Temperature $\times$ O$_2$"),
        ("Temperature:Salinity", r"Temperature $\times$ Salinity"),
        ("pCO2:O2", r"$p$CO$_2$ $\times$ O$_2$"),
        ("pCO2:Salinity", r"$p$CO$_2$ $\times$ Salinity"),
        ("Temperature:pCO2:O2", r"Temperature $\times$ $p$CO$_2$ $\times$ O$_2$"),
    ]
)

# Bivalve families, ordered roughly by clade (Protobranchia first).
FAMILY_LABELS: "OrderedDict[str, str]" = OrderedDict(
    (name, name)
    for name in (
        "Nuculidae",
        "Arcidae",
        "Glycymerididae",
        "Mytilidae",
        "Pinnidae",
        "Ostreidae",
        "Pectinidae",
        "Unionidae",
        "Cardiidae",
        "Tellinidae",
        "Semelidae",
        "Donacidae",
        "Mactridae",
        "Pharidae",
        "Veneridae",
        "Myidae",
        "Dreissenidae",
        "Corbiculidae",
    )
)

STAGE_LABELS: "OrderedDict[str, str]" = OrderedDict(
    [
        ("Embryo", "Embryo"),
        ("Larvae", "Larvae"),
        ("Juvenile", "Juvenile"),
        ("Adult", "Adult"),
    ]
)

# Non-bivalve molluscs present in the family tree as outgroups.
OUTGROUP_TAXA: Tuple[str, ...] = (
    "GastropodaA",
    "GastropodaB",
    "CephalopodaA",
    "CephalopodaB",
    "Scaphopoda",
    "Chitonidae",
    "Monoplacophora",
)

# Axis titles keyed by the column they describe.
AXIS_TITLES: Dict[str, str] = {
    "yi": "Effect size (lnRR)",
    "Year": "Publication year",
    "n": "Number of experiments",
    "age": "Age (Ma)",
}
