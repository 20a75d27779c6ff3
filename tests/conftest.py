"""Shared fixtures: experiment rows, effect-size tables and trees."""

import matplotlib

matplotlib.use("Agg")

from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import pandas as pd
import pytest

from bivalve_meta.core.models import REQUIRED_COLUMNS

FAMILY_TREE = (
    "(((Mytilidae:100,Ostreidae:100):200,(Veneridae:150,Cardiidae:150):150):150,"
    "((GastropodaA:300,GastropodaB:300):100,Chitonidae:400):50);"
)


def experiment_row(**overrides: Any) -> Dict[str, Any]:
    """One complete, valid experiment row keyed by the table headers."""
    row: Dict[str, Any] = {
        "Study": "Smith2015",
        "Year": 2015,
        "Species": "Mytilus edulis",
        "Common name": "Blue mussel",
        "Family": "Mytilidae",
        "Sample_size_control": 10,
        "Sample_size_treatment": 10,
        "Stressor": "Temperature",
        "control_level_stressor": "15",
        "treatment_level_stressor": "20",
        "Replicates": "3",
        "measurement": "growth",
        "control_mean": 10.0,
        "control_variance_type": "SD",
        "control_variance": 1.0,
        "treatment_mean": 12.0,
        "treatment_variance_type": "SD",
        "treatment_variance": 1.0,
        "developmental_stage": "Adult",
        "duration_expt": "30",
        "acclimatisation": "7",
        "notes": "",
    }
    row.update(overrides)
    return row


def write_rows(path: Path, rows: List[Dict[str, Any]]) -> Path:
    pd.DataFrame(rows, columns=REQUIRED_COLUMNS).to_csv(path, index=False)
    return path


def effects_frame(rows: List[Dict[str, Any]]) -> pd.DataFrame:
    """Effect-size table with default grouping columns filled in."""
    defaults = {
        "Study": "S1",
        "Species": "sp1",
        "Family": "Mytilidae",
        "Stressor": "Temperature",
        "developmental_stage": "Adult",
        "Year": 2010,
        "vi": 0.01,
    }
    df = pd.DataFrame([{**defaults, **row} for row in rows])
    df["yi"] = df["yi"].astype(float)
    df["vi"] = df["vi"].astype(float)
    return df


@pytest.fixture
def heterogeneous_effects() -> pd.DataFrame:
    """Three stressors across six studies with species nested in studies."""
    rng = np.random.default_rng(42)
    rows = []
    means = {"Temperature": -0.3, "pCO2": -0.1, "O2": 0.2}
    for s in range(6):
        study_effect = rng.normal(0, 0.1)
        for sp in range(2):
            species_effect = rng.normal(0, 0.05)
            for stressor, mu in means.items():
                rows.append(
                    {
                        "Study": f"Study{s}",
                        "Species": f"sp{s}_{sp}",
                        "Stressor": stressor,
                        "Year": 2000 + 2 * s + sp,
                        "yi": mu + study_effect + species_effect + rng.normal(0, 0.05),
                        "vi": float(rng.uniform(0.002, 0.01)),
                    }
                )
    return effects_frame(rows)


@pytest.fixture
def family_newick() -> str:
    return FAMILY_TREE


@pytest.fixture
def tree_file(tmp_path: Path) -> Path:
    path = tmp_path / "families.tre"
    path.write_text(FAMILY_TREE + "\n")
    return path
