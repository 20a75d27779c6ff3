"""Experiment table loading.

The table is parsed eagerly and validated row by row through
:class:`~bivalve_meta.core.models.ExperimentRecord`. Any missing column or
malformed row aborts the load; there is no partial table.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd
from pydantic import ValidationError

from ..core.exceptions import DataLoadError
from ..core.models import ExperimentRecord, REQUIRED_COLUMNS
from ..utils.logging import get_logger

logger = get_logger(__name__)


def _clean_cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def read_table(path: Union[str, Path]) -> pd.DataFrame:
    """Read the raw delimited file with every cell as text."""
    path = Path(path)
    if not path.exists():
        raise DataLoadError(f"Experiment table not found: {path}")
    try:
        # sep=None sniffs comma, semicolon or tab delimited files
        raw = pd.read_csv(path, sep=None, engine="python", dtype=str, skipinitialspace=True)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError, OSError) as e:
        raise DataLoadError(f"Could not parse {path}: {e}") from e
    raw.columns = [str(c).strip() for c in raw.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in raw.columns]
    if missing:
        raise DataLoadError(f"{path} is missing required columns: {missing}")
    return raw


def validate_rows(raw: pd.DataFrame) -> List[ExperimentRecord]:
    """Validate every row, failing on the first malformed one."""
    records: List[ExperimentRecord] = []
    for row_number, row in enumerate(raw[REQUIRED_COLUMNS].to_dict("records"), start=1):
        cleaned: Dict[str, Any] = {key: _clean_cell(value) for key, value in row.items()}
        try:
            records.append(ExperimentRecord.model_validate(cleaned))
        except ValidationError as e:
            raise DataLoadError(f"Malformed data row {row_number}: {e}") from e
    return records


def records_to_frame(records: List[ExperimentRecord]) -> pd.DataFrame:
    """Convert validated records to a DataFrame keyed by the table headers."""
    rows = [record.model_dump(by_alias=True, mode="json") for record in records]
    df = pd.DataFrame(rows, columns=REQUIRED_COLUMNS)
    numeric = [
        "Sample_size_control",
        "Sample_size_treatment",
        "control_mean",
        "control_variance",
        "treatment_mean",
        "treatment_variance",
    ]
    df[numeric] = df[numeric].astype(float)
    df["Year"] = df["Year"].astype(int)
    return df


def load_experiments(path: Union[str, Path]) -> pd.DataFrame:
    """Load and validate the experiment table.

    Args:
        path: Path to a delimited text file with the header described in
            :data:`~bivalve_meta.core.models.REQUIRED_COLUMNS`.

    Returns:
        DataFrame with one row per experiment, in file order.

    Raises:
        DataLoadError: if the file is missing, unparseable, lacks a
            required column or contains a malformed row.
    """
    raw = read_table(path)
    records = validate_rows(raw)
    df = records_to_frame(records)
    logger.info(
        f"Loaded {len(df)} experiments from {path} "
        f"({df['Study'].nunique() if len(df) else 0} studies)"
    )
    return df
