"""Output directory and file path management."""

from pathlib import Path

import pandas as pd

from ..core.exceptions import OutputError
from ..utils.logging import get_logger

logger = get_logger(__name__)


def output_path(directory: Path, filename: str) -> Path:
    """Return ``directory / filename``, creating the directory if needed."""
    directory = Path(directory)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputError(f"Cannot create output directory {directory}: {e}") from e
    return directory / filename


def write_csv(df: pd.DataFrame, directory: Path, filename: str) -> Path:
    path = output_path(directory, filename)
    try:
        df.to_csv(path, index=False)
    except OSError as e:
        raise OutputError(f"Cannot write {path}: {e}") from e
    logger.info(f"Saved: {path}")
    return path
