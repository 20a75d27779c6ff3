"""Figure sizing and PDF output shared by all renderers."""

from __future__ import annotations

from pathlib import Path
from typing import Tuple

import matplotlib.pyplot as plt

from ..core.exceptions import OutputError
from ..utils.logging import get_logger

logger = get_logger(__name__)

MM_PER_INCH = 25.4


def mm_to_inches(size_mm: Tuple[float, float]) -> Tuple[float, float]:
    width, height = size_mm
    return width / MM_PER_INCH, height / MM_PER_INCH


def save_pdf(fig: plt.Figure, output_path: Path, size_mm: Tuple[float, float]) -> Path:
    """Write ``fig`` as a PDF page of exactly ``size_mm`` and close it."""
    output_path = Path(output_path)
    fig.set_size_inches(*mm_to_inches(size_mm))
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(output_path, format="pdf")
    except OSError as e:
        raise OutputError(f"Cannot write figure {output_path}: {e}") from e
    finally:
        plt.close(fig)
    logger.info(f"Figure saved to {output_path}")
    return output_path
