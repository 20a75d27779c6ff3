"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import Optional, Tuple
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Analysis settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Inputs
    data_path: Path = Field(Path("data/bivalve_experiments.csv"), description="Experiment table")
    tree_path: Path = Field(Path("data/mollusca_families.tre"), description="Newick family tree")
    reference_counts_path: Optional[Path] = Field(
        None,
        description="Optional CSV of hard-coded family counts (Family,n) to audit against",
    )

    # Outputs
    figures_dir: Path = Field(Path("figures"))
    results_dir: Path = Field(Path("results"))

    # Grouping thresholds (a level is kept when its count is strictly greater)
    min_family_count: int = Field(2, ge=0)
    min_stage_count: int = Field(1, ge=0)
    min_trend_count: int = Field(2, ge=0)

    # Model and rendering
    ci_level: float = Field(0.95, gt=0, lt=1)
    trend_grid_points: int = Field(100, ge=2)

    # Page sizes in millimetres (width, height)
    overall_figure_mm: Tuple[float, float] = (120.0, 90.0)
    family_figure_mm: Tuple[float, float] = (180.0, 240.0)
    stage_figure_mm: Tuple[float, float] = (180.0, 200.0)
    trend_figure_mm: Tuple[float, float] = (180.0, 180.0)
    phylogeny_figure_mm: Tuple[float, float] = (180.0, 150.0)

    # Logging
    log_level: str = Field("INFO")
    log_format: str = Field("text", pattern="^(json|text)$")


# Instantiate global settings
settings = Settings()
