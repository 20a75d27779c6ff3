"""Core domain models for experiment records.

One :class:`ExperimentRecord` corresponds to one control/treatment
comparison in the source table. Field aliases are the exact column
headers of the table, so a row dictionary read from the file validates
directly.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VarianceType(str, Enum):
    """How a reported dispersion value should be read."""

    SD = "SD"
    SE = "SE"
    VAR = "VAR"


_VARIANCE_ALIASES = {
    "SD": VarianceType.SD,
    "STANDARD DEVIATION": VarianceType.SD,
    "SE": VarianceType.SE,
    "SEM": VarianceType.SE,
    "STANDARD ERROR": VarianceType.SE,
    "VAR": VarianceType.VAR,
    "VARIANCE": VarianceType.VAR,
}


def parse_variance_type(value: Any) -> Optional[VarianceType]:
    """Map a free-text tag to :class:`VarianceType` (case-insensitive)."""
    if value is None or isinstance(value, VarianceType):
        return value
    key = str(value).strip().upper()
    if not key:
        return None
    try:
        return _VARIANCE_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unknown variance type {value!r}") from None


class ExperimentRecord(BaseModel):
    """A single control/treatment comparison."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    study: str = Field(..., alias="Study")
    year: int = Field(..., alias="Year", ge=1800, le=2100)
    species: str = Field(..., alias="Species")
    common_name: Optional[str] = Field(None, alias="Common name")
    family: str = Field(..., alias="Family")
    sample_size_control: Optional[float] = Field(None, alias="Sample_size_control")
    sample_size_treatment: Optional[float] = Field(None, alias="Sample_size_treatment")
    stressor: str = Field(..., alias="Stressor")
    control_level_stressor: Optional[str] = Field(None, alias="control_level_stressor")
    treatment_level_stressor: Optional[str] = Field(None, alias="treatment_level_stressor")
    replicates: Optional[str] = Field(None, alias="Replicates")
    measurement: Optional[str] = Field(None, alias="measurement")
    control_mean: Optional[float] = Field(None, alias="control_mean")
    control_variance_type: Optional[VarianceType] = Field(None, alias="control_variance_type")
    control_variance: Optional[float] = Field(None, alias="control_variance")
    treatment_mean: Optional[float] = Field(None, alias="treatment_mean")
    treatment_variance_type: Optional[VarianceType] = Field(None, alias="treatment_variance_type")
    treatment_variance: Optional[float] = Field(None, alias="treatment_variance")
    developmental_stage: Optional[str] = Field(None, alias="developmental_stage")
    duration_expt: Optional[str] = Field(None, alias="duration_expt")
    acclimatisation: Optional[str] = Field(None, alias="acclimatisation")
    notes: Optional[str] = Field(None, alias="notes")

    @field_validator("study", "species", "family", "stressor")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("year", mode="before")
    @classmethod
    def _integral_year(cls, v: Any) -> Any:
        """Accept '2015' and '2015.0' but not '2015.5'."""
        if isinstance(v, str):
            number = float(v)
            if not number.is_integer():
                raise ValueError(f"Year must be a whole number, got {v!r}")
            return int(number)
        return v

    @field_validator("control_variance_type", "treatment_variance_type", mode="before")
    @classmethod
    def _variance_type(cls, v: Any) -> Optional[VarianceType]:
        return parse_variance_type(v)


# Column headers of the source table, in file order.
REQUIRED_COLUMNS: List[str] = [
    field.alias for field in ExperimentRecord.model_fields.values()  # type: ignore[misc]
]
