"""Core domain models for study effect estimates."""

from typing import Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# Width of a 95% confidence interval in standard errors (2 * 1.96)
CI95_WIDTH_IN_SE = 3.92


class StudyEffect(BaseModel):
    """Effect estimate reported by a single primary study.

    Either ``standard_error`` or both CI bounds must be supplied before
    the study can enter an analysis; :mod:`evsyn.meta.normalizer` enforces
    this and derives the standard error from the interval when needed.
    """

    model_config = ConfigDict(populate_by_name=True)

    study_id: str = Field(..., validation_alias=AliasChoices("study_id", "id"))
    effect_size: float = Field(..., allow_inf_nan=False)
    standard_error: Optional[float] = Field(None, ge=0.0, allow_inf_nan=False)
    ci_lower: Optional[float] = Field(None, allow_inf_nan=False)
    ci_upper: Optional[float] = Field(None, allow_inf_nan=False)
    sample_size: Optional[int] = Field(None, ge=1)

    @property
    def has_standard_error(self) -> bool:
        return self.standard_error is not None and self.standard_error > 0

    @property
    def has_valid_ci(self) -> bool:
        return (
            self.ci_lower is not None
            and self.ci_upper is not None
            and self.ci_lower < self.ci_upper
        )

    @property
    def variance(self) -> Optional[float]:
        if not self.has_standard_error:
            return None
        return self.standard_error ** 2  # type: ignore[operator]

    @property
    def precision(self) -> Optional[float]:
        if not self.has_standard_error:
            return None
        return 1.0 / self.standard_error  # type: ignore[operator]
