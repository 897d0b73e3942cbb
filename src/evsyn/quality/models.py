"""Models for GRADE evidence-quality assessment.

GRADE rates the certainty of a body of evidence on a four-level ordinal
scale.  The rating starts from the study design, moves down for each of
five fixed concerns (``Downgrading``) and, for observational evidence
only, up for three fixed strengths (``Upgrading``).  Both factor sets are
fixed records rather than mappings so every category is always present.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar, Iterator, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class StudyDesign(str, Enum):
    """Design of the body of evidence, which fixes the starting quality."""

    RANDOMIZED_TRIAL = "randomized_trial"
    OBSERVATIONAL = "observational"
    CASE_SERIES = "case_series"
    CASE_REPORT = "case_report"


class QualityLevel(str, Enum):
    """Ordinal GRADE quality, lowest first."""

    VERY_LOW = "very_low"
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return QUALITY_ORDER.index(self)

    @classmethod
    def from_index(cls, index: int) -> "QualityLevel":
        return QUALITY_ORDER[max(0, min(len(QUALITY_ORDER) - 1, index))]

    def shift(self, levels: int) -> "QualityLevel":
        """Move ``levels`` steps up (positive) or down, clamped to the scale."""
        return QualityLevel.from_index(self.rank + levels)


QUALITY_ORDER: Tuple[QualityLevel, ...] = (
    QualityLevel.VERY_LOW,
    QualityLevel.LOW,
    QualityLevel.MODERATE,
    QualityLevel.HIGH,
)


class DowngradeSeverity(str, Enum):
    NONE = "none"
    SERIOUS = "serious"
    VERY_SERIOUS = "very_serious"

    @property
    def levels(self) -> int:
        return {"none": 0, "serious": 1, "very_serious": 2}[self.value]


class UpgradeLevel(str, Enum):
    NONE = "none"
    ONE_LEVEL = "one_level"
    TWO_LEVELS = "two_levels"

    @property
    def levels(self) -> int:
        return {"none": 0, "one_level": 1, "two_levels": 2}[self.value]


class DowngradeCategory(str, Enum):
    RISK_OF_BIAS = "risk_of_bias"
    INCONSISTENCY = "inconsistency"
    INDIRECTNESS = "indirectness"
    IMPRECISION = "imprecision"
    PUBLICATION_BIAS = "publication_bias"


class UpgradeCategory(str, Enum):
    LARGE_EFFECT = "large_effect"
    DOSE_RESPONSE = "dose_response"
    CONFOUNDERS = "confounders"


class DowngradeFactor(BaseModel):
    """A single reason to rate the evidence down."""

    model_config = ConfigDict(frozen=True)

    category: ClassVar[DowngradeCategory]
    label: ClassVar[str]

    downgrade: DowngradeSeverity = DowngradeSeverity.NONE
    rationale: str = ""

    @property
    def severity(self) -> DowngradeSeverity:
        return self.downgrade


class RiskOfBias(DowngradeFactor):
    category: ClassVar[DowngradeCategory] = DowngradeCategory.RISK_OF_BIAS
    label: ClassVar[str] = "risk of bias"

    overall_risk: Literal["low", "unclear", "high"] = "low"
    evidence: List[str] = Field(default_factory=list)


class Inconsistency(DowngradeFactor):
    category: ClassVar[DowngradeCategory] = DowngradeCategory.INCONSISTENCY
    label: ClassVar[str] = "inconsistency"

    i_squared: Optional[float] = Field(None, ge=0.0, le=100.0)
    ci_overlap: bool = True
    point_estimates_similar: bool = True


class Indirectness(DowngradeFactor):
    category: ClassVar[DowngradeCategory] = DowngradeCategory.INDIRECTNESS
    label: ClassVar[str] = "indirectness"

    population_match: bool = True
    intervention_match: bool = True
    comparison_match: bool = True
    outcome_match: bool = True


class Imprecision(DowngradeFactor):
    category: ClassVar[DowngradeCategory] = DowngradeCategory.IMPRECISION
    label: ClassVar[str] = "imprecision"

    adequate_sample_size: bool = True
    ci_width: Optional[Literal["narrow", "wide", "very_wide"]] = None
    crosses_null: bool = False
    ois_met: bool = True


class PublicationBiasConcern(DowngradeFactor):
    category: ClassVar[DowngradeCategory] = DowngradeCategory.PUBLICATION_BIAS
    label: ClassVar[str] = "publication bias"

    funnel_asymmetry: bool = False
    eggers_significant: Optional[bool] = None
    industry_funded: bool = False


class UpgradeFactor(BaseModel):
    """A single reason to rate observational evidence up."""

    model_config = ConfigDict(frozen=True)

    category: ClassVar[UpgradeCategory]

    upgrade: UpgradeLevel = UpgradeLevel.NONE
    rationale: str = ""

    @property
    def level(self) -> UpgradeLevel:
        return self.upgrade


class LargeEffect(UpgradeFactor):
    category: ClassVar[UpgradeCategory] = UpgradeCategory.LARGE_EFFECT

    effect_magnitude: Literal["small", "moderate", "large", "very_large"] = "small"
    ratio_value: Optional[float] = Field(None, gt=0.0)


class DoseResponse(UpgradeFactor):
    category: ClassVar[UpgradeCategory] = UpgradeCategory.DOSE_RESPONSE

    gradient_present: bool = False


class Confounders(UpgradeFactor):
    category: ClassVar[UpgradeCategory] = UpgradeCategory.CONFOUNDERS

    would_reduce_effect: bool = False


class Downgrading(BaseModel):
    """The five GRADE downgrading domains; all are always present."""

    model_config = ConfigDict(frozen=True)

    risk_of_bias: RiskOfBias = Field(default_factory=RiskOfBias)
    inconsistency: Inconsistency = Field(default_factory=Inconsistency)
    indirectness: Indirectness = Field(default_factory=Indirectness)
    imprecision: Imprecision = Field(default_factory=Imprecision)
    publication_bias: PublicationBiasConcern = Field(default_factory=PublicationBiasConcern)

    def factors(self) -> Iterator[DowngradeFactor]:
        yield self.risk_of_bias
        yield self.inconsistency
        yield self.indirectness
        yield self.imprecision
        yield self.publication_bias

    def total(self) -> int:
        return sum(factor.severity.levels for factor in self.factors())


class Upgrading(BaseModel):
    """The three GRADE upgrading domains for observational evidence."""

    model_config = ConfigDict(frozen=True)

    large_effect: LargeEffect = Field(default_factory=LargeEffect)
    dose_response: DoseResponse = Field(default_factory=DoseResponse)
    confounders: Confounders = Field(default_factory=Confounders)

    def factors(self) -> Iterator[UpgradeFactor]:
        yield self.large_effect
        yield self.dose_response
        yield self.confounders

    def total(self) -> int:
        return sum(factor.level.levels for factor in self.factors())


class RecommendationStrength(str, Enum):
    STRONG = "strong"
    WEAK = "weak"


class RecommendationInputs(BaseModel):
    """Judgements beyond evidence quality that shape a recommendation."""

    model_config = ConfigDict(frozen=True)

    balance_of_benefits_and_harms: Literal["clearly_favors", "probably_favors", "uncertain"]
    values_and_preferences: Literal["consistent", "variable"]
    resource_use: Literal["low", "moderate", "high"]


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    strength: RecommendationStrength
    rationale: str
    reasons: List[str] = Field(default_factory=list)


class GradeResult(BaseModel):
    """Outcome of a GRADE assessment for one outcome."""

    model_config = ConfigDict(frozen=True)

    outcome: str
    study_design: StudyDesign
    starting_quality: QualityLevel
    downgrading: Downgrading
    upgrading: Optional[Upgrading] = None
    total_downgrades: int = Field(ge=0)
    total_upgrades: int = Field(ge=0)
    final_quality: QualityLevel
    quality_explanation: str
    recommendation: Optional[Recommendation] = None
    confidence: float
    warnings: List[str] = Field(default_factory=list)
