"""Effect sizes computed from primary study summary data.

Binary outcomes reported as 2×2 event counts yield an odds ratio (OR),
risk ratio (RR) or risk difference (RD).  Continuous outcomes reported
as group means and standard deviations yield a mean difference (MD) or
a standardised mean difference (SMD, Hedges' g).

Ratio measures are analysed on the log scale: ``standard_error`` holds
the SE of the log ratio and :meth:`EffectSizeResult.to_study_effect`
hands the log estimate to the synthesis engines.
"""

from __future__ import annotations

import math
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..config.settings import ScoringSettings
from ..core.errors import InvalidEffectSpecification
from ..core.models import StudyEffect
from ..stats.confidence import ConfidenceScorer
from ..utils.logging import get_logger

logger = get_logger(__name__)

Z_95 = 1.96
CONTINUITY_CORRECTION = 0.5
SMALL_SAMPLE = 30
MODERATE_SAMPLE = 100

BinaryMeasure = Literal["OR", "RR", "RD"]
ContinuousMeasure = Literal["MD", "SMD"]
EffectMeasure = Literal["OR", "RR", "RD", "MD", "SMD"]

RATIO_MEASURES = ("OR", "RR")


class BinaryData(BaseModel):
    """Event counts for the intervention and control arms."""

    model_config = ConfigDict(frozen=True)

    events_intervention: int = Field(..., ge=0)
    total_intervention: int = Field(..., gt=0)
    events_control: int = Field(..., ge=0)
    total_control: int = Field(..., gt=0)

    @model_validator(mode="after")
    def _events_within_totals(self) -> "BinaryData":
        if self.events_intervention > self.total_intervention:
            raise ValueError("events_intervention cannot exceed total_intervention")
        if self.events_control > self.total_control:
            raise ValueError("events_control cannot exceed total_control")
        return self

    @property
    def total(self) -> int:
        return self.total_intervention + self.total_control

    @property
    def has_zero_cell(self) -> bool:
        return 0 in (
            self.events_intervention,
            self.events_control,
            self.total_intervention - self.events_intervention,
            self.total_control - self.events_control,
        )


class ContinuousData(BaseModel):
    """Group means, standard deviations and sizes for two arms."""

    model_config = ConfigDict(frozen=True)

    mean_intervention: float = Field(..., allow_inf_nan=False)
    sd_intervention: float = Field(..., gt=0.0, allow_inf_nan=False)
    n_intervention: int = Field(..., ge=1)
    mean_control: float = Field(..., allow_inf_nan=False)
    sd_control: float = Field(..., gt=0.0, allow_inf_nan=False)
    n_control: int = Field(..., ge=1)

    @property
    def total(self) -> int:
        return self.n_intervention + self.n_control


class EffectSizeResult(BaseModel):
    """A single study's effect estimate with its 95% confidence interval."""

    model_config = ConfigDict(frozen=True)

    measure: EffectMeasure
    effect_size: float
    ci_lower: float
    ci_upper: float
    standard_error: float = Field(gt=0.0)
    weight: float
    log_effect_size: Optional[float] = None
    continuity_correction_applied: bool = False
    sample_size_total: int
    details: Dict[str, float] = Field(default_factory=dict)
    confidence: float
    warnings: List[str] = Field(default_factory=list)

    @property
    def is_ratio(self) -> bool:
        return self.measure in RATIO_MEASURES

    def to_study_effect(self, study_id: str) -> StudyEffect:
        """Study record on the analysis scale (log scale for OR and RR)."""
        effect = self.log_effect_size if self.is_ratio else self.effect_size
        return StudyEffect(
            study_id=study_id,
            effect_size=effect,
            standard_error=self.standard_error,
            sample_size=self.sample_size_total,
        )


def _score_sample_size(scorer: ConfidenceScorer, total: int) -> None:
    if total < SMALL_SAMPLE:
        scorer.major("Small sample size (<30 total participants)")
    elif total < MODERATE_SAMPLE:
        scorer.minor("Moderate sample size (<100 total participants)")


def _corrected_counts(data: BinaryData, scorer: ConfidenceScorer):
    a = float(data.events_intervention)
    n1 = float(data.total_intervention)
    c = float(data.events_control)
    n2 = float(data.total_control)
    if not data.has_zero_cell:
        return a, n1, c, n2, False
    scorer.minor("Continuity correction (0.5) applied due to zero cells")
    return (
        a + CONTINUITY_CORRECTION,
        n1 + 2 * CONTINUITY_CORRECTION,
        c + CONTINUITY_CORRECTION,
        n2 + 2 * CONTINUITY_CORRECTION,
        True,
    )


def _ratio_result(
    measure: BinaryMeasure,
    data: BinaryData,
    log_ratio: float,
    log_se: float,
    corrected: bool,
    scorer: ConfidenceScorer,
) -> EffectSizeResult:
    ci_lower = math.exp(log_ratio - Z_95 * log_se)
    ci_upper = math.exp(log_ratio + Z_95 * log_se)
    _score_sample_size(scorer, data.total)
    if ci_upper / ci_lower > 10:
        scorer.minor("Very wide confidence interval (ratio > 10)")
    return EffectSizeResult(
        measure=measure,
        effect_size=math.exp(log_ratio),
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        standard_error=log_se,
        weight=1.0 / log_se ** 2,
        log_effect_size=log_ratio,
        continuity_correction_applied=corrected,
        sample_size_total=data.total,
        details={
            "risk_intervention": data.events_intervention / data.total_intervention,
            "risk_control": data.events_control / data.total_control,
        },
        confidence=scorer.score(),
        warnings=scorer.warnings,
    )


def odds_ratio(data: BinaryData, scoring: Optional[ScoringSettings] = None) -> EffectSizeResult:
    """Odds ratio with a Woolf (log-scale) confidence interval."""
    scorer = ConfidenceScorer(scoring)
    a, n1, c, n2, corrected = _corrected_counts(data, scorer)
    b = n1 - a
    d = n2 - c
    log_or = math.log((a * d) / (c * b))
    log_se = math.sqrt(1.0 / a + 1.0 / b + 1.0 / c + 1.0 / d)
    return _ratio_result("OR", data, log_or, log_se, corrected, scorer)


def risk_ratio(data: BinaryData, scoring: Optional[ScoringSettings] = None) -> EffectSizeResult:
    """Risk ratio with a log-scale confidence interval."""
    scorer = ConfidenceScorer(scoring)
    a, n1, c, n2, corrected = _corrected_counts(data, scorer)
    log_rr = math.log((a / n1) / (c / n2))
    log_se = math.sqrt(1.0 / a - 1.0 / n1 + 1.0 / c - 1.0 / n2)
    return _ratio_result("RR", data, log_rr, log_se, corrected, scorer)


def risk_difference(data: BinaryData, scoring: Optional[ScoringSettings] = None) -> EffectSizeResult:
    """Risk difference ``p1 - p2``; no continuity correction is applied.

    Raises:
        InvalidEffectSpecification: When every risk is 0 or 1, which
            leaves the difference with a zero standard error.
    """
    scorer = ConfidenceScorer(scoring)
    p1 = data.events_intervention / data.total_intervention
    p2 = data.events_control / data.total_control
    rd = p1 - p2
    se = math.sqrt(p1 * (1 - p1) / data.total_intervention + p2 * (1 - p2) / data.total_control)
    if se == 0:
        raise InvalidEffectSpecification("risk difference has zero standard error (all risks are 0 or 1)")
    ci_lower = rd - Z_95 * se
    ci_upper = rd + Z_95 * se

    _score_sample_size(scorer, data.total)
    if ci_upper - ci_lower > 0.5:
        scorer.minor("Wide confidence interval (>0.5 absolute difference)")
    if data.has_zero_cell:
        scorer.minor("Zero cells present (no continuity correction applied for RD)")

    return EffectSizeResult(
        measure="RD",
        effect_size=rd,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        standard_error=se,
        weight=1.0 / se ** 2,
        sample_size_total=data.total,
        details={"risk_intervention": p1, "risk_control": p2},
        confidence=scorer.score(),
        warnings=scorer.warnings,
    )


def _score_variance_ratio(data: ContinuousData, scorer: ConfidenceScorer) -> float:
    ratio = data.sd_intervention / data.sd_control
    if ratio > 2 or ratio < 0.5:
        scorer.minor(f"Unequal variances detected (ratio: {ratio:.2f})")
    return ratio


def mean_difference(data: ContinuousData, scoring: Optional[ScoringSettings] = None) -> EffectSizeResult:
    """Raw difference in means with a normal-theory 95% CI."""
    scorer = ConfidenceScorer(scoring)
    md = data.mean_intervention - data.mean_control
    se = math.sqrt(
        data.sd_intervention ** 2 / data.n_intervention + data.sd_control ** 2 / data.n_control
    )
    ci_lower = md - Z_95 * se
    ci_upper = md + Z_95 * se

    ratio = _score_variance_ratio(data, scorer)
    _score_sample_size(scorer, data.total)
    mean_scale = abs(data.mean_intervention) + abs(data.mean_control)
    if mean_scale > 0 and (ci_upper - ci_lower) / mean_scale > 1:
        scorer.minor("Wide confidence interval relative to mean values")

    return EffectSizeResult(
        measure="MD",
        effect_size=md,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        standard_error=se,
        weight=1.0 / se ** 2,
        sample_size_total=data.total,
        details={
            "mean_intervention": data.mean_intervention,
            "mean_control": data.mean_control,
            "variance_ratio": ratio,
        },
        confidence=scorer.score(),
        warnings=scorer.warnings,
    )


def hedges_correction(total_n: int) -> float:
    """Small-sample correction ``J = 1 - 3 / (4 * (N - 2) - 1)``."""
    return 1.0 - 3.0 / (4.0 * (total_n - 2) - 1.0)


def standardized_mean_difference(
    data: ContinuousData, scoring: Optional[ScoringSettings] = None
) -> EffectSizeResult:
    """Hedges' g: Cohen's d on the pooled SD, shrunk by :func:`hedges_correction`.

    Raises:
        InvalidEffectSpecification: With fewer than four participants in
            total, where the correction factor is not positive.
    """
    n1 = data.n_intervention
    n2 = data.n_control
    if n1 + n2 < 4:
        raise InvalidEffectSpecification("standardised mean difference needs at least 4 participants")
    scorer = ConfidenceScorer(scoring)
    pooled_sd = math.sqrt(
        ((n1 - 1) * data.sd_intervention ** 2 + (n2 - 1) * data.sd_control ** 2) / (n1 + n2 - 2)
    )
    cohens_d = (data.mean_intervention - data.mean_control) / pooled_sd
    correction = hedges_correction(n1 + n2)
    g = cohens_d * correction
    se = math.sqrt((n1 + n2) / (n1 * n2) + g ** 2 / (2.0 * (n1 + n2)))
    ci_lower = g - Z_95 * se
    ci_upper = g + Z_95 * se

    ratio = _score_variance_ratio(data, scorer)
    _score_sample_size(scorer, data.total)
    if ci_upper - ci_lower > 2:
        scorer.minor("Wide confidence interval (>2 SD units)")
    if abs(cohens_d - g) > 0.05:
        scorer.warn(
            f"Small sample correction applied (Cohen's d: {cohens_d:.3f}, Hedges' g: {g:.3f})"
        )

    return EffectSizeResult(
        measure="SMD",
        effect_size=g,
        ci_lower=ci_lower,
        ci_upper=ci_upper,
        standard_error=se,
        weight=1.0 / se ** 2,
        sample_size_total=data.total,
        details={
            "cohens_d": cohens_d,
            "pooled_sd": pooled_sd,
            "correction_factor": correction,
            "variance_ratio": ratio,
        },
        confidence=scorer.score(),
        warnings=scorer.warnings,
    )


def binary_effect_size(
    data: BinaryData,
    measure: BinaryMeasure = "OR",
    scoring: Optional[ScoringSettings] = None,
) -> EffectSizeResult:
    """Dispatch a 2×2 table to the calculator for ``measure``."""
    calculators = {"OR": odds_ratio, "RR": risk_ratio, "RD": risk_difference}
    if measure not in calculators:
        raise ValueError(f"Unknown binary effect measure: {measure}")
    result = calculators[measure](data, scoring)
    logger.debug(
        "Computed binary effect size",
        extra={"measure": measure, "effect_size": result.effect_size, "confidence": result.confidence},
    )
    return result


def continuous_effect_size(
    data: ContinuousData,
    measure: ContinuousMeasure = "SMD",
    scoring: Optional[ScoringSettings] = None,
) -> EffectSizeResult:
    """Dispatch two-arm summary statistics to the calculator for ``measure``."""
    calculators = {"MD": mean_difference, "SMD": standardized_mean_difference}
    if measure not in calculators:
        raise ValueError(f"Unknown continuous effect measure: {measure}")
    result = calculators[measure](data, scoring)
    logger.debug(
        "Computed continuous effect size",
        extra={"measure": measure, "effect_size": result.effect_size, "confidence": result.confidence},
    )
    return result
