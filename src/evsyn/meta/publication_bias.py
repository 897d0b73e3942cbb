"""Publication bias assessment.

This module defines :class:`PublicationBiasEngine`, which looks for
small-study effects in a set of study estimates using:

* Egger's regression test (Egger et al., 1997): OLS of the standardised
  effect on precision; a non-zero intercept signals funnel asymmetry.
* Begg's rank correlation test (Begg & Mazumdar, 1994): Kendall's tau
  between effect sizes and their variances.
* Trim-and-fill (Duval & Tweedie, 2000): estimates how many studies are
  missing from one side of the funnel and imputes their mirror images to
  give a bias-adjusted pooled effect.

It also prepares funnel plot data.  Drawing the plot (and its pseudo
confidence contours) is left to the caller.
"""

from __future__ import annotations

import math
from typing import List, Literal, Optional, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

from ..config.settings import ScoringSettings, settings
from ..core.errors import DegenerateInput, InsufficientData
from ..core.models import StudyEffect
from ..stats.confidence import ConfidenceScorer
from ..stats.special import TCdfMethod, two_sided_normal_p, two_sided_t_p
from ..utils.logging import get_logger
from .heterogeneity import fixed_effect_estimate, inverse_variance_weights
from .normalizer import EffectSizeNormalizer

logger = get_logger(__name__)

MIN_STUDIES_FOR_TESTS = 3
MIN_STUDIES_FOR_POWER = 10
MAX_TRIM_ITERATIONS = 100
# Relative size below which regression and centring leftovers are zero
ROUNDOFF_TOLERANCE = 1e-12

AssessmentConfidence = Literal["low", "moderate", "high"]
FunnelSide = Literal["left", "right"]


class EggersTestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    intercept: float
    se_intercept: float
    t_statistic: float
    p_value: float = Field(ge=0.0, le=1.0)
    df: int
    interpretation: str

    @classmethod
    def degenerate(cls, reason: str) -> "EggersTestResult":
        return cls(
            intercept=0.0,
            se_intercept=0.0,
            t_statistic=0.0,
            p_value=1.0,
            df=0,
            interpretation=reason,
        )


class BeggsTestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    tau: float
    z_statistic: float
    p_value: float = Field(ge=0.0, le=1.0)
    interpretation: str

    @classmethod
    def degenerate(cls, reason: str) -> "BeggsTestResult":
        return cls(tau=0.0, z_statistic=0.0, p_value=1.0, interpretation=reason)


class ImputedStudy(BaseModel):
    model_config = ConfigDict(frozen=True)

    study_id: str
    effect_size: float
    standard_error: float


class TrimAndFillResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    n_trimmed: int = Field(ge=0)
    side: FunnelSide
    adjusted_effect: float
    adjusted_ci_lower: float
    adjusted_ci_upper: float
    original_effect: float
    imputed_studies: List[ImputedStudy] = Field(default_factory=list)
    interpretation: str


class FunnelPlotPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    study_id: str
    effect_size: float
    standard_error: float
    precision: float
    imputed: bool = False


class FunnelPlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    studies: List[FunnelPlotPoint]
    pooled_effect: float

    def to_frame(self) -> pd.DataFrame:
        """Return one row per point, ready for a plotting collaborator."""
        return pd.DataFrame([point.model_dump() for point in self.studies])


class OverallBiasAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    bias_detected: bool
    confidence: AssessmentConfidence
    interpretation: str


class BiasResult(BaseModel):
    """Outcome of a publication bias assessment."""

    model_config = ConfigDict(frozen=True)

    n_studies: int
    eggers_test: EggersTestResult
    beggs_test: BeggsTestResult
    trim_and_fill: Optional[TrimAndFillResult] = None
    funnel_plot: FunnelPlot
    overall_assessment: OverallBiasAssessment
    confidence: float
    warnings: List[str] = Field(default_factory=list)


def rank_data(values: Sequence[float]) -> np.ndarray:
    """1-based ranks, ties receiving the average of the ranks they span."""
    values = np.asarray(values, dtype=float)
    order = np.argsort(values, kind="mergesort")
    ranks = np.empty(len(values), dtype=float)
    i = 0
    while i < len(order):
        j = i
        while j < len(order) and values[order[j]] == values[order[i]]:
            j += 1
        ranks[order[i:j]] = (i + j + 1) / 2.0
        i = j
    return ranks


def _significance_text(p_value: float, finding: str, absent: str) -> str:
    if p_value < 0.05:
        return f"Significant {finding} detected (p < 0.05), suggesting possible publication bias"
    if p_value < 0.10:
        return f"Borderline {finding} (p < 0.10), publication bias possible"
    return f"No significant {absent} detected (p ≥ 0.10)"


def egger_test(
    effects: np.ndarray,
    ses: np.ndarray,
    t_cdf_method: TCdfMethod = "continued_fraction",
) -> EggersTestResult:
    """Egger's regression test for funnel plot asymmetry.

    Regresses ``effect / se`` on ``1 / se`` by ordinary least squares.

    Raises:
        DegenerateInput: With fewer than three studies or when every
            study has the same precision.
    """
    n = len(effects)
    if n < MIN_STUDIES_FOR_TESTS:
        raise DegenerateInput("Insufficient studies (<3) for Egger's test", n_studies=n, required=3)
    precision = 1.0 / ses
    standardized = effects / ses
    mean_x = float(np.mean(precision))
    mean_y = float(np.mean(standardized))
    dx = precision - mean_x
    sxx = float(np.sum(dx ** 2))
    if sxx <= 1e-12 * float(np.sum(precision ** 2)):
        raise DegenerateInput(
            "All studies share the same precision - Egger's test is undefined",
            n_studies=n,
            required=3,
        )
    slope = float(np.sum(dx * (standardized - mean_y))) / sxx
    intercept = mean_y - slope * mean_x

    residuals = standardized - (intercept + slope * precision)
    df = n - 2
    rss = float(np.sum(residuals ** 2))
    # Round-off below the data's own scale counts as an exact zero
    if abs(intercept) <= ROUNDOFF_TOLERANCE * float(np.max(np.abs(standardized))):
        intercept = 0.0
    if rss <= ROUNDOFF_TOLERANCE * float(np.sum(standardized ** 2)):
        se_intercept = 0.0
    else:
        se_intercept = math.sqrt(rss / df * float(np.sum(precision ** 2)) / (n * sxx))

    if se_intercept > 0:
        t_statistic = intercept / se_intercept
    elif intercept != 0.0:
        # Perfect fit with a non-zero intercept
        t_statistic = math.copysign(math.inf, intercept)
    else:
        t_statistic = 0.0
    p_value = two_sided_t_p(t_statistic, df, t_cdf_method)

    return EggersTestResult(
        intercept=intercept,
        se_intercept=se_intercept,
        t_statistic=t_statistic,
        p_value=p_value,
        df=df,
        interpretation=_significance_text(p_value, "asymmetry", "asymmetry"),
    )


def begg_test(effects: np.ndarray, ses: np.ndarray) -> BeggsTestResult:
    """Begg's rank correlation between effect sizes and variances.

    Raises:
        DegenerateInput: With fewer than three studies.
    """
    n = len(effects)
    if n < MIN_STUDIES_FOR_TESTS:
        raise DegenerateInput("Insufficient studies (<3) for Begg's test", n_studies=n, required=3)
    effect_ranks = rank_data(effects)
    variance_ranks = rank_data(ses ** 2)

    concordant = 0
    discordant = 0
    for i in range(n):
        for j in range(i + 1, n):
            product = (effect_ranks[i] - effect_ranks[j]) * (variance_ranks[i] - variance_ranks[j])
            if product > 0:
                concordant += 1
            elif product < 0:
                discordant += 1

    tau = (concordant - discordant) / (n * (n - 1) / 2.0)
    variance = (2.0 * (2 * n + 5)) / (9.0 * n * (n - 1))
    z_statistic = tau / math.sqrt(variance)
    p_value = two_sided_normal_p(z_statistic)

    return BeggsTestResult(
        tau=tau,
        z_statistic=z_statistic,
        p_value=p_value,
        interpretation=_significance_text(p_value, "correlation", "correlation"),
    )


def trim_and_fill(
    study_ids: Sequence[str],
    effects: np.ndarray,
    ses: np.ndarray,
    side: FunnelSide = "left",
    max_iterations: int = MAX_TRIM_ITERATIONS,
) -> TrimAndFillResult:
    """Duval & Tweedie trim-and-fill with the L0 estimator.

    ``side`` names the side of the funnel where studies are presumed
    missing.  Pooling uses the fixed-effect model throughout.

    Raises:
        DegenerateInput: With fewer than three studies.
    """
    k = len(effects)
    if k < MIN_STUDIES_FOR_TESTS:
        raise DegenerateInput("Insufficient studies (<3) for trim-and-fill", n_studies=k, required=3)

    # Work as if studies are missing on the left; flip back at the end.
    sign = 1.0 if side == "left" else -1.0
    order = np.argsort(sign * effects, kind="mergesort")
    y = sign * effects[order]
    se = ses[order]
    w = inverse_variance_weights(se)
    ids = [study_ids[i] for i in order]
    scale = float(np.max(np.abs(y)))

    k0 = 0
    previous = -1
    iterations = 0
    while k0 != previous and iterations < max_iterations:
        previous = k0
        iterations += 1
        center = fixed_effect_estimate(y[: k - k0], w[: k - k0])
        centered = y - center
        centered[np.abs(centered) <= ROUNDOFF_TOLERANCE * scale] = 0.0
        ranks = rank_data(np.abs(centered))
        positive_rank_sum = float(np.sum(ranks[centered > 0]))
        estimate = (4.0 * positive_rank_sum - k * (k + 1)) / (2.0 * k - 1.0)
        k0 = min(max(0, int(round(estimate))), k - 1)

    center = fixed_effect_estimate(y[: k - k0], w[: k - k0])
    imputed_y = 2.0 * center - y[k - k0:]
    imputed_se = se[k - k0:]
    filled_y = np.concatenate([y, imputed_y])
    filled_w = np.concatenate([w, inverse_variance_weights(imputed_se)])
    adjusted = fixed_effect_estimate(filled_y, filled_w)
    adjusted_se = math.sqrt(1.0 / float(np.sum(filled_w)))
    original = fixed_effect_estimate(effects, inverse_variance_weights(ses))

    bounds = sorted((sign * (adjusted - 1.96 * adjusted_se), sign * (adjusted + 1.96 * adjusted_se)))
    imputed = [
        ImputedStudy(
            study_id=f"{study_id}_filled",
            effect_size=float(sign * value),
            standard_error=float(error),
        )
        for study_id, value, error in zip(ids[k - k0:], imputed_y, imputed_se)
    ]
    if k0 == 0:
        interpretation = "No studies imputed; the funnel plot appears symmetric."
    else:
        interpretation = (
            f"{k0} study(ies) estimated missing on the {side} side. "
            f"Adjusted effect {sign * adjusted:.4f} versus original {original:.4f}."
        )
    return TrimAndFillResult(
        n_trimmed=k0,
        side=side,
        adjusted_effect=float(sign * adjusted),
        adjusted_ci_lower=float(bounds[0]),
        adjusted_ci_upper=float(bounds[1]),
        original_effect=original,
        imputed_studies=imputed,
        interpretation=interpretation,
    )


def funnel_plot_data(
    studies: Sequence[StudyEffect],
    pooled_effect: float,
    imputed: Sequence[ImputedStudy] = (),
) -> FunnelPlot:
    points = [
        FunnelPlotPoint(
            study_id=s.study_id,
            effect_size=s.effect_size,
            standard_error=s.standard_error,  # type: ignore[arg-type]
            precision=1.0 / s.standard_error,  # type: ignore[operator]
        )
        for s in studies
    ]
    points.extend(
        FunnelPlotPoint(
            study_id=s.study_id,
            effect_size=s.effect_size,
            standard_error=s.standard_error,
            precision=1.0 / s.standard_error,
            imputed=True,
        )
        for s in imputed
    )
    return FunnelPlot(studies=points, pooled_effect=pooled_effect)


class PublicationBiasEngine:
    """Run Egger's, Begg's and trim-and-fill analyses and combine them."""

    def __init__(
        self,
        scoring: Optional[ScoringSettings] = None,
        alpha: Optional[float] = None,
        t_cdf_method: Optional[TCdfMethod] = None,
        include_trim_and_fill: bool = True,
    ) -> None:
        self.scoring = scoring
        self.alpha = settings.bias_alpha if alpha is None else alpha
        self.t_cdf_method = t_cdf_method or settings.t_cdf_method
        self.include_trim_and_fill = include_trim_and_fill
        self.normalizer = EffectSizeNormalizer()

    def assess(
        self,
        studies: Sequence[StudyEffect],
        pooled_effect: Optional[float] = None,
    ) -> BiasResult:
        """Assess publication bias.

        Args:
            studies: Study effects carrying a standard error or a 95% CI.
            pooled_effect: Pooled estimate drawn at the centre of the
                funnel.  Defaults to the fixed-effect estimate.

        Raises:
            InsufficientData: If ``studies`` is empty.
        """
        if not studies:
            logger.error("No studies provided for publication bias assessment")
            raise InsufficientData("No studies provided for publication bias assessment")
        logger.info("Assessing publication bias", extra={"n_studies": len(studies)})

        normalized = self.normalizer.normalize(studies)
        n = len(normalized)
        effects = np.array([s.effect_size for s in normalized], dtype=float)
        ses = np.array([s.standard_error for s in normalized], dtype=float)
        if pooled_effect is None:
            pooled_effect = fixed_effect_estimate(effects, inverse_variance_weights(ses))

        scorer = ConfidenceScorer(self.scoring)
        if n < MIN_STUDIES_FOR_TESTS:
            scorer.severe("Very few studies (<3) - publication bias tests have low power")
        elif n < MIN_STUDIES_FOR_POWER:
            scorer.minor("Few studies (<10) - publication bias tests may have low power")

        try:
            eggers = egger_test(effects, ses, self.t_cdf_method)
        except DegenerateInput as exc:
            logger.warning(str(exc), extra={"n_studies": n})
            scorer.warn(str(exc))
            eggers = EggersTestResult.degenerate(str(exc))
        try:
            beggs = begg_test(effects, ses)
        except DegenerateInput as exc:
            logger.warning(str(exc), extra={"n_studies": n})
            scorer.warn(str(exc))
            beggs = BeggsTestResult.degenerate(str(exc))

        trim_fill: Optional[TrimAndFillResult] = None
        if self.include_trim_and_fill:
            side: FunnelSide = "right" if eggers.intercept < 0 else "left"
            try:
                trim_fill = trim_and_fill([s.study_id for s in normalized], effects, ses, side)
            except DegenerateInput as exc:
                scorer.warn(str(exc))

        egger_significant = eggers.p_value < self.alpha
        begg_significant = beggs.p_value < self.alpha
        if egger_significant and begg_significant:
            bias_detected = True
            level: AssessmentConfidence = "high"
            interpretation = (
                "Both Egger's and Begg's tests suggest publication bias. "
                "Results should be interpreted with caution."
            )
        elif egger_significant or begg_significant:
            bias_detected = True
            level = "moderate"
            interpretation = "One test suggests possible publication bias. Consider sensitivity analysis."
        else:
            bias_detected = False
            level = "moderate"
            interpretation = (
                "No strong evidence of publication bias detected. "
                "However, absence of evidence is not evidence of absence."
            )
        if n < MIN_STUDIES_FOR_POWER:
            level = "low"
            interpretation += " Note: Low power due to small number of studies."

        if egger_significant != begg_significant:
            scorer.minor("Egger's and Begg's tests give conflicting results")

        result = BiasResult(
            n_studies=n,
            eggers_test=eggers,
            beggs_test=beggs,
            trim_and_fill=trim_fill,
            funnel_plot=funnel_plot_data(
                normalized, pooled_effect, trim_fill.imputed_studies if trim_fill else ()
            ),
            overall_assessment=OverallBiasAssessment(
                bias_detected=bias_detected,
                confidence=level,
                interpretation=interpretation,
            ),
            confidence=scorer.score(),
            warnings=scorer.warnings,
        )
        logger.info(
            "Publication bias assessment complete",
            extra={
                "bias_detected": bias_detected,
                "eggers_p": eggers.p_value,
                "beggs_p": beggs.p_value,
                "confidence": result.confidence,
            },
        )
        return result


def assess_publication_bias(
    studies: Sequence[StudyEffect], pooled_effect: Optional[float] = None
) -> BiasResult:
    return PublicationBiasEngine().assess(studies, pooled_effect)
