"""Between-study heterogeneity assessment.

This module implements :class:`HeterogeneityEngine`, which summarises how
much the effect estimates of a set of studies disagree beyond what
sampling error explains.  It reports Cochran's Q with its chi-square
p-value, I², the DerSimonian–Laird τ², H², a prediction interval for the
effect in a new study and a fixed/random model recommendation.  A
conservative confidence score accompanies every result.

References: Higgins & Thompson (2002); Borenstein et al. (2009);
Cochrane Handbook chapter 10.
"""

from __future__ import annotations

import math
from typing import List, Literal, Optional, Sequence

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from ..config.settings import ScoringSettings
from ..core.errors import DegenerateInput, InsufficientData, InvalidEffectSpecification
from ..core.models import StudyEffect
from ..stats.confidence import ConfidenceScorer
from ..stats.special import INC_GAMMA_SATURATION, chi2_sf
from ..utils.logging import get_logger
from .normalizer import EffectSizeNormalizer

logger = get_logger(__name__)

HeterogeneityLevel = Literal["low", "moderate", "substantial", "considerable"]
ModelType = Literal["fixed", "random"]

# Coarse two-level t quantile for the prediction interval
PREDICTION_T_LARGE_DF = 1.96
PREDICTION_T_SMALL_DF = 2.5
PREDICTION_DF_CUTOFF = 10

RANDOM_EFFECTS_I2_THRESHOLD = 50.0


class PredictionInterval(BaseModel):
    model_config = ConfigDict(frozen=True)

    lower: float
    upper: float


class HeterogeneityResult(BaseModel):
    """Outcome of a heterogeneity assessment."""

    model_config = ConfigDict(frozen=True)

    n_studies: int
    q_statistic: float
    df: int
    q_p_value: float = Field(ge=0.0, le=1.0)
    i_squared: float = Field(ge=0.0, le=100.0)
    i_squared_interpretation: HeterogeneityLevel
    tau_squared: float = Field(ge=0.0)
    tau: float = Field(ge=0.0)
    h_squared: float = Field(ge=1.0)
    prediction_interval: Optional[PredictionInterval] = None
    pooled_effect: Optional[float] = None
    recommended_model: ModelType
    interpretation: str
    confidence: float
    warnings: List[str] = Field(default_factory=list)


def inverse_variance_weights(ses: np.ndarray) -> np.ndarray:
    """Weights ``1 / se²``.

    Raises:
        InvalidEffectSpecification: If a standard error is so small that
            its weight, or the sum of weights, is not finite.
    """
    with np.errstate(divide="ignore", over="ignore"):
        weights = 1.0 / (ses ** 2)
        total = np.sum(weights)
    if not (np.all(np.isfinite(weights)) and np.isfinite(total)):
        raise InvalidEffectSpecification(
            "standard error too small for inverse-variance weighting"
        )
    return weights


def fixed_effect_estimate(effects: np.ndarray, weights: np.ndarray) -> float:
    return float(np.sum(weights * effects) / np.sum(weights))


def q_statistic(effects: np.ndarray, weights: np.ndarray, pooled: float) -> float:
    return float(np.sum(weights * (effects - pooled) ** 2))


def i_squared(q: float, df: int) -> float:
    if df <= 0 or q <= 0:
        return 0.0
    return min(100.0, max(0.0, (q - df) / q * 100.0))


def interpret_i_squared(value: float) -> HeterogeneityLevel:
    if value < 25:
        return "low"
    if value < 50:
        return "moderate"
    if value < 75:
        return "substantial"
    return "considerable"


def tau_squared_dl(q: float, df: int, weights: np.ndarray) -> float:
    """DerSimonian–Laird estimate of between-study variance."""
    if df <= 0 or q <= df:
        return 0.0
    sum_w = float(np.sum(weights))
    # Scale before squaring so large weights cannot overflow
    c = sum_w - float(np.sum(weights * (weights / sum_w)))
    if c <= 0:
        return 0.0
    return max(0.0, (q - df) / c)


def h_squared(q: float, df: int) -> float:
    if df <= 0:
        return 1.0
    return max(1.0, q / df)


def prediction_interval(
    pooled: float, tau2: float, se_pooled: float, df: int
) -> Optional[PredictionInterval]:
    if df <= 0:
        return None
    se_prediction = math.sqrt(se_pooled ** 2 + tau2)
    t_value = PREDICTION_T_LARGE_DF if df > PREDICTION_DF_CUTOFF else PREDICTION_T_SMALL_DF
    return PredictionInterval(
        lower=pooled - t_value * se_prediction,
        upper=pooled + t_value * se_prediction,
    )


def _interpretation(i2: float, level: str, p_value: float) -> str:
    text = f"Heterogeneity is {level} (I² = {i2:.1f}%). "
    if p_value < 0.05:
        text += (
            f"The Q test is statistically significant (p = {p_value:.4f}), "
            "indicating significant heterogeneity. "
        )
    else:
        text += f"The Q test is not statistically significant (p = {p_value:.4f}). "
    if i2 > 75:
        text += (
            "Random-effects model is strongly recommended due to considerable heterogeneity. "
            "Consider subgroup analysis or meta-regression to explore sources of heterogeneity."
        )
    elif i2 > 50:
        text += (
            "Random-effects model is recommended due to substantial heterogeneity. "
            "Consider exploring sources of heterogeneity."
        )
    elif i2 > 25:
        text += "Moderate heterogeneity detected. Either fixed-effect or random-effects model may be appropriate."
    else:
        text += "Low heterogeneity suggests studies are estimating similar effects. Fixed-effect model is appropriate."
    return text


class HeterogeneityEngine:
    """Assess statistical heterogeneity across study effect estimates."""

    def __init__(self, scoring: Optional[ScoringSettings] = None) -> None:
        self.scoring = scoring
        self.normalizer = EffectSizeNormalizer()

    def assess(self, studies: Sequence[StudyEffect]) -> HeterogeneityResult:
        """Compute Q, I², τ², H², the prediction interval and a model choice.

        Args:
            studies: Study effects carrying a standard error or a 95% CI.

        Returns:
            A frozen :class:`HeterogeneityResult`.

        Raises:
            InsufficientData: If ``studies`` is empty.
            InvalidEffectSpecification: If a study lacks both SE and CI, or
                a standard error is too small to weight.
        """
        if not studies:
            logger.error("No studies provided for heterogeneity assessment")
            raise InsufficientData("No studies provided for heterogeneity assessment")
        logger.info("Assessing heterogeneity", extra={"n_studies": len(studies)})
        normalized = self.normalizer.normalize(studies)
        try:
            result = self._assess(normalized)
        except DegenerateInput as exc:
            logger.warning(str(exc), extra={"n_studies": exc.n_studies})
            result = self._single_study_result(normalized[0], str(exc))
        logger.info(
            "Heterogeneity assessment complete",
            extra={
                "i_squared": result.i_squared,
                "q_p_value": result.q_p_value,
                "recommended_model": result.recommended_model,
                "confidence": result.confidence,
            },
        )
        return result

    def _single_study_result(self, study: StudyEffect, warning: str) -> HeterogeneityResult:
        scorer = ConfidenceScorer(self.scoring)
        scorer.major(warning)
        return HeterogeneityResult(
            n_studies=1,
            q_statistic=0.0,
            df=0,
            q_p_value=1.0,
            i_squared=0.0,
            i_squared_interpretation="low",
            tau_squared=0.0,
            tau=0.0,
            h_squared=1.0,
            pooled_effect=study.effect_size,
            recommended_model="fixed",
            interpretation="Only one study available. Heterogeneity cannot be assessed.",
            confidence=scorer.score(),
            warnings=scorer.warnings,
        )

    def _assess(self, studies: List[StudyEffect]) -> HeterogeneityResult:
        k = len(studies)
        if k < 2:
            raise DegenerateInput(
                "Only one study - heterogeneity cannot be assessed", n_studies=k, required=2
            )
        effects = np.array([s.effect_size for s in studies], dtype=float)
        ses = np.array([s.standard_error for s in studies], dtype=float)
        weights = inverse_variance_weights(ses)

        pooled = fixed_effect_estimate(effects, weights)
        q = q_statistic(effects, weights, pooled)
        if not math.isfinite(q):
            raise InvalidEffectSpecification("Q statistic overflows; check the effect sizes and standard errors")
        df = k - 1
        p_value = chi2_sf(q, df)
        i2 = i_squared(q, df)
        level = interpret_i_squared(i2)
        tau2 = tau_squared_dl(q, df, weights)
        h2 = h_squared(q, df)
        se_pooled = math.sqrt(1.0 / float(np.sum(weights)))
        interval = prediction_interval(pooled, tau2, se_pooled, df)
        model: ModelType = "random" if i2 > RANDOM_EFFECTS_I2_THRESHOLD else "fixed"

        scorer = ConfidenceScorer(self.scoring)
        if k < 3:
            scorer.major("Very few studies (<3) - heterogeneity estimates may be unreliable")
        elif k < 5:
            scorer.minor("Few studies (<5) - heterogeneity estimates have wide uncertainty")
        if 0.05 <= p_value < 0.10:
            scorer.warn("Q test p-value is borderline (0.05-0.10) - interpret with caution")
        if i2 > RANDOM_EFFECTS_I2_THRESHOLD and p_value >= 0.05:
            scorer.warn(
                "I² suggests heterogeneity but Q test is not significant - "
                "may be due to low power with few studies"
            )
        if q / 2.0 > INC_GAMMA_SATURATION and df / 2.0 + 1.0 > INC_GAMMA_SATURATION:
            scorer.warn(
                "Q test p-value is saturated at 0 for this many studies (df > 198) - "
                "rely on I² and τ² rather than the Q test"
            )

        return HeterogeneityResult(
            n_studies=k,
            q_statistic=q,
            df=df,
            q_p_value=p_value,
            i_squared=round(i2, 1),
            i_squared_interpretation=level,
            tau_squared=tau2,
            tau=math.sqrt(tau2),
            h_squared=h2,
            prediction_interval=interval,
            pooled_effect=pooled,
            recommended_model=model,
            interpretation=_interpretation(i2, level, p_value),
            confidence=scorer.score(),
            warnings=scorer.warnings,
        )


def assess_heterogeneity(studies: Sequence[StudyEffect]) -> HeterogeneityResult:
    return HeterogeneityEngine().assess(studies)
