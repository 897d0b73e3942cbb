"""Statistical meta‑analysis and synthesis.

This module defines the :class:`MetaAnalyzer` class, a facade over the
evidence synthesis engines.  It pools study effects under fixed or
random effects models, delegates heterogeneity, publication bias and
GRADE assessments to their engines, and builds data frames suitable for
forest plot visualisation.
"""

from __future__ import annotations

import math
from typing import List, Literal, Optional, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

from ..config.settings import ScoringSettings
from ..core.errors import InsufficientData
from ..core.models import StudyEffect
from ..quality.grade import GRADEEngine
from ..quality.models import (
    Downgrading,
    GradeResult,
    RecommendationInputs,
    StudyDesign,
    Upgrading,
)
from ..stats.confidence import ConfidenceScorer
from ..stats.special import two_sided_normal_p
from ..utils.logging import get_logger
from .heterogeneity import (
    HeterogeneityEngine,
    HeterogeneityResult,
    fixed_effect_estimate,
    i_squared,
    inverse_variance_weights,
    q_statistic,
    tau_squared_dl,
)
from .normalizer import EffectSizeNormalizer
from .publication_bias import BiasResult, PublicationBiasEngine

logger = get_logger(__name__)

Z_95 = 1.96

AUTO_RANDOM_I2_THRESHOLD = 50.0
LARGE_TAU_SQUARED = 1.0


class StudyWeight(BaseModel):
    model_config = ConfigDict(frozen=True)

    study_id: str
    weight: float
    weight_percent: float


class PooledHeterogeneity(BaseModel):
    model_config = ConfigDict(frozen=True)

    tau_squared: float
    q_statistic: float
    i_squared: float


class PooledEffect(BaseModel):
    """Pooled estimate under a fixed or random effects model."""

    model_config = ConfigDict(frozen=True)

    model: Literal["fixed", "random"]
    pooled_effect: float
    ci_lower: float
    ci_upper: float
    standard_error: float
    z_score: float
    p_value: float = Field(ge=0.0, le=1.0)
    weights: List[StudyWeight]
    n_studies: int
    total_sample_size: Optional[int] = None
    heterogeneity: PooledHeterogeneity
    model_rationale: str
    confidence: float
    warnings: List[str] = Field(default_factory=list)


class MetaAnalyzer:
    """Perform meta‑analysis on a set of study effects.

    The analyser implements both fixed effect and random effects
    models using the DerSimonian–Laird estimator for between‑study
    variance, and exposes the heterogeneity, publication bias and GRADE
    engines behind a single object.
    """

    def __init__(self, scoring: Optional[ScoringSettings] = None) -> None:
        self.scoring = scoring
        self.normalizer = EffectSizeNormalizer()
        self.heterogeneity_engine = HeterogeneityEngine(scoring)
        self.bias_engine = PublicationBiasEngine(scoring)
        self.grade_engine = GRADEEngine(scoring)

    def compute_pooled_effect(
        self,
        studies: Sequence[StudyEffect],
        method: Literal["fixed", "random", "auto"] = "auto",
    ) -> PooledEffect:
        """Compute the pooled effect size across a set of studies.

        Args:
            studies: Study effects carrying a standard error or a 95% CI.
            method: ``'fixed'``, ``'random'`` or ``'auto'``.  ``auto`` pools
                with random effects when I² exceeds 50% and with a fixed
                effect otherwise.

        Returns:
            A :class:`PooledEffect` with the estimate, its standard
            error, confidence interval, z‑score, p‑value and weights.
        """
        if not studies:
            raise InsufficientData("No studies provided for pooling")
        if method not in ("fixed", "random", "auto"):
            raise ValueError(f"Unknown pooling method: {method}")
        normalized = self.normalizer.normalize(studies)
        k = len(normalized)
        effects = np.array([s.effect_size for s in normalized], dtype=float)
        ses = np.array([s.standard_error for s in normalized], dtype=float)

        fixed_weights = inverse_variance_weights(ses)
        fixed_pooled = fixed_effect_estimate(effects, fixed_weights)
        q = q_statistic(effects, fixed_weights, fixed_pooled)
        df = k - 1
        i2 = i_squared(q, df)
        tau2 = tau_squared_dl(q, df, fixed_weights)

        model = method
        if method == "auto":
            model = "random" if i2 > AUTO_RANDOM_I2_THRESHOLD else "fixed"

        weights = fixed_weights
        if model == "random":
            weights = 1.0 / (ses ** 2 + tau2)
        pooled = fixed_effect_estimate(effects, weights)
        sum_weights = float(np.sum(weights))
        pooled_se = math.sqrt(1.0 / sum_weights)
        ci_lower = pooled - Z_95 * pooled_se
        ci_upper = pooled + Z_95 * pooled_se
        z_score = pooled / pooled_se if pooled_se > 0 else 0.0
        p_value = two_sided_normal_p(z_score)

        scorer = ConfidenceScorer(self.scoring)
        if k < 3:
            scorer.major("Very few studies (<3) for pooling")
        elif k < 5:
            scorer.minor("Few studies (<5) for pooling")
        if model == "fixed":
            if i2 > 75:
                scorer.major("High heterogeneity (I² > 75%) - consider random-effects model")
            elif i2 > 50:
                scorer.minor("Moderate heterogeneity (I² > 50%) - consider random-effects model")
        else:
            # Noted without a penalty under random effects
            if i2 > 75:
                scorer.warn("High heterogeneity (I² > 75%) detected")
            elif i2 > 50:
                scorer.warn("Moderate heterogeneity (I² > 50%) detected")
            if tau2 > LARGE_TAU_SQUARED:
                scorer.minor("Large between-study variance (tau² > 1)")
        if ci_upper - ci_lower > 2 * abs(pooled):
            scorer.minor("Wide confidence interval")

        if method == "auto" and model == "random":
            rationale = f"Random-effects model selected due to moderate/high heterogeneity (I² = {i2:.1f}%)"
        elif method == "auto":
            rationale = f"Fixed-effect model selected due to low heterogeneity (I² = {i2:.1f}%)"
        elif model == "fixed":
            rationale = "Fixed-effect model assumes all studies estimate one common effect."
        else:
            rationale = (
                "Random-effects model (DerSimonian-Laird) allows the true effect to vary "
                f"between studies (tau² = {tau2:.4f})."
            )

        reported = [s.sample_size for s in normalized if s.sample_size is not None]
        total_sample_size = sum(reported) or None

        return PooledEffect(
            model=model,
            pooled_effect=pooled,
            ci_lower=ci_lower,
            ci_upper=ci_upper,
            standard_error=pooled_se,
            z_score=z_score,
            p_value=p_value,
            weights=[
                StudyWeight(
                    study_id=s.study_id,
                    weight=float(w),
                    weight_percent=round(float(w) / sum_weights * 100.0, 1),
                )
                for s, w in zip(normalized, weights)
            ],
            n_studies=k,
            total_sample_size=total_sample_size,
            heterogeneity=PooledHeterogeneity(
                tau_squared=tau2 if model == "random" else 0.0,
                q_statistic=q,
                i_squared=round(i2, 1),
            ),
            model_rationale=rationale,
            confidence=scorer.score(),
            warnings=scorer.warnings,
        )

    def assess_heterogeneity(self, studies: Sequence[StudyEffect]) -> HeterogeneityResult:
        return self.heterogeneity_engine.assess(studies)

    def publication_bias_test(
        self,
        studies: Sequence[StudyEffect],
        pooled_effect: Optional[float] = None,
    ) -> BiasResult:
        """Assess publication bias with Egger's, Begg's and trim-and-fill."""
        return self.bias_engine.assess(studies, pooled_effect)

    def assess_grade(
        self,
        outcome: str,
        study_design: StudyDesign,
        downgrading: Downgrading,
        upgrading: Optional[Upgrading] = None,
        recommendation_inputs: Optional[RecommendationInputs] = None,
    ) -> GradeResult:
        return self.grade_engine.assess(
            outcome, study_design, downgrading, upgrading, recommendation_inputs
        )

    def generate_forest_plot_data(
        self, studies: Sequence[StudyEffect], pooled: PooledEffect
    ) -> pd.DataFrame:
        """Create a DataFrame for forest plot visualisation."""
        normalized = self.normalizer.normalize(studies)
        weights = {w.study_id: w.weight_percent for w in pooled.weights}
        rows = []
        for s in normalized:
            rows.append({
                "study": s.study_id,
                "effect": s.effect_size,
                "ci_lower": s.ci_lower if s.ci_lower is not None else s.effect_size - Z_95 * s.standard_error,
                "ci_upper": s.ci_upper if s.ci_upper is not None else s.effect_size + Z_95 * s.standard_error,
                "weight": weights.get(s.study_id),
                "type": "study",
            })
        rows.append({
            "study": "Pooled",
            "effect": pooled.pooled_effect,
            "ci_lower": pooled.ci_lower,
            "ci_upper": pooled.ci_upper,
            "weight": None,
            "type": "pooled",
        })
        return pd.DataFrame(rows)
