"""GRADE evidence-quality assessment.

This module implements the GRADE (Grading of Recommendations Assessment,
Development and Evaluation) rating of a body of evidence for a single
outcome.  The starting quality is fixed by study design; each of the five
downgrading domains subtracts one or two levels; for observational
evidence only, the three upgrading domains add levels back.  A separate
helper turns the final quality plus contextual judgements into a strong
or weak recommendation.

References: Guyatt et al. (2008); Balshem et al. (2011).
"""

from __future__ import annotations

from typing import Optional

from ..config.settings import ScoringSettings
from ..stats.confidence import ConfidenceScorer
from ..utils.logging import get_logger
from .models import (
    Downgrading,
    GradeResult,
    QualityLevel,
    Recommendation,
    RecommendationInputs,
    RecommendationStrength,
    StudyDesign,
    Upgrading,
)

logger = get_logger(__name__)

STARTING_QUALITY = {
    StudyDesign.RANDOMIZED_TRIAL: QualityLevel.HIGH,
    StudyDesign.OBSERVATIONAL: QualityLevel.LOW,
    StudyDesign.CASE_SERIES: QualityLevel.VERY_LOW,
    StudyDesign.CASE_REPORT: QualityLevel.VERY_LOW,
}


def starting_quality(design: StudyDesign) -> QualityLevel:
    return STARTING_QUALITY[StudyDesign(design)]


def final_quality(
    start: QualityLevel,
    downgrades: int,
    upgrades: int,
    design: StudyDesign,
) -> QualityLevel:
    """Apply downgrades, clamp, then apply upgrades for observational designs."""
    quality = start.shift(-downgrades)
    if StudyDesign(design) == StudyDesign.OBSERVATIONAL:
        quality = quality.shift(upgrades)
    return quality


def quality_explanation(
    start: QualityLevel,
    final: QualityLevel,
    downgrading: Downgrading,
    upgrades_applied: int,
) -> str:
    explanation = f"Started at {start.value} quality. "
    downgrades = downgrading.total()
    if downgrades > 0:
        reasons = [
            f"{factor.label} ({factor.severity.value})"
            for factor in downgrading.factors()
            if factor.severity.levels > 0
        ]
        explanation += f"Downgraded {downgrades} level(s) due to: {', '.join(reasons)}. "
    if upgrades_applied > 0:
        explanation += f"Upgraded {upgrades_applied} level(s). "
    return explanation + f"Final quality: {final.value}."


def recommend(
    quality: QualityLevel,
    balance: str,
    values: str,
    resource_use: str,
) -> Recommendation:
    """Decide recommendation strength from quality and contextual judgements.

    A strong recommendation needs high quality evidence, benefits that
    clearly outweigh harms and consistent patient values.  Anything else
    is weak, with the contributing reasons listed.
    """
    quality = QualityLevel(quality)
    if (
        quality == QualityLevel.HIGH
        and balance == "clearly_favors"
        and values == "consistent"
    ):
        return Recommendation(
            strength=RecommendationStrength.STRONG,
            rationale="High quality evidence, benefits clearly outweigh harms, consistent values and preferences",
        )

    reasons = []
    if quality in (QualityLevel.LOW, QualityLevel.VERY_LOW):
        reasons.append("low quality evidence")
    if balance != "clearly_favors":
        reasons.append("uncertain balance of benefits and harms")
    if values == "variable":
        reasons.append("variable patient values and preferences")
    if resource_use == "high":
        reasons.append("high resource use")

    if reasons:
        rationale = f"Weak recommendation due to: {', '.join(reasons)}"
    else:
        rationale = "Moderate quality evidence with probably favorable balance"
    return Recommendation(strength=RecommendationStrength.WEAK, rationale=rationale, reasons=reasons)


class GRADEEngine:
    """Rate the certainty of evidence for an outcome with GRADE."""

    def __init__(self, scoring: Optional[ScoringSettings] = None) -> None:
        self.scoring = scoring

    def assess(
        self,
        outcome: str,
        study_design: StudyDesign,
        downgrading: Downgrading,
        upgrading: Optional[Upgrading] = None,
        recommendation_inputs: Optional[RecommendationInputs] = None,
    ) -> GradeResult:
        """Grade the evidence for ``outcome``.

        Args:
            outcome: Name of the outcome being rated.
            study_design: Design of the contributing studies.
            downgrading: Judgements for the five downgrading domains.
            upgrading: Judgements for the three upgrading domains.  Only
                used for observational evidence.
            recommendation_inputs: Optional contextual judgements; when
                given, a recommendation is attached to the result.
        """
        design = StudyDesign(study_design)
        logger.info(
            "Assessing GRADE evidence quality",
            extra={"outcome": outcome, "study_design": design.value},
        )
        scorer = ConfidenceScorer(self.scoring)

        start = starting_quality(design)
        total_downgrades = downgrading.total()
        total_upgrades = upgrading.total() if upgrading is not None else 0
        is_observational = design == StudyDesign.OBSERVATIONAL
        if upgrading is not None and design == StudyDesign.RANDOMIZED_TRIAL:
            scorer.warn("Upgrading factors do not apply to randomized trials")

        final = final_quality(start, total_downgrades, total_upgrades, design)

        unclear_signals = sum(
            [
                downgrading.risk_of_bias.overall_risk == "unclear",
                not downgrading.inconsistency.ci_overlap
                and not downgrading.inconsistency.point_estimates_similar,
            ]
        )
        if unclear_signals > 1:
            scorer.minor("Multiple unclear assessments - consider additional review")
        if final == QualityLevel.VERY_LOW:
            scorer.minor("Very low quality evidence - interpret with extreme caution")

        recommendation = None
        if recommendation_inputs is not None:
            recommendation = recommend(
                final,
                recommendation_inputs.balance_of_benefits_and_harms,
                recommendation_inputs.values_and_preferences,
                recommendation_inputs.resource_use,
            )

        result = GradeResult(
            outcome=outcome,
            study_design=design,
            starting_quality=start,
            downgrading=downgrading,
            upgrading=upgrading if is_observational else None,
            total_downgrades=total_downgrades,
            total_upgrades=total_upgrades,
            final_quality=final,
            quality_explanation=quality_explanation(
                start, final, downgrading, total_upgrades if is_observational else 0
            ),
            recommendation=recommendation,
            confidence=scorer.score(),
            warnings=scorer.warnings,
        )
        logger.info(
            "GRADE assessment complete",
            extra={
                "final_quality": final.value,
                "total_downgrades": total_downgrades,
                "total_upgrades": total_upgrades,
                "confidence": result.confidence,
            },
        )
        return result
