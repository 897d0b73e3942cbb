"""Unit tests for GRADE quality assessment."""

import pytest
from pydantic import ValidationError

from evsyn.quality.grade import GRADEEngine, final_quality, recommend, starting_quality
from evsyn.quality.models import (
    DowngradeSeverity,
    Downgrading,
    Imprecision,
    Inconsistency,
    LargeEffect,
    QualityLevel,
    RecommendationInputs,
    RecommendationStrength,
    RiskOfBias,
    StudyDesign,
    UpgradeLevel,
    Upgrading,
)


class TestQualityLevel:
    """Tests for the ordinal quality scale."""

    def test_rank_order(self) -> None:
        """Test the ordering of quality levels."""
        assert QualityLevel.VERY_LOW.rank == 0
        assert QualityLevel.HIGH.rank == 3

    def test_shift_clamps(self) -> None:
        """Test that shifts stop at the ends of the scale."""
        assert QualityLevel.LOW.shift(-5) == QualityLevel.VERY_LOW
        assert QualityLevel.MODERATE.shift(4) == QualityLevel.HIGH
        assert QualityLevel.LOW.shift(1) == QualityLevel.MODERATE

    def test_starting_quality(self) -> None:
        """Test the starting level for each study design."""
        assert starting_quality(StudyDesign.RANDOMIZED_TRIAL) == QualityLevel.HIGH
        assert starting_quality(StudyDesign.OBSERVATIONAL) == QualityLevel.LOW
        assert starting_quality(StudyDesign.CASE_SERIES) == QualityLevel.VERY_LOW
        assert starting_quality(StudyDesign.CASE_REPORT) == QualityLevel.VERY_LOW

    def test_downgrades_clamp_before_upgrades(self) -> None:
        """Test that downgrades clamp at very low before upgrades apply."""
        quality = final_quality(QualityLevel.LOW, 2, 1, StudyDesign.OBSERVATIONAL)
        assert quality == QualityLevel.LOW

    def test_upgrades_ignored_for_trials(self) -> None:
        """Test that upgrades leave randomized trials unchanged."""
        quality = final_quality(QualityLevel.HIGH, 1, 2, StudyDesign.RANDOMIZED_TRIAL)
        assert quality == QualityLevel.MODERATE


class TestFactorSets:
    """Tests for Downgrading and Upgrading records."""

    def test_defaults_are_all_none(self) -> None:
        """Test that factors default to no concern."""
        assert Downgrading().total() == 0
        assert Upgrading().total() == 0
        assert len(list(Downgrading().factors())) == 5
        assert len(list(Upgrading().factors())) == 3

    def test_totals(self) -> None:
        """Test the summed downgrade and upgrade levels."""
        downgrading = Downgrading(
            risk_of_bias=RiskOfBias(downgrade=DowngradeSeverity.VERY_SERIOUS),
            imprecision=Imprecision(downgrade=DowngradeSeverity.SERIOUS),
        )
        assert downgrading.total() == 3

    def test_from_json_like_dict(self) -> None:
        """Test validation from parsed JSON."""
        downgrading = Downgrading.model_validate(
            {"inconsistency": {"downgrade": "serious", "i_squared": 80.0}}
        )
        assert downgrading.inconsistency.severity == DowngradeSeverity.SERIOUS
        assert downgrading.inconsistency.i_squared == 80.0

    def test_unknown_severity_rejected(self) -> None:
        """Test that an unknown severity is rejected."""
        with pytest.raises(ValidationError):
            Downgrading.model_validate({"risk_of_bias": {"downgrade": "catastrophic"}})


class TestGRADEEngine:
    """Tests for GRADEEngine.assess."""

    def test_trial_with_two_concerns(self) -> None:
        """Test a trial downgraded twice to low."""
        downgrading = Downgrading(
            risk_of_bias=RiskOfBias(downgrade=DowngradeSeverity.SERIOUS, overall_risk="high"),
            imprecision=Imprecision(downgrade=DowngradeSeverity.SERIOUS, crosses_null=True),
        )
        result = GRADEEngine().assess("mortality", StudyDesign.RANDOMIZED_TRIAL, downgrading)
        assert result.starting_quality == QualityLevel.HIGH
        assert result.total_downgrades == 2
        assert result.final_quality == QualityLevel.LOW
        assert "risk of bias (serious)" in result.quality_explanation
        assert "imprecision (serious)" in result.quality_explanation
        assert result.confidence == 0.7
        assert result.warnings == []
        assert result.recommendation is None

    def test_observational_upgraded(self) -> None:
        """Test an observational study upgraded for a large effect."""
        upgrading = Upgrading(large_effect=LargeEffect(upgrade=UpgradeLevel.TWO_LEVELS, effect_magnitude="very_large"))
        result = GRADEEngine().assess("stroke", StudyDesign.OBSERVATIONAL, Downgrading(), upgrading)
        assert result.final_quality == QualityLevel.HIGH
        assert result.total_upgrades == 2
        assert result.upgrading == upgrading
        assert "Upgraded 2 level(s)" in result.quality_explanation

    def test_trial_ignores_upgrading(self) -> None:
        """Test the warning when upgrades are supplied for a trial."""
        upgrading = Upgrading(large_effect=LargeEffect(upgrade=UpgradeLevel.ONE_LEVEL))
        result = GRADEEngine().assess(
            "pain", StudyDesign.RANDOMIZED_TRIAL,
            Downgrading(imprecision=Imprecision(downgrade=DowngradeSeverity.SERIOUS)),
            upgrading,
        )
        assert result.final_quality == QualityLevel.MODERATE
        assert result.upgrading is None
        assert result.confidence == 0.7
        assert any("randomized trials" in w for w in result.warnings)

    def test_case_series_is_very_low(self) -> None:
        """Test that case series start at very low."""
        result = GRADEEngine().assess("pain", StudyDesign.CASE_SERIES, Downgrading())
        assert result.final_quality == QualityLevel.VERY_LOW
        assert result.confidence == 0.6
        assert len(result.warnings) == 1

    def test_multiple_unclear_signals(self) -> None:
        """Test the deduction for several unclear signals."""
        downgrading = Downgrading(
            risk_of_bias=RiskOfBias(overall_risk="unclear"),
            inconsistency=Inconsistency(ci_overlap=False, point_estimates_similar=False),
        )
        result = GRADEEngine().assess("pain", StudyDesign.RANDOMIZED_TRIAL, downgrading)
        assert result.final_quality == QualityLevel.HIGH
        assert result.confidence == 0.6
        assert any("unclear" in w for w in result.warnings)

    def test_recommendation_attached(self) -> None:
        """Test that recommendation inputs produce a recommendation."""
        inputs = RecommendationInputs(
            balance_of_benefits_and_harms="clearly_favors",
            values_and_preferences="consistent",
            resource_use="low",
        )
        result = GRADEEngine().assess("mortality", StudyDesign.RANDOMIZED_TRIAL, Downgrading(), recommendation_inputs=inputs)
        assert result.recommendation is not None
        assert result.recommendation.strength == RecommendationStrength.STRONG


class TestRecommend:
    """Tests for recommend function."""

    def test_strong(self) -> None:
        """Test a strong recommendation from favourable inputs."""
        rec = recommend(QualityLevel.HIGH, "clearly_favors", "consistent", "high")
        assert rec.strength == RecommendationStrength.STRONG
        assert rec.reasons == []

    def test_weak_with_reasons(self) -> None:
        """Test a weak recommendation that lists its reasons."""
        rec = recommend(QualityLevel.LOW, "uncertain", "variable", "high")
        assert rec.strength == RecommendationStrength.WEAK
        assert rec.reasons == [
            "low quality evidence",
            "uncertain balance of benefits and harms",
            "variable patient values and preferences",
            "high resource use",
        ]
        assert rec.rationale.startswith("Weak recommendation due to:")

    def test_weak_without_reasons(self) -> None:
        """Test a weak recommendation without specific reasons."""
        rec = recommend(QualityLevel.MODERATE, "clearly_favors", "consistent", "low")
        assert rec.strength == RecommendationStrength.WEAK
        assert rec.rationale == "Moderate quality evidence with probably favorable balance"
