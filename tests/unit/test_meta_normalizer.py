"""Unit tests for effect size normalisation."""

import math

import pytest

from evsyn.core.errors import InvalidEffectSpecification
from evsyn.core.models import StudyEffect
from evsyn.meta.normalizer import EffectSizeNormalizer, normalize_studies, se_from_ci


class TestSeFromCI:
    """Tests for se_from_ci function."""

    def test_symmetric_interval(self) -> None:
        """Test the SE of a symmetric interval."""
        assert se_from_ci(0.1, 0.5) == pytest.approx(0.4 / 3.92)

    def test_one_point_ninety_six_round_trip(self) -> None:
        """Test that effect ± 1.96 SE recovers the SE."""
        assert se_from_ci(1.0 - 1.96 * 0.2, 1.0 + 1.96 * 0.2) == pytest.approx(0.2)


class TestEffectSizeNormalizer:
    """Tests for EffectSizeNormalizer."""

    def test_keeps_positive_standard_error(self) -> None:
        """Test that an existing SE wins over the CI."""
        study = StudyEffect(study_id="S1", effect_size=0.3, standard_error=0.15, ci_lower=0.0, ci_upper=1.0)
        assert EffectSizeNormalizer().normalize_one(study).standard_error == 0.15

    def test_derives_se_from_ci(self) -> None:
        """Test SE derivation without mutating the input."""
        study = StudyEffect(study_id="S1", effect_size=0.3, ci_lower=0.1, ci_upper=0.5)
        normalized = EffectSizeNormalizer().normalize_one(study)
        assert normalized.standard_error == pytest.approx(0.4 / 3.92)
        assert normalized.study_id == "S1"
        assert study.standard_error is None

    def test_zero_se_falls_back_to_ci(self) -> None:
        """Test that a zero SE is replaced by the CI-derived SE."""
        study = StudyEffect(study_id="S1", effect_size=0.3, standard_error=0.0, ci_lower=0.1, ci_upper=0.5)
        assert EffectSizeNormalizer().normalize_one(study).standard_error == pytest.approx(0.4 / 3.92)

    def test_missing_se_and_ci_raises(self) -> None:
        """Test that a study without precision is rejected."""
        study = StudyEffect(study_id="S1", effect_size=0.3)
        with pytest.raises(InvalidEffectSpecification, match="Study S1"):
            EffectSizeNormalizer().normalize_one(study)

    def test_only_one_bound_raises(self) -> None:
        """Test that a single CI bound is not enough."""
        study = StudyEffect(study_id="S1", effect_size=0.3, ci_lower=0.1)
        with pytest.raises(InvalidEffectSpecification):
            EffectSizeNormalizer().normalize_one(study)

    def test_reversed_ci_raises_even_with_se(self) -> None:
        """Test that a reversed CI is rejected even when an SE is present."""
        study = StudyEffect(study_id="S2", effect_size=0.3, standard_error=0.1, ci_lower=0.5, ci_upper=0.1)
        with pytest.raises(InvalidEffectSpecification, match="Study S2"):
            EffectSizeNormalizer().normalize_one(study)

    def test_normalize_preserves_order(self) -> None:
        """Test that normalisation keeps the input order."""
        studies = [
            StudyEffect(study_id="A", effect_size=0.1, standard_error=0.1),
            StudyEffect(study_id="B", effect_size=0.2, ci_lower=0.0, ci_upper=0.4),
        ]
        normalized = normalize_studies(studies)
        assert [s.study_id for s in normalized] == ["A", "B"]
        assert all(s.has_standard_error for s in normalized)

    def test_from_records(self) -> None:
        """Test validation of plain dicts with id aliases."""
        records = [
            {"id": "A", "effect_size": 0.1, "standard_error": 0.1},
            {"study_id": "B", "effect_size": 0.2, "ci_lower": 0.0, "ci_upper": 0.4},
        ]
        studies = EffectSizeNormalizer().from_records(records)
        assert [s.study_id for s in studies] == ["A", "B"]
        assert studies[1].standard_error == pytest.approx(0.4 / 3.92)

    def test_from_records_invalid_record(self) -> None:
        """Test that an invalid record is reported by position."""
        records = [
            {"study_id": "A", "effect_size": 0.1, "standard_error": 0.1},
            {"effect_size": "not a number"},
        ]
        with pytest.raises(InvalidEffectSpecification, match="Study #2"):
            EffectSizeNormalizer().from_records(records)

    def test_from_records_non_object_record(self) -> None:
        """Test that a record that is not a dict is reported by position."""
        with pytest.raises(InvalidEffectSpecification, match="Study #1: study record must be a JSON object"):
            EffectSizeNormalizer().from_records([[5]])  # type: ignore[list-item]

    def test_from_records_event_counts(self) -> None:
        """Test that 2x2 counts become a log risk ratio."""
        records = [
            {
                "study_id": "T1",
                "measure": "RR",
                "events_intervention": 10,
                "total_intervention": 50,
                "events_control": 20,
                "total_control": 50,
            }
        ]
        study = EffectSizeNormalizer().from_records(records)[0]
        assert study.study_id == "T1"
        assert study.effect_size == pytest.approx(math.log(0.5))
        assert study.standard_error == pytest.approx(math.sqrt(0.11))
        assert study.sample_size == 100

    def test_from_records_means(self) -> None:
        """Test that two-arm means become a mean difference."""
        records = [
            {
                "id": "M1",
                "measure": "MD",
                "mean_intervention": 10.0,
                "sd_intervention": 2.0,
                "n_intervention": 50,
                "mean_control": 8.0,
                "sd_control": 2.0,
                "n_control": 50,
            }
        ]
        study = EffectSizeNormalizer().from_records(records)[0]
        assert study.study_id == "M1"
        assert study.effect_size == pytest.approx(2.0)
        assert study.standard_error == pytest.approx(0.4)

    def test_from_records_invalid_counts(self) -> None:
        """Test that impossible counts are reported with the study id."""
        records = [{"study_id": "T9", "events_intervention": 12, "total_intervention": 10,
                    "events_control": 1, "total_control": 10}]
        with pytest.raises(InvalidEffectSpecification, match="Study T9"):
            EffectSizeNormalizer().from_records(records)

    def test_from_records_counts_without_id(self) -> None:
        """Test that converted records still need a study id."""
        records = [{"events_intervention": 2, "total_intervention": 10, "events_control": 1, "total_control": 10}]
        with pytest.raises(InvalidEffectSpecification, match="Study #1: study_id is required"):
            EffectSizeNormalizer().from_records(records)
