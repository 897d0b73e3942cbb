"""Normalise heterogeneous study inputs to effect + standard error.

Primary studies report precision either as a standard error or as a 95%
confidence interval.  The engines only work with standard errors, so
this module derives ``se = (ci_upper - ci_lower) / 3.92`` whenever the
standard error is missing.  Records holding raw 2×2 counts or two-arm
means are first converted to an effect estimate.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from ..core.errors import InvalidEffectSpecification
from ..core.models import CI95_WIDTH_IN_SE, StudyEffect
from .effect_size import BinaryData, ContinuousData, binary_effect_size, continuous_effect_size


def se_from_ci(ci_lower: float, ci_upper: float) -> float:
    """Standard error implied by a symmetric 95% confidence interval."""
    return (ci_upper - ci_lower) / CI95_WIDTH_IN_SE


class EffectSizeNormalizer:
    """Guarantee that every study carries a positive standard error."""

    def normalize_one(self, study: StudyEffect) -> StudyEffect:
        has_ci = study.ci_lower is not None and study.ci_upper is not None
        if has_ci and not study.has_valid_ci:
            raise InvalidEffectSpecification(
                "CI lower bound must be below the upper bound", study.study_id
            )
        if study.has_standard_error:
            return study
        if not has_ci:
            raise InvalidEffectSpecification(
                "must provide either a positive standard_error or ci_lower/ci_upper",
                study.study_id,
            )
        se = se_from_ci(study.ci_lower, study.ci_upper)  # type: ignore[arg-type]
        return study.model_copy(update={"standard_error": se})

    def normalize(self, studies: Iterable[StudyEffect]) -> List[StudyEffect]:
        return [self.normalize_one(study) for study in studies]

    def from_records(self, records: Iterable[Dict[str, Any]]) -> List[StudyEffect]:
        """Validate plain dictionaries (e.g. parsed JSON) and normalise them.

        A record may carry an effect estimate directly, 2×2 event counts
        (``events_intervention`` and friends, ``measure`` OR/RR/RD) or
        two-arm means and SDs (``mean_intervention`` and friends,
        ``measure`` MD/SMD).  Counts and means are converted with
        :mod:`evsyn.meta.effect_size`; ratios enter on the log scale.
        """
        studies = []
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                raise InvalidEffectSpecification("study record must be a JSON object", f"#{index + 1}")
            try:
                studies.append(self.study_from_record(record))
            except ValueError as exc:
                study_id = record.get("study_id") or record.get("id") or f"#{index + 1}"
                raise InvalidEffectSpecification(str(exc), str(study_id)) from exc
        return self.normalize(studies)

    def study_from_record(self, record: Dict[str, Any]) -> StudyEffect:
        if "events_intervention" in record:
            result = binary_effect_size(BinaryData.model_validate(record), record.get("measure", "OR"))
        elif "mean_intervention" in record:
            result = continuous_effect_size(
                ContinuousData.model_validate(record), record.get("measure", "SMD")
            )
        else:
            return StudyEffect.model_validate(record)
        study_id = record.get("study_id", record.get("id"))
        if study_id is None:
            raise ValueError("study_id is required")
        return result.to_study_effect(str(study_id))


def normalize_studies(studies: Iterable[StudyEffect]) -> List[StudyEffect]:
    return EffectSizeNormalizer().normalize(studies)
