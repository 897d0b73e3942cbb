"""Exception hierarchy for the evidence synthesis engines."""

from typing import Optional


class EvidenceSynthesisError(Exception):
    """Base class for all errors raised by :mod:`evsyn`."""


class InsufficientData(EvidenceSynthesisError):
    """No studies were supplied; nothing can be computed."""


class DegenerateInput(EvidenceSynthesisError):
    """Too few studies for a particular statistic.

    Raised by the low-level test functions.  The engines catch it and
    substitute a conservative placeholder result plus a warning.
    """

    def __init__(self, message: str, n_studies: int, required: int) -> None:
        super().__init__(message)
        self.n_studies = n_studies
        self.required = required


class InvalidEffectSpecification(EvidenceSynthesisError, ValueError):
    """A study has neither a usable standard error nor valid CI bounds."""

    def __init__(self, message: str, study_id: Optional[str] = None) -> None:
        if study_id is not None:
            message = f"Study {study_id}: {message}"
        super().__init__(message)
        self.study_id = study_id
