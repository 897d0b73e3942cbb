"""Confidence heuristic shared by the heterogeneity, bias and GRADE engines.

Every engine starts from the same base confidence and subtracts fixed
penalties for small samples or conflicting signals.  The final score is
clamped to ``[floor, ceiling]`` so an automated assessment never claims
certainty.  Constants come from :class:`~evsyn.config.settings.ScoringSettings`.
"""

from __future__ import annotations

from typing import List, Optional

from ..config.settings import ScoringSettings, settings


class ConfidenceScorer:
    """Accumulate penalties and warnings for a single assessment."""

    def __init__(self, scoring: Optional[ScoringSettings] = None) -> None:
        self.scoring = scoring or settings.scoring
        self.value = self.scoring.base
        self.warnings: List[str] = []

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def deduct(self, amount: float, warning: Optional[str] = None) -> None:
        self.value -= amount
        if warning:
            self.warn(warning)

    def minor(self, warning: Optional[str] = None) -> None:
        self.deduct(self.scoring.minor_penalty, warning)

    def major(self, warning: Optional[str] = None) -> None:
        self.deduct(self.scoring.major_penalty, warning)

    def severe(self, warning: Optional[str] = None) -> None:
        self.deduct(self.scoring.severe_penalty, warning)

    def score(self) -> float:
        clamped = max(self.scoring.floor, min(self.scoring.ceiling, self.value))
        return round(clamped, 4)
