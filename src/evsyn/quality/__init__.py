"""GRADE quality assessment package.

This package rates the certainty of a body of evidence with the GRADE
framework.  ``Downgrading`` and ``Upgrading`` hold the fixed factor sets,
``GRADEEngine`` turns them into a final quality level, and ``recommend``
derives the strength of a recommendation.
"""

from .grade import GRADEEngine, recommend  # noqa: F401
from .models import (  # noqa: F401
    Downgrading,
    GradeResult,
    QualityLevel,
    RecommendationInputs,
    StudyDesign,
    Upgrading,
)
