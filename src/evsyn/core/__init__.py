"""Core records and errors shared by every engine."""

from .errors import (  # noqa: F401
    DegenerateInput,
    EvidenceSynthesisError,
    InsufficientData,
    InvalidEffectSpecification,
)
from .models import CI95_WIDTH_IN_SE, StudyEffect  # noqa: F401
