"""Meta‑analysis utilities.

This package contains the heterogeneity and publication bias engines,
the effect size normaliser they share, effect size calculators for
raw 2×2 counts and two-arm summaries, and the :class:`MetaAnalyzer`
facade for pooling and forest plot data.

"""

from .analyzer import MetaAnalyzer, PooledEffect  # noqa: F401
from .effect_size import (  # noqa: F401
    BinaryData,
    ContinuousData,
    EffectSizeResult,
    binary_effect_size,
    continuous_effect_size,
)
from .heterogeneity import HeterogeneityEngine, HeterogeneityResult  # noqa: F401
from .normalizer import EffectSizeNormalizer  # noqa: F401
from .publication_bias import BiasResult, PublicationBiasEngine  # noqa: F401
