"""Numerical building blocks.

``special`` holds the dependency-free special functions (gamma,
incomplete gamma and beta, normal and t CDFs); ``confidence`` holds the
shared confidence heuristic.
"""

from .confidence import ConfidenceScorer  # noqa: F401
from .special import (  # noqa: F401
    chi2_sf,
    gamma,
    log_gamma,
    normal_cdf,
    reg_inc_beta,
    reg_inc_beta_cf,
    reg_lower_inc_gamma,
    t_cdf,
)
