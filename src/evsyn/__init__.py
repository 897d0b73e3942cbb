"""Evidence synthesis statistics for systematic reviews.

The package bundles three engines that operate on in‑memory study
records: heterogeneity assessment, publication‑bias testing and GRADE
quality grading.  All of them share the special functions in
:mod:`evsyn.stats.special` and the confidence heuristic in
:mod:`evsyn.stats.confidence`.
"""

__version__ = "0.3.0"
