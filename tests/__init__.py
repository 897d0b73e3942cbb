"""Test suite for the evidence synthesis engines.

This package contains unit tests covering the special functions, the
heterogeneity and publication bias engines, GRADE grading and the
confidence heuristic. To run the tests, execute `pytest` from the
project root.
"""
