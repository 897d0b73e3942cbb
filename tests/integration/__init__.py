"""Integration test package.

These tests exercise the command line interface end to end on study
files written to a temporary directory.
"""
