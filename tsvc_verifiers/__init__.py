"""Orchestration of equivalence-verification runs over TSVC compiler outputs."""

__version__ = "0.1.0"
