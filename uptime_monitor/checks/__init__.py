"""Probe execution and result classification."""

from .classifier import Classification, ProbeOutcome, classify
from .executor import CheckExecutor

__all__ = ["CheckExecutor", "Classification", "ProbeOutcome", "classify"]
