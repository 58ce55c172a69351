"""
Readiness assessment of a site before anything is mutated.

Exposes :func:`evaluate_readiness` and its :class:`ReadinessSettings`.
"""

from .readiness import CHECKS, ReadinessSettings, evaluate_readiness

__all__ = ["CHECKS", "ReadinessSettings", "evaluate_readiness"]
