"""
Exception types raised by the open-top boundary algorithm.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid grid dimensions, boundary types, or structured mesh tagging."""


class DistributionMismatch(RuntimeError):
    """Gathered plane data disagrees with the distribution descriptor."""


__all__ = ["ConfigurationError", "DistributionMismatch"]
