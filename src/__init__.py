# src/__init__.py — v1
"""planvault — plan document store and transactional update engine."""

from planvault.version import __version__

__all__ = ["__version__"]
