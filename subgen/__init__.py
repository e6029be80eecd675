"""Accelerated subtitle generation: backend selection, loading and run supervision."""

__version__ = "1.0.0"
