"""Imprint Flash - workflow controller for writing disk images to removable drives.

This package provides the state machine, size validation and progress
aggregation that sit between a presentation layer and an external
flashing backend process.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
