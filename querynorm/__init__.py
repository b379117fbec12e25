"""
Query normalization service for a metrics backend.

This package hosts the query normalizer, the period resolver, the legacy
label migrator, alarm matching for annotations, and the HTTP and CLI entry
points built on them.
"""

from .__version__ import __domain_model_version__, __version__

__all__ = ["__version__", "__domain_model_version__"]
