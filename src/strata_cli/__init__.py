"""Strata - layered knowledge and specialist discovery for AI coding agents."""

__version__ = "0.1.0"
