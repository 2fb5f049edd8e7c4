"""Strata knowledge server: layered content resolution and specialist discovery."""

__version__ = "0.1.0"
