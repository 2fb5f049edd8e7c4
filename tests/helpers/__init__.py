"""Test helpers for strata.

This package provides utilities for testing layer resolution and discovery:
- Builders: Concise constructors for content items
- Layers: Test-double layers (failing, slow, malformed, call-counting)
- Assertions: Common assertion helpers
"""

from .assertions import assert_ids, assert_provenance
from .builders import make_specialist, make_topic, make_workflow
from .layers import CountingLayer, FailingLayer, MalformedLayer, SlowLayer

__all__ = [
    # Builders
    "make_specialist",
    "make_topic",
    "make_workflow",
    # Layers
    "CountingLayer",
    "FailingLayer",
    "MalformedLayer",
    "SlowLayer",
    # Assertions
    "assert_ids",
    "assert_provenance",
]
