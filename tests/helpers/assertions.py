"""Assertion helpers for resolution results.

Clear error messages make fold-order failures easier to debug.
"""

from __future__ import annotations

from collections.abc import Iterable

from strata_server.content import ContentItem


def assert_provenance(item: ContentItem, source_layer: str, layers: list[str]) -> None:
    """Assert which layer won and which layers contributed (lowest first).

    Raises:
        AssertionError: If either provenance field differs
    """
    assert item.source_layer == source_layer, (
        f"Expected {item.id!r} to come from {source_layer!r}, got {item.source_layer!r}"
    )
    assert item.layers == layers, (
        f"Expected contributors {layers} for {item.id!r}, got {item.layers}"
    )


def assert_ids(items: Iterable[ContentItem], expected: list[str]) -> None:
    """Assert the ids of ``items`` in order."""
    actual = [item.id for item in items]
    assert actual == expected, f"Expected ids {expected}, got {actual}"
