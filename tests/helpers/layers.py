"""Test-double layers.

Each implements the ContentLayer contract with one deliberate behaviour:
raising, delaying, returning junk, or counting calls.
"""

from __future__ import annotations

import asyncio

from strata_server.content import ContentItem, ContentKind
from strata_server.layers import InMemoryLayer


class FailingLayer(InMemoryLayer):
    """Raises on every read."""

    def __init__(self, name: str, priority: int, error: Exception | None = None, **kwargs):
        super().__init__(name, priority, **kwargs)
        self.error = error or RuntimeError(f"{name} unavailable")

    async def initialize(self, force: bool = False):
        raise self.error

    async def enumerate_ids(self, kind: ContentKind) -> list[str]:
        raise self.error

    async def fetch(self, kind: ContentKind, item_id: str) -> ContentItem | None:
        raise self.error


class SlowLayer(InMemoryLayer):
    """Delays every read, so it completes after faster layers."""

    def __init__(self, name: str, priority: int, delay: float = 0.05, **kwargs):
        super().__init__(name, priority, **kwargs)
        self.delay = delay

    async def enumerate_ids(self, kind: ContentKind) -> list[str]:
        await asyncio.sleep(self.delay)
        return await super().enumerate_ids(kind)

    async def fetch(self, kind: ContentKind, item_id: str) -> ContentItem | None:
        await asyncio.sleep(self.delay)
        return await super().fetch(kind, item_id)


class MalformedLayer(InMemoryLayer):
    """Claims to hold ids but returns something that is not a content item."""

    def __init__(self, name: str, priority: int, ids: list[str], **kwargs):
        super().__init__(name, priority, **kwargs)
        self.ids = list(ids)

    async def enumerate_ids(self, kind: ContentKind) -> list[str]:
        return list(self.ids)

    async def fetch(self, kind: ContentKind, item_id: str):
        return {"id": item_id, "not": "an item"}


class CountingLayer(InMemoryLayer):
    """Counts fetch() calls, for cache behaviour tests."""

    def __init__(self, name: str, priority: int, **kwargs):
        super().__init__(name, priority, **kwargs)
        self.fetch_calls = 0

    async def fetch(self, kind: ContentKind, item_id: str) -> ContentItem | None:
        self.fetch_calls += 1
        return await super().fetch(kind, item_id)
