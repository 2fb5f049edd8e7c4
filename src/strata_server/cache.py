"""Resolution Cache

Memoizes single-item lookups keyed by (kind, id).

Validity is tracked with an epoch counter instead of eager clearing: every
layer-set or capability-set change bumps the epoch, and entries written under
an older epoch are treated as misses (and dropped lazily when next touched).
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from strata_server.content import ContentItem, ContentKind

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    epoch: int
    item: ContentItem


class ResolutionCache:
    """Epoch-validated (kind, id) -> item memo."""

    def __init__(self):
        self._entries: Dict[Tuple[ContentKind, str], CacheEntry] = {}
        self._epoch = 0
        self.hits = 0
        self.misses = 0
        self.stale = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    def invalidate(self, reason: str = "") -> int:
        """Start a new epoch; every existing entry becomes stale."""
        self._epoch += 1
        logger.debug(
            f"Resolution cache invalidated (epoch {self._epoch})"
            + (f": {reason}" if reason else "")
        )
        return self._epoch

    def get(self, kind: ContentKind, item_id: str) -> Optional[ContentItem]:
        key = (kind, item_id)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.epoch != self._epoch:
            self.stale += 1
            self.misses += 1
            del self._entries[key]
            return None
        self.hits += 1
        return entry.item

    def put(self, kind: ContentKind, item_id: str, item: ContentItem) -> None:
        self._entries[(kind, item_id)] = CacheEntry(epoch=self._epoch, item=item)

    def clear(self) -> None:
        """Drop all entries and start a new epoch."""
        self._entries.clear()
        self.invalidate("cleared")

    def __len__(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.epoch == self._epoch)

    def get_stats(self) -> dict:
        return {
            "epoch": self._epoch,
            "entries": len(self),
            "hits": self.hits,
            "misses": self.misses,
            "stale_evictions": self.stale,
        }
