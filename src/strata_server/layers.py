"""Content Layers

A layer is a named, prioritized source of content items. The resolution
engine only talks to layers through the ContentLayer contract:

    enumerate_ids(kind) -> list of ids
    fetch(kind, id)     -> item or None
    supports(kind)      -> bool
    name / priority / enabled

Lower priority values win conflicts (PROJECT=100 beats EMBEDDED=1000).

Implementations:
    - InMemoryLayer: items registered programmatically by the host
    - DirectoryLayer: Markdown + YAML frontmatter files on disk

Directory Layout:
    <root>/topics/**/*.md
    <root>/specialists/*.md
    <root>/workflows/*.md
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Iterable

from strata_server.content import (
    ContentItem,
    ContentKind,
    item_from_metadata,
    parse_frontmatter,
)

logger = logging.getLogger(__name__)

ALL_KINDS = frozenset(ContentKind)

KIND_DIRECTORIES = {
    ContentKind.TOPIC: "topics",
    ContentKind.SPECIALIST: "specialists",
    ContentKind.WORKFLOW: "workflows",
}


class LayerPriority(IntEnum):
    """Conventional layer priorities (lower value = higher precedence)."""

    PROJECT = 100
    TEAM = 200
    COMPANY = 300
    EMBEDDED = 1000


@dataclass
class LayerLoadResult:
    """Outcome of initializing one layer."""

    layer_name: str
    success: bool
    content_counts: dict[str, int] = field(default_factory=dict)
    load_time_ms: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "layer_name": self.layer_name,
            "success": self.success,
            "content_counts": dict(self.content_counts),
            "load_time_ms": round(self.load_time_ms, 2),
            "error": self.error,
        }


class ContentLayer(ABC):
    """
    Abstract content source.

    Subclasses implement enumerate_ids() and fetch(); both are coroutines so
    that layers backed by slow I/O do not block each other.

    Attributes:
        name: Unique layer name
        priority: Precedence (lower value wins)
        enabled: Disabled layers are skipped during resolution
        supported_kinds: Kinds this layer may contain
    """

    def __init__(
        self,
        name: str,
        priority: int,
        enabled: bool = True,
        supported_kinds: Iterable[ContentKind | str] | None = None,
    ):
        self.name = name
        self.priority = int(priority)
        self.enabled = enabled
        if supported_kinds is None:
            self.supported_kinds = ALL_KINDS
        else:
            self.supported_kinds = frozenset(
                ContentKind.parse(k) for k in supported_kinds
            )
        self.load_result: LayerLoadResult | None = None

    def supports(self, kind: ContentKind | str) -> bool:
        """Return True if this layer may contain items of ``kind``."""
        return ContentKind.parse(kind) in self.supported_kinds

    async def initialize(self, force: bool = False) -> LayerLoadResult:
        """
        Prepare the layer for reads.

        The default implementation has nothing to load and reports the
        current item counts.
        """
        counts = {}
        for kind in sorted(self.supported_kinds, key=lambda k: k.value):
            counts[kind.value] = len(await self.enumerate_ids(kind))
        self.load_result = LayerLoadResult(
            layer_name=self.name, success=True, content_counts=counts
        )
        return self.load_result

    @abstractmethod
    async def enumerate_ids(self, kind: ContentKind) -> list[str]:
        """Return the ids of every item of ``kind`` in this layer."""
        pass

    @abstractmethod
    async def fetch(self, kind: ContentKind, item_id: str) -> ContentItem | None:
        """Return one item, or None if this layer does not define it."""
        pass

    def get_statistics(self) -> dict:
        """Diagnostic snapshot of this layer."""
        result = self.load_result
        return {
            "name": self.name,
            "type": type(self).__name__,
            "priority": self.priority,
            "enabled": self.enabled,
            "supported_kinds": sorted(k.value for k in self.supported_kinds),
            "initialized": result is not None,
            "content_counts": dict(result.content_counts) if result else {},
            "load_time_ms": round(result.load_time_ms, 2) if result else None,
            "load_error": result.error if result else None,
        }

    async def dispose(self) -> None:
        self.load_result = None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, priority={self.priority}, "
            f"enabled={self.enabled})"
        )


class InMemoryLayer(ContentLayer):
    """Layer whose items are registered directly by the host."""

    def __init__(
        self,
        name: str,
        priority: int,
        items: Iterable[ContentItem] = (),
        enabled: bool = True,
        supported_kinds: Iterable[ContentKind | str] | None = None,
    ):
        super().__init__(name, priority, enabled, supported_kinds)
        self._items: dict[ContentKind, dict[str, ContentItem]] = {
            kind: {} for kind in ContentKind
        }
        for item in items:
            self.add(item)

    def add(self, item: ContentItem) -> None:
        """Add or replace an item."""
        self._items[item.kind][item.id] = item

    def remove(self, kind: ContentKind | str, item_id: str) -> bool:
        return self._items[ContentKind.parse(kind)].pop(item_id, None) is not None

    async def enumerate_ids(self, kind: ContentKind) -> list[str]:
        return list(self._items[ContentKind.parse(kind)].keys())

    async def fetch(self, kind: ContentKind, item_id: str) -> ContentItem | None:
        return self._items[ContentKind.parse(kind)].get(item_id)


class DirectoryLayer(ContentLayer):
    """
    Layer backed by a directory of Markdown files with YAML frontmatter.

    Files are read once by initialize() (off the event loop, via a worker
    thread) and served from memory afterwards. A file that cannot be parsed
    is logged and skipped; the rest of the layer still loads.
    """

    def __init__(
        self,
        name: str,
        priority: int,
        root: Path | str,
        enabled: bool = True,
        supported_kinds: Iterable[ContentKind | str] | None = None,
    ):
        super().__init__(name, priority, enabled, supported_kinds)
        self.root = Path(root)
        self._items: dict[ContentKind, dict[str, ContentItem]] = {
            kind: {} for kind in ContentKind
        }
        self._initialized = False

    async def initialize(self, force: bool = False) -> LayerLoadResult:
        if self._initialized and not force and self.load_result is not None:
            return self.load_result

        start_time = time.time()
        try:
            items = await asyncio.to_thread(self._load_all)
        except Exception as e:
            elapsed_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Failed to initialize layer '{self.name}' from {self.root}: {e}",
                exc_info=True,
            )
            self.load_result = LayerLoadResult(
                layer_name=self.name,
                success=False,
                load_time_ms=elapsed_ms,
                error=str(e),
            )
            raise

        self._items = items
        self._initialized = True
        elapsed_ms = (time.time() - start_time) * 1000
        counts = {kind.value: len(items[kind]) for kind in self.supported_kinds}
        self.load_result = LayerLoadResult(
            layer_name=self.name,
            success=True,
            content_counts=counts,
            load_time_ms=elapsed_ms,
        )
        logger.info(
            f"Layer '{self.name}' loaded: "
            + ", ".join(f"{count} {kind}" for kind, count in sorted(counts.items()))
            + f" ({elapsed_ms:.1f}ms)"
        )
        return self.load_result

    def _load_all(self) -> dict[ContentKind, dict[str, ContentItem]]:
        items: dict[ContentKind, dict[str, ContentItem]] = {
            kind: {} for kind in ContentKind
        }
        if not self.root.exists():
            # Not an error - optional layers (e.g. project overrides) may be absent
            logger.debug(f"No content at {self.root} for layer '{self.name}'")
            return items

        for kind in self.supported_kinds:
            kind_dir = self.root / KIND_DIRECTORIES[kind]
            if not kind_dir.is_dir():
                continue
            for file_path in sorted(kind_dir.rglob("*.md")):
                item = self._parse_file(kind, file_path, kind_dir)
                if item is None:
                    continue
                if item.id in items[kind]:
                    logger.warning(
                        f"Duplicate {kind.value} id '{item.id}' in layer "
                        f"'{self.name}' ({file_path}); keeping the later file"
                    )
                items[kind][item.id] = item
        return items

    def _parse_file(
        self, kind: ContentKind, file_path: Path, kind_dir: Path
    ) -> ContentItem | None:
        """Parse one file, returning None if it is malformed."""
        try:
            text = file_path.read_text(encoding="utf-8").lstrip("\ufeff")
            metadata, body = parse_frontmatter(text)
            # Topic ids default to their path below topics/ (e.g. "testing/naming")
            fallback_id = file_path.relative_to(kind_dir).with_suffix("").as_posix()
            if kind is not ContentKind.TOPIC:
                fallback_id = file_path.stem
            item = item_from_metadata(kind, metadata, body, fallback_id=fallback_id)
            logger.debug(f"Loaded {kind.value} '{item.id}' from {file_path}")
            return item
        except Exception as e:
            logger.error(f"Error loading {kind.value} file {file_path}: {e}")
            return None

    async def enumerate_ids(self, kind: ContentKind) -> list[str]:
        if not self._initialized:
            await self.initialize()
        return list(self._items[ContentKind.parse(kind)].keys())

    async def fetch(self, kind: ContentKind, item_id: str) -> ContentItem | None:
        if not self._initialized:
            await self.initialize()
        return self._items[ContentKind.parse(kind)].get(item_id)

    def count_files(self) -> int:
        """Count content files on disk (used by consistency checks)."""
        total = 0
        for kind in self.supported_kinds:
            kind_dir = self.root / KIND_DIRECTORIES[kind]
            if kind_dir.is_dir():
                total += sum(1 for _ in kind_dir.rglob("*.md"))
        return total

    def count_items(self) -> int:
        return sum(len(self._items[kind]) for kind in self.supported_kinds)

    async def dispose(self) -> None:
        self._items = {kind: {} for kind in ContentKind}
        self._initialized = False
        await super().dispose()
