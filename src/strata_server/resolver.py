"""Layer Resolution Engine

Orchestrates an ordered set of content layers and answers two questions:

    resolve_one(kind, id) - "whichever layer wins": the item from the
        highest-precedence enabled layer that defines it (cached)
    resolve_all(kind)     - the merged collection across every layer, with
        conflicts combined by the active ResolutionStrategy (never cached)

Precedence:
    Lower priority value = higher precedence. Ties keep registration order.

Fold Order:
    resolve_all() reads all layers concurrently, then folds their items from
    LOWEST to HIGHEST precedence, so under "override" the last write (the
    highest-precedence layer) wins. Fold order never depends on which layer
    answered first.

Failure Handling:
    A layer that raises, or returns something that is not an item of the
    requested kind, is logged, recorded as a LayerFailure and skipped. The
    remaining layers still resolve. Nothing here raises for missing content.

Capability Gating:
    Conditional topics are filtered against the engine's capability set at
    every listing boundary (see capabilities.py).
"""

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from strata_server.cache import ResolutionCache
from strata_server.capabilities import is_available, normalize_capabilities
from strata_server.content import ContentItem, ContentKind
from strata_server.errors import ConfigurationError, LayerFailure
from strata_server.layers import ContentLayer, LayerLoadResult
from strata_server.merge import ResolutionStrategy, combine

logger = logging.getLogger(__name__)

# Mapping of id -> item, insertion order = fold order
ResolvedCollection = Dict[str, ContentItem]

# Sentinel for "this layer failed" (distinct from None = "not defined here")
_FAILED = object()


class LayerResolutionEngine:
    """
    Resolves content across prioritized layers.

    One engine is constructed per logical server instance; it owns its layer
    registry, resolution cache and capability set. The engine holds no locks:
    overlapping callers must be serialized by the host.

    Attributes:
        strategy: Conflict-resolution policy (immutable)
        cache: Single-item resolution cache
        failures: Most recent LayerFailure per layer name
    """

    def __init__(
        self,
        strategy: Optional[ResolutionStrategy] = None,
        layers: Iterable[ContentLayer] = (),
        capabilities: Optional[Iterable[str]] = None,
    ):
        self.strategy = strategy or ResolutionStrategy()
        if not isinstance(self.strategy, ResolutionStrategy):
            raise ConfigurationError(
                f"strategy must be a ResolutionStrategy, got {type(self.strategy).__name__}"
            )
        self.cache = ResolutionCache()
        self.failures: Dict[str, LayerFailure] = {}

        self._layers: Dict[str, ContentLayer] = {}
        self._registration_seq: Dict[str, int] = {}
        self._next_seq = 0
        self._ordered: List[ContentLayer] = []
        self._capabilities = normalize_capabilities(capabilities)
        self._load_results: Dict[str, LayerLoadResult] = {}
        self._collect_timings: Dict[str, Dict[str, float]] = {}

        for layer in layers:
            self.register(layer)

    # =========================================================================
    # Layer registry
    # =========================================================================

    def register(self, layer: ContentLayer) -> None:
        """
        Add a layer and recompute precedence ordering.

        Re-registering a name with the same supported kinds replaces the
        earlier layer in place (it keeps the earlier registration slot for
        tie-breaking). Re-registering with different supported kinds is a
        configuration error.

        Raises:
            ConfigurationError: If the name is taken by a layer with a
                different set of supported kinds
        """
        existing = self._layers.get(layer.name)
        if existing is not None:
            if existing.supported_kinds != layer.supported_kinds:
                raise ConfigurationError(
                    f"Layer '{layer.name}' is already registered with kinds "
                    f"{sorted(k.value for k in existing.supported_kinds)}; "
                    f"cannot re-register with "
                    f"{sorted(k.value for k in layer.supported_kinds)}"
                )
            logger.warning(
                f"Layer '{layer.name}' re-registered - replacing previous definition "
                f"(priority {existing.priority} -> {layer.priority})"
            )
            self._load_results.pop(layer.name, None)
        else:
            self._registration_seq[layer.name] = self._next_seq
            self._next_seq += 1

        self._layers[layer.name] = layer
        self._update_layer_order()
        self.cache.invalidate(f"layer '{layer.name}' registered")
        logger.info(f"Registered layer '{layer.name}' (priority {layer.priority})")

    def unregister(self, name: str) -> bool:
        """Remove a layer by name. Returns False if it was not registered."""
        if name not in self._layers:
            return False
        del self._layers[name]
        del self._registration_seq[name]
        self._load_results.pop(name, None)
        self._collect_timings.pop(name, None)
        self.failures.pop(name, None)
        self._update_layer_order()
        self.cache.invalidate(f"layer '{name}' unregistered")
        logger.info(f"Unregistered layer '{name}'")
        return True

    def _update_layer_order(self) -> None:
        self._ordered = sorted(
            self._layers.values(),
            key=lambda layer: (layer.priority, self._registration_seq[layer.name]),
        )

    @property
    def layers(self) -> List[ContentLayer]:
        """Registered layers, highest precedence first."""
        return list(self._ordered)

    def get_layer(self, name: str) -> Optional[ContentLayer]:
        return self._layers.get(name)

    def _eligible_layers(self, kind: ContentKind) -> List[ContentLayer]:
        return [
            layer for layer in self._ordered if layer.enabled and layer.supports(kind)
        ]

    # =========================================================================
    # Capabilities
    # =========================================================================

    @property
    def capabilities(self) -> tuple:
        return self._capabilities

    def set_capabilities(self, capabilities: Iterable[str] | str | None) -> tuple:
        """
        Replace the capability set wholesale.

        Always starts a new cache epoch: which topics qualify may change even
        though no layer content did.
        """
        previous = self._capabilities
        self._capabilities = normalize_capabilities(capabilities)
        self.cache.invalidate("capabilities changed")
        logger.info(
            f"Capabilities updated: {list(previous)} -> {list(self._capabilities)}"
        )
        return self._capabilities

    def filter_by_capability(self, item: ContentItem) -> bool:
        """Return True if ``item`` is visible under the current capabilities."""
        return is_available(item, self._capabilities)

    # =========================================================================
    # Initialization
    # =========================================================================

    async def initialize(self, force: bool = False) -> Dict[str, LayerLoadResult]:
        """
        Initialize layers concurrently.

        Args:
            force: Re-initialize layers that were already initialized

        Returns:
            Load result per layer name (failed layers have success=False)
        """
        pending = [
            layer
            for layer in self._ordered
            if force or layer.name not in self._load_results
        ]
        if pending:
            results = await asyncio.gather(
                *(self._initialize_layer(layer, force) for layer in pending)
            )
            for result in results:
                self._load_results[result.layer_name] = result

            loaded = sum(1 for r in results if r.success)
            logger.info(f"Initialized {loaded}/{len(results)} layers")

        return dict(self._load_results)

    async def _initialize_layer(
        self, layer: ContentLayer, force: bool
    ) -> LayerLoadResult:
        if not layer.enabled:
            return LayerLoadResult(
                layer_name=layer.name, success=False, error="Layer disabled"
            )
        start_time = time.time()
        try:
            return await layer.initialize(force=force)
        except Exception as e:
            self._record_failure(layer, "initialize", e)
            return LayerLoadResult(
                layer_name=layer.name,
                success=False,
                load_time_ms=(time.time() - start_time) * 1000,
                error=str(e),
            )

    async def refresh(self) -> Dict[str, LayerLoadResult]:
        """Re-read every layer and start a new cache epoch."""
        self.cache.clear()
        self.failures.clear()
        results = await self.initialize(force=True)
        # Layers may have changed while loading; anything cached meanwhile is stale
        self.cache.invalidate("refresh complete")
        return results

    async def dispose(self) -> None:
        for layer in self._ordered:
            await layer.dispose()
        self._load_results.clear()
        self._collect_timings.clear()
        self.cache.clear()

    # =========================================================================
    # Resolution
    # =========================================================================

    def _record_failure(
        self, layer: ContentLayer, operation: str, error: BaseException
    ) -> None:
        failure = LayerFailure(layer.name, operation, error)
        self.failures[layer.name] = failure
        logger.error(f"{failure} - skipping layer", exc_info=error)

    def _check_item(
        self, layer: ContentLayer, kind: ContentKind, item: Any, expected_id: str
    ) -> ContentItem:
        """Validate an item returned by a layer, raising if it is malformed."""
        if not isinstance(item, ContentItem) or item.kind is not kind:
            raise TypeError(
                f"expected a {kind.value} item for '{expected_id}', "
                f"got {type(item).__name__}"
            )
        if item.id != expected_id:
            raise ValueError(
                f"requested {kind.value} '{expected_id}' but layer returned '{item.id}'"
            )
        return item

    async def _fetch_from_layer(
        self, layer: ContentLayer, kind: ContentKind, item_id: str
    ) -> Any:
        try:
            item = await layer.fetch(kind, item_id)
            if item is None:
                return None
            return self._check_item(layer, kind, item, item_id)
        except Exception as e:
            self._record_failure(layer, "fetch", e)
            return _FAILED

    async def resolve_one(
        self, kind: ContentKind | str, item_id: str
    ) -> Optional[ContentItem]:
        """
        Resolve one item with override semantics.

        Args:
            kind: Content kind
            item_id: Item id (unique within the kind)

        Returns:
            The item from the highest-precedence enabled layer defining it,
            or None if no layer defines it or the winning item is gated out
            by the capability set.
        """
        kind = ContentKind.parse(kind)
        await self.initialize()

        cached = self.cache.get(kind, item_id)
        if cached is not None:
            logger.debug(f"Cache hit: {kind.value}/{item_id}")
            return cached

        epoch = self.cache.epoch
        layers = self._eligible_layers(kind)
        # Fetch from every layer at once; precedence picks the winner afterwards
        results = await asyncio.gather(
            *(self._fetch_from_layer(layer, kind, item_id) for layer in layers)
        )

        defining = [
            (layer, item)
            for layer, item in zip(layers, results)
            if item is not None and item is not _FAILED
        ]
        if not defining:
            return None

        winner_layer, winner = defining[0]
        resolved = replace(
            winner,
            source_layer=winner_layer.name,
            # Contributors listed lowest precedence first, as in resolve_all()
            layers=[layer.name for layer, _ in reversed(defining)],
        )

        if not self.filter_by_capability(resolved):
            logger.debug(
                f"{kind.value}/{item_id} hidden by capability gating "
                f"(capabilities: {list(self._capabilities)})"
            )
            return None

        # A failed higher-precedence layer may hold the real winner; don't memoize
        failed = any(result is _FAILED for result in results)
        if not failed and epoch == self.cache.epoch:
            self.cache.put(kind, item_id, resolved)
        return resolved

    async def _collect_layer(
        self, layer: ContentLayer, kind: ContentKind
    ) -> Optional[List[ContentItem]]:
        """Read every item of ``kind`` from one layer (None if the layer failed)."""
        start_time = time.time()
        try:
            ids = list(dict.fromkeys(await layer.enumerate_ids(kind)))
            fetched = await asyncio.gather(
                *(layer.fetch(kind, item_id) for item_id in ids)
            )
            items = []
            for item_id, item in zip(ids, fetched):
                if item is None:
                    continue
                items.append(self._check_item(layer, kind, item, item_id))
        except Exception as e:
            self._record_failure(layer, f"collect {kind.value}", e)
            return None
        finally:
            elapsed_ms = (time.time() - start_time) * 1000
            self._collect_timings.setdefault(layer.name, {})[kind.value] = elapsed_ms
        return items

    async def resolve_all(self, kind: ContentKind | str) -> ResolvedCollection:
        """
        Resolve the full merged collection for a kind.

        Every id defined by any enabled layer supporting ``kind`` appears
        exactly once (minus capability-gated topics), combined across layers
        by the active strategy.
        """
        kind = ContentKind.parse(kind)
        await self.initialize()

        layers = self._eligible_layers(kind)
        collected = await asyncio.gather(
            *(self._collect_layer(layer, kind) for layer in layers)
        )

        merged: ResolvedCollection = {}
        # Fold lowest precedence first so higher-precedence layers write last
        for layer, items in reversed(list(zip(layers, collected))):
            if items is None:
                continue
            for item in items:
                stamped = replace(item, source_layer=layer.name, layers=[layer.name])
                if item.id in merged:
                    merged[item.id] = combine(merged[item.id], stamped, self.strategy)
                else:
                    merged[item.id] = stamped

        return {
            item_id: item
            for item_id, item in merged.items()
            if self.filter_by_capability(item)
        }

    async def get_items_from_layer(
        self, layer_name: str, kind: ContentKind | str
    ) -> List[ContentItem]:
        """List one layer's own items of ``kind`` (unmerged, capability-filtered)."""
        kind = ContentKind.parse(kind)
        layer = self._layers.get(layer_name)
        if layer is None or not layer.enabled or not layer.supports(kind):
            return []
        await self.initialize()

        items = await self._collect_layer(layer, kind)
        if items is None:
            return []
        return [
            replace(item, source_layer=layer.name, layers=[layer.name])
            for item in items
            if self.filter_by_capability(item)
        ]

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def get_layer_statistics(self) -> Dict[str, Any]:
        """Per-layer counts, load and collect timings, and cache statistics."""
        layer_stats = []
        totals: Dict[str, int] = {}
        for precedence, layer in enumerate(self._ordered):
            stats = layer.get_statistics()
            stats["precedence"] = precedence
            stats["collect_time_ms"] = {
                kind: round(ms, 2)
                for kind, ms in self._collect_timings.get(layer.name, {}).items()
            }
            failure = self.failures.get(layer.name)
            stats["last_failure"] = failure.to_dict() if failure else None
            layer_stats.append(stats)

            if layer.enabled:
                for kind, count in stats.get("content_counts", {}).items():
                    totals[kind] = totals.get(kind, 0) + count

        return {
            "layers": layer_stats,
            "total": {
                "layers": len(self._ordered),
                "enabled_layers": sum(1 for layer in self._ordered if layer.enabled),
                "content_counts": totals,
                "failed_layers": sorted(self.failures.keys()),
            },
            "cache": self.cache.get_stats(),
            "capabilities": list(self._capabilities),
            "strategy": self.strategy.to_dict(),
        }
