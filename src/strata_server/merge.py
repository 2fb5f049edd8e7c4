"""Conflict Resolution Strategies

When two layers define the same (kind, id), the resolution engine folds them
from lowest to highest precedence and combines each pair with the active
strategy:

    override - incoming (higher precedence) value replaces the existing one
    merge    - list fields unioned in first-seen order, scalars from incoming
    extend   - identity fields kept from the existing (base) value, auxiliary
               lists unioned, body appended under "Extended Capabilities"

Each content kind has its own field shape, so merge/extend are registered per
kind and dispatched generically by combine().
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from strata_server.content import (
    ContentItem,
    ContentKind,
    Specialist,
    SpecialistCollaboration,
    SpecialistExpertise,
    SpecialistPersona,
    Topic,
    Workflow,
)
from strata_server.errors import ConfigurationError

logger = logging.getLogger(__name__)

EXTENDED_CAPABILITIES_HEADING = "## Extended Capabilities"


class ConflictResolution(str, Enum):
    OVERRIDE = "override"
    MERGE = "merge"
    EXTEND = "extend"


@dataclass(frozen=True)
class ResolutionStrategy:
    """
    Conflict-resolution policy, fixed for the lifetime of an engine.

    Attributes:
        conflict_resolution: override, merge or extend
        inherit_collaborations: Under merge, union handoff/consultation lists
            instead of taking the incoming lists
        merge_expertise: Carried for reporting; expertise handling is
            determined by conflict_resolution
    """

    conflict_resolution: ConflictResolution = ConflictResolution.OVERRIDE
    inherit_collaborations: bool = True
    merge_expertise: bool = False

    def __post_init__(self):
        value = self.conflict_resolution
        if not isinstance(value, ConflictResolution):
            try:
                value = ConflictResolution(str(value).strip().lower())
            except ValueError:
                raise ConfigurationError(
                    f"Unknown conflict_resolution strategy: '{self.conflict_resolution}'. "
                    f"Available strategies: {[s.value for s in ConflictResolution]}"
                ) from None
            # Frozen dataclass: bypass __setattr__ to store the coerced enum
            object.__setattr__(self, "conflict_resolution", value)

        for name in ("inherit_collaborations", "merge_expertise"):
            flag = getattr(self, name)
            if not isinstance(flag, bool):
                raise ConfigurationError(
                    f"resolution.{name} must be true or false, got {flag!r}"
                )

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ResolutionStrategy":
        data = data or {}
        return cls(
            conflict_resolution=data.get("conflict_resolution")
            or ConflictResolution.OVERRIDE,
            inherit_collaborations=data.get("inherit_collaborations", True),
            merge_expertise=data.get("merge_expertise", False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflict_resolution": self.conflict_resolution.value,
            "inherit_collaborations": self.inherit_collaborations,
            "merge_expertise": self.merge_expertise,
        }


def union(*lists: Iterable[Any]) -> List[Any]:
    """Concatenate lists, dropping repeats while keeping first-seen order."""
    result = []
    seen = []
    for values in lists:
        for value in values or []:
            # Workflow phases may be dicts, so compare by equality not hash
            if value in seen:
                continue
            seen.append(value)
            result.append(value)
    return result


def append_extension(base_body: str, extension_body: str) -> str:
    """Append an extension body to the base body under a marked section."""
    if not extension_body:
        return base_body
    return f"{base_body}\n\n{EXTENDED_CAPABILITIES_HEADING}\n{extension_body}"


class KindMerger:
    """Merge and extend functions for one content kind."""

    def __init__(
        self,
        merge: Callable[[Any, Any, ResolutionStrategy], Any],
        extend: Callable[[Any, Any, ResolutionStrategy], Any],
    ):
        self.merge = merge
        self.extend = extend


# Merger registry, one entry per content kind
_MERGER_REGISTRY: Dict[ContentKind, KindMerger] = {}


def register_merger(kind: ContentKind, merge: Callable, extend: Callable) -> None:
    """
    Register merge/extend functions for a content kind.

    Args:
        kind: Content kind the functions apply to
        merge: (existing, incoming, strategy) -> combined item
        extend: (existing, incoming, strategy) -> combined item
    """
    _MERGER_REGISTRY[kind] = KindMerger(merge, extend)


def get_merger(kind: ContentKind) -> KindMerger:
    if kind not in _MERGER_REGISTRY:
        raise ConfigurationError(f"No merger registered for content kind: '{kind}'")
    return _MERGER_REGISTRY[kind]


def combine(
    existing: ContentItem, incoming: ContentItem, strategy: ResolutionStrategy
) -> ContentItem:
    """
    Combine two definitions of the same item.

    Args:
        existing: Value accumulated from lower-precedence layers
        incoming: Value from the next higher-precedence layer
        strategy: Active resolution strategy

    Returns:
        New combined item; neither input is modified. Provenance records the
        incoming layer as the winner and appends it to the contributors.
    """
    mode = strategy.conflict_resolution
    if mode is ConflictResolution.OVERRIDE:
        combined = replace(incoming)
    elif mode is ConflictResolution.MERGE:
        combined = get_merger(incoming.kind).merge(existing, incoming, strategy)
    else:
        combined = get_merger(incoming.kind).extend(existing, incoming, strategy)

    combined.source_layer = incoming.source_layer
    combined.layers = union(existing.layers, incoming.layers)
    return combined


# =============================================================================
# Specialists
# =============================================================================


def _merge_collaboration(
    base: SpecialistCollaboration,
    incoming: SpecialistCollaboration,
    inherit: bool,
) -> SpecialistCollaboration:
    if not inherit:
        return SpecialistCollaboration(
            natural_handoffs=list(incoming.natural_handoffs),
            team_consultations=list(incoming.team_consultations),
        )
    return SpecialistCollaboration(
        natural_handoffs=union(base.natural_handoffs, incoming.natural_handoffs),
        team_consultations=union(base.team_consultations, incoming.team_consultations),
    )


def merge_specialists(
    base: Specialist, incoming: Specialist, strategy: ResolutionStrategy
) -> Specialist:
    return replace(
        incoming,
        persona=SpecialistPersona(
            personality=union(base.persona.personality, incoming.persona.personality),
            communication_style=incoming.persona.communication_style,
            greeting=incoming.persona.greeting,
        ),
        expertise=SpecialistExpertise(
            primary=union(base.expertise.primary, incoming.expertise.primary),
            secondary=union(base.expertise.secondary, incoming.expertise.secondary),
        ),
        domains=union(base.domains, incoming.domains),
        when_to_use=union(base.when_to_use, incoming.when_to_use),
        collaboration=_merge_collaboration(
            base.collaboration, incoming.collaboration, strategy.inherit_collaborations
        ),
        related=union(base.related, incoming.related),
    )


def extend_specialist(
    base: Specialist, extension: Specialist, strategy: ResolutionStrategy
) -> Specialist:
    return replace(
        base,
        persona=SpecialistPersona(
            personality=union(base.persona.personality, extension.persona.personality),
            communication_style=base.persona.communication_style,
            greeting=base.persona.greeting,
        ),
        expertise=SpecialistExpertise(
            primary=list(base.expertise.primary),
            secondary=union(base.expertise.secondary, extension.expertise.secondary),
        ),
        domains=union(base.domains, extension.domains),
        when_to_use=union(base.when_to_use, extension.when_to_use),
        collaboration=_merge_collaboration(
            base.collaboration, extension.collaboration, inherit=True
        ),
        related=union(base.related, extension.related),
        body=append_extension(base.body, extension.body),
    )


# =============================================================================
# Topics
# =============================================================================


def merge_topics(base: Topic, incoming: Topic, strategy: ResolutionStrategy) -> Topic:
    return replace(
        incoming,
        tags=union(base.tags, incoming.tags),
        prerequisites=union(base.prerequisites, incoming.prerequisites),
    )


def extend_topic(base: Topic, extension: Topic, strategy: ResolutionStrategy) -> Topic:
    # Gating stays with the base article: an extension cannot widen or narrow
    # where the canonical topic is shown
    return replace(
        base,
        tags=union(base.tags, extension.tags),
        prerequisites=union(base.prerequisites, extension.prerequisites),
        body=append_extension(base.body, extension.body),
    )


# =============================================================================
# Workflows
# =============================================================================


def merge_workflows(
    base: Workflow, incoming: Workflow, strategy: ResolutionStrategy
) -> Workflow:
    # Phase order is structural, so a non-empty incoming phase list wins whole
    return replace(
        incoming,
        phases=list(incoming.phases) if incoming.phases else list(base.phases),
        specialist_hints=union(base.specialist_hints, incoming.specialist_hints),
    )


def extend_workflow(
    base: Workflow, extension: Workflow, strategy: ResolutionStrategy
) -> Workflow:
    return replace(
        base,
        phases=union(base.phases, extension.phases),
        specialist_hints=union(base.specialist_hints, extension.specialist_hints),
        body=append_extension(base.body, extension.body),
    )


register_merger(ContentKind.SPECIALIST, merge_specialists, extend_specialist)
register_merger(ContentKind.TOPIC, merge_topics, extend_topic)
register_merger(ContentKind.WORKFLOW, merge_workflows, extend_workflow)
