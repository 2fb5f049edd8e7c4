"""Content Item Model

Defines the three kinds of content a layer can provide (topics, specialists,
workflows) and how each is built from Markdown + YAML frontmatter.

Frontmatter Format:
---
id: dean-debug
title: Dean Debug
role: Performance Specialist
expertise:
  primary: [performance tuning]
  secondary: [profiling]
when_to_use: [performance issues]
---

# Markdown body

Every item shares the identity contract ``(kind, id)``. Ids are unique within
a kind, not globally: a topic and a specialist may share an id.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar

import yaml

logger = logging.getLogger(__name__)


class ContentKind(str, Enum):
    """Kinds of content a layer can hold."""

    TOPIC = "topic"
    SPECIALIST = "specialist"
    WORKFLOW = "workflow"

    @classmethod
    def parse(cls, value: "str | ContentKind") -> "ContentKind":
        """Accept enum members, values, and plural directory names."""
        if isinstance(value, ContentKind):
            return value
        normalized = str(value).strip().lower()
        if normalized.endswith("s"):
            normalized = normalized[:-1]
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(
                f"Unknown content kind: '{value}'. "
                f"Expected one of: {[k.value for k in cls]}"
            ) from None


def _as_str(value: Any) -> str:
    """Coerce a frontmatter scalar into a string (empty keys parse as None)."""
    if value is None:
        return ""
    return str(value)


def _as_list(value: Any) -> list[str]:
    """Coerce a frontmatter value into a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v is not None]


def parse_frontmatter(text: str) -> tuple[dict, str]:
    """
    Split a Markdown document into YAML frontmatter and body.

    Documents without frontmatter yield empty metadata and the full text.

    Raises:
        yaml.YAMLError: If the frontmatter block is not valid YAML
        ValueError: If the frontmatter is valid YAML but not a mapping
    """
    match = re.match(r"^---\s*\n(.*?)\n---\s*\n?(.*)$", text, re.DOTALL)
    if not match:
        return {}, text.strip()

    metadata = yaml.safe_load(match.group(1)) or {}
    if not isinstance(metadata, dict):
        raise ValueError("Frontmatter must be a mapping")
    return metadata, match.group(2).strip()


@dataclass
class ContentItem:
    """
    Base for all content kinds.

    Attributes:
        id: Identifier, unique within the item's kind
        source_layer: Name of the layer whose value won resolution
        layers: Names of every layer that contributed, lowest precedence first
    """

    kind: ClassVar[ContentKind]

    id: str
    source_layer: str = ""
    layers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass
class Topic(ContentItem):
    """An atomic knowledge article."""

    kind: ClassVar[ContentKind] = ContentKind.TOPIC

    title: str = ""
    body: str = ""
    tags: list[str] = field(default_factory=list)
    domain: str = ""
    difficulty: str = ""
    prerequisites: list[str] = field(default_factory=list)
    conditional_capability: str | None = None
    conditional_capability_missing: str | None = None

    @classmethod
    def from_metadata(cls, metadata: dict, body: str, fallback_id: str = "") -> "Topic":
        domain = metadata.get("domain", "")
        # Shared topics may list several domains; the first one is canonical
        if isinstance(domain, list):
            domain = domain[0] if domain else ""
        return cls(
            id=str(metadata.get("id") or fallback_id),
            title=_as_str(metadata.get("title")),
            body=body,
            tags=_as_list(metadata.get("tags")),
            domain=str(domain or ""),
            difficulty=_as_str(metadata.get("difficulty")),
            prerequisites=_as_list(metadata.get("prerequisites")),
            conditional_capability=metadata.get("conditional_capability"),
            conditional_capability_missing=metadata.get(
                "conditional_capability_missing"
            ),
        )


@dataclass
class SpecialistPersona:
    personality: list[str] = field(default_factory=list)
    communication_style: str = ""
    greeting: str = ""


@dataclass
class SpecialistExpertise:
    primary: list[str] = field(default_factory=list)
    secondary: list[str] = field(default_factory=list)


@dataclass
class SpecialistCollaboration:
    natural_handoffs: list[str] = field(default_factory=list)
    team_consultations: list[str] = field(default_factory=list)


@dataclass
class Specialist(ContentItem):
    """A specialist persona agents can hand a problem to."""

    kind: ClassVar[ContentKind] = ContentKind.SPECIALIST

    title: str = ""
    role: str = ""
    team: str = ""
    emoji: str = ""
    persona: SpecialistPersona = field(default_factory=SpecialistPersona)
    expertise: SpecialistExpertise = field(default_factory=SpecialistExpertise)
    domains: list[str] = field(default_factory=list)
    when_to_use: list[str] = field(default_factory=list)
    collaboration: SpecialistCollaboration = field(
        default_factory=SpecialistCollaboration
    )
    related: list[str] = field(default_factory=list)
    body: str = ""

    @classmethod
    def from_metadata(
        cls, metadata: dict, body: str, fallback_id: str = ""
    ) -> "Specialist":
        persona = metadata.get("persona") or {}
        expertise = metadata.get("expertise") or {}
        collaboration = metadata.get("collaboration") or {}
        return cls(
            # 'specialist_id' is the historical field name
            id=str(
                metadata.get("id") or metadata.get("specialist_id") or fallback_id
            ),
            title=_as_str(metadata.get("title")),
            role=_as_str(metadata.get("role")),
            team=_as_str(metadata.get("team")),
            emoji=_as_str(metadata.get("emoji")),
            persona=SpecialistPersona(
                personality=_as_list(persona.get("personality")),
                communication_style=_as_str(persona.get("communication_style")),
                greeting=_as_str(persona.get("greeting")),
            ),
            expertise=SpecialistExpertise(
                primary=_as_list(expertise.get("primary")),
                secondary=_as_list(expertise.get("secondary")),
            ),
            domains=_as_list(metadata.get("domains")),
            when_to_use=_as_list(metadata.get("when_to_use")),
            collaboration=SpecialistCollaboration(
                natural_handoffs=_as_list(collaboration.get("natural_handoffs")),
                team_consultations=_as_list(collaboration.get("team_consultations")),
            ),
            related=_as_list(
                metadata.get("related") or metadata.get("related_specialists")
            ),
            body=body,
        )

    @property
    def display_name(self) -> str:
        return self.title or self.id


@dataclass
class Workflow(ContentItem):
    """A workflow recipe: an ordered list of phases plus specialist hints."""

    kind: ClassVar[ContentKind] = ContentKind.WORKFLOW

    type: str = ""
    name: str = ""
    description: str = ""
    phases: list[Any] = field(default_factory=list)
    specialist_hints: list[str] = field(default_factory=list)
    body: str = ""

    @classmethod
    def from_metadata(
        cls, metadata: dict, body: str, fallback_id: str = ""
    ) -> "Workflow":
        return cls(
            id=str(metadata.get("id") or fallback_id),
            type=_as_str(metadata.get("type") or metadata.get("workflow_type")),
            name=_as_str(metadata.get("name")),
            description=_as_str(metadata.get("description")),
            phases=list(metadata.get("phases") or []),
            specialist_hints=_as_list(metadata.get("specialist_hints")),
            body=body,
        )


ITEM_TYPES: dict[ContentKind, type] = {
    ContentKind.TOPIC: Topic,
    ContentKind.SPECIALIST: Specialist,
    ContentKind.WORKFLOW: Workflow,
}


def item_from_metadata(
    kind: ContentKind, metadata: dict, body: str, fallback_id: str = ""
) -> ContentItem:
    """Build the item variant for ``kind`` from frontmatter metadata."""
    return ITEM_TYPES[ContentKind.parse(kind)].from_metadata(
        metadata, body, fallback_id=fallback_id
    )
