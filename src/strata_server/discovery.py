"""Specialist Discovery Engine

Ranks the resolved specialist set against free text.

Scoring:
    Each specialist is scored by a set of weighted lexical signals (see the
    *_WEIGHT constants). The same signals feed two entry points:

    suggest() - capped-confidence regime: raw / NORMALIZATION clamped to 1.0,
                with human-readable reasons; confidence <= MIN_CONFIDENCE is
                dropped. Used for user-facing suggestions.
    rank()    - raw regime: uncapped additive score, every specialist with a
                positive score. Used where only ordering matters.

Ties in either regime favour the specialist inserted later into the resolved
collection (i.e. the one from the higher- or equal-precedence layer).

Token Search:
    search_by_tokens() handles compound questions ("naming conventions and
    error handling and testing") that no single phrase matches wholesale. It
    is a bidirectional substring match on tokens, unranked.

State:
    The specialist snapshot and keyword index are built on first use and
    rebuilt by reload(), or automatically after the resolver's layer set or
    capability set changes.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from strata_server.content import ContentKind, Specialist
from strata_server.resolver import LayerResolutionEngine

logger = logging.getLogger(__name__)

# Signal weights (raw points)
WHEN_TO_USE_WEIGHT = 10
PRIMARY_EXPERTISE_WEIGHT = 8
SECONDARY_EXPERTISE_WEIGHT = 5
DOMAIN_WEIGHT = 6
HINT_DOMAIN_WEIGHT = 15
URGENCY_WEIGHT = 5
ROLE_MATCH_WEIGHT = 20

# Raw points that map to a confidence of 1.0
NORMALIZATION = 50
MIN_CONFIDENCE = 0.1

# Returned at a fixed confidence when the context is empty
DEFAULT_SPECIALISTS = ("sam-coder", "alex-architect", "chris-config")
DEFAULT_CONFIDENCE = 0.5

URGENT_TRAITS = ("quick", "direct", "efficient")

MIN_TOKEN_LENGTH = 4


def tokenize(text: str, min_length: int = MIN_TOKEN_LENGTH) -> List[str]:
    """
    Split a query into lower-cased alphanumeric tokens.

    Splits on whitespace and commas, strips non-alphanumeric characters and
    drops tokens shorter than ``min_length``.
    """
    tokens = []
    for raw in re.split(r"[\s,]+", (text or "").lower()):
        token = re.sub(r"[^a-z0-9]", "", raw)
        if len(token) >= min_length and token not in tokens:
            tokens.append(token)
    return tokens


@dataclass
class DiscoveryHints:
    """Structured hints supplied alongside the free text."""

    domain: Optional[str] = None
    urgency: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DiscoveryHints":
        data = data or {}
        return cls(
            domain=data.get("domain") or data.get("current_domain"),
            urgency=data.get("urgency"),
        )


@dataclass
class MatchSignal:
    """One contributing signal: which category matched, for how many points."""

    category: str
    weight: int
    reason: str


@dataclass
class Suggestion:
    """A specialist suggestion in the capped-confidence regime."""

    specialist: Specialist
    confidence: float
    reasons: List[str] = field(default_factory=list)
    keywords_matched: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "specialist_id": self.specialist.id,
            "title": self.specialist.title,
            "role": self.specialist.role,
            "emoji": self.specialist.emoji,
            "confidence": round(self.confidence, 2),
            "reasons": list(self.reasons),
            "keywords_matched": list(self.keywords_matched),
            "source_layer": self.specialist.source_layer,
        }


@dataclass
class DiscoveryResult:
    suggestions: List[Suggestion] = field(default_factory=list)
    alternatives: List[Suggestion] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suggestions": [s.to_dict() for s in self.suggestions],
            "alternatives": [s.to_dict() for s in self.alternatives],
        }


@dataclass
class RankedSpecialist:
    """A specialist in the raw regime: uncapped score plus its signals."""

    specialist: Specialist
    score: int
    signals: List[MatchSignal] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "specialist_id": self.specialist.id,
            "title": self.specialist.title,
            "score": self.score,
            "signals": [
                {"category": s.category, "weight": s.weight, "reason": s.reason}
                for s in self.signals
            ],
        }


class SpecialistDiscoveryEngine:
    """
    Suggests and searches specialists from a LayerResolutionEngine.

    Args:
        resolver: Engine whose merged specialist collection is ranked
        max_results: Default number of suggestions returned by suggest()
        default_specialists: Ids suggested, in order, for an empty context
    """

    def __init__(
        self,
        resolver: LayerResolutionEngine,
        max_results: int = 3,
        default_specialists: Optional[List[str]] = None,
    ):
        self.resolver = resolver
        self.max_results = max_results
        self.default_specialists = list(
            DEFAULT_SPECIALISTS if default_specialists is None else default_specialists
        )
        self._specialists: Optional[List[Specialist]] = None
        self._keyword_index: Dict[str, set] = {}
        self._epoch: Optional[int] = None

    @property
    def is_ready(self) -> bool:
        return (
            self._specialists is not None
            and self._epoch == self.resolver.cache.epoch
        )

    async def _ensure_ready(self) -> List[Specialist]:
        if not self.is_ready:
            await self._load()
        return self._specialists

    async def _load(self) -> None:
        epoch = self.resolver.cache.epoch
        resolved = await self.resolver.resolve_all(ContentKind.SPECIALIST)
        self._specialists = list(resolved.values())
        self._keyword_index = {
            specialist.id: self._build_keywords(specialist)
            for specialist in self._specialists
        }
        self._epoch = epoch
        logger.info(
            f"Discovery ready: {len(self._specialists)} specialists, "
            f"{sum(len(k) for k in self._keyword_index.values())} keywords indexed"
        )

    async def reload(self) -> int:
        """Drop the snapshot and keyword index and rebuild them."""
        self._specialists = None
        self._keyword_index = {}
        self._epoch = None
        await self._load()
        return len(self._specialists)

    # =========================================================================
    # Keyword index
    # =========================================================================

    @staticmethod
    def _build_keywords(specialist: Specialist) -> set:
        keywords = {specialist.id.lower(), specialist.id.lower().replace("-", " ")}
        phrases = [specialist.title, specialist.role, *specialist.when_to_use]
        for phrase in phrases:
            keywords.update(phrase.lower().split())
        hyphenated = [
            *specialist.expertise.primary,
            *specialist.expertise.secondary,
            *specialist.domains,
            *specialist.persona.personality,
        ]
        for term in hyphenated:
            keywords.update(re.split(r"[-\s]+", term.lower()))
        keywords.discard("")
        return keywords

    async def find_by_keyword(self, word: str) -> List[Specialist]:
        """Specialists whose keyword index contains ``word`` (single word)."""
        specialists = await self._ensure_ready()
        word = (word or "").strip().lower()
        if not word:
            return []
        return [s for s in specialists if word in self._keyword_index.get(s.id, set())]

    # =========================================================================
    # Scoring
    # =========================================================================

    def score_signals(
        self, specialist: Specialist, context: str, hints: DiscoveryHints
    ) -> List[MatchSignal]:
        """Compute every weighted signal ``specialist`` earns for ``context``."""
        signals = []
        text = (context or "").strip().lower()

        if text:
            for phrase in specialist.when_to_use:
                scenario = phrase.strip().lower()
                if scenario and (scenario in text or text in scenario):
                    signals.append(
                        MatchSignal("when_to_use", WHEN_TO_USE_WEIGHT, f"Ideal for {phrase}")
                    )

            for term in specialist.expertise.primary:
                if term.strip() and term.strip().lower() in text:
                    signals.append(
                        MatchSignal(
                            "primary_expertise",
                            PRIMARY_EXPERTISE_WEIGHT,
                            f"Primary expertise in {term}",
                        )
                    )

            for term in specialist.expertise.secondary:
                if term.strip() and term.strip().lower() in text:
                    signals.append(
                        MatchSignal(
                            "secondary_expertise",
                            SECONDARY_EXPERTISE_WEIGHT,
                            f"Secondary expertise in {term}",
                        )
                    )

            for domain in specialist.domains:
                if domain.strip() and domain.strip().lower() in text:
                    signals.append(
                        MatchSignal("domain", DOMAIN_WEIGHT, f"Domain specialist for {domain}")
                    )

            role = specialist.role.strip().lower()
            if role and role in text:
                signals.append(
                    MatchSignal("role", ROLE_MATCH_WEIGHT, f"Role matches: {specialist.role}")
                )

        if hints.domain:
            wanted = hints.domain.strip().lower()
            if wanted in (d.strip().lower() for d in specialist.domains):
                signals.append(
                    MatchSignal(
                        "hint_domain",
                        HINT_DOMAIN_WEIGHT,
                        f"Active in current domain: {hints.domain}",
                    )
                )

        if (hints.urgency or "").strip().lower() == "high":
            traits = [t.lower() for t in specialist.persona.personality]
            if any(marker in trait for trait in traits for marker in URGENT_TRAITS):
                signals.append(
                    MatchSignal("urgency", URGENCY_WEIGHT, "Suited to urgent requests")
                )

        return signals

    @staticmethod
    def _coerce_hints(hints: DiscoveryHints | Dict[str, Any] | None) -> DiscoveryHints:
        if isinstance(hints, DiscoveryHints):
            return hints
        return DiscoveryHints.from_dict(hints)

    async def suggest(
        self,
        context: str,
        hints: DiscoveryHints | Dict[str, Any] | None = None,
        max_results: Optional[int] = None,
        include_alternatives: bool = False,
    ) -> DiscoveryResult:
        """
        Suggest specialists for a free-text problem description.

        Args:
            context: User's problem description; when empty, the configured
                default specialists are returned at DEFAULT_CONFIDENCE
            hints: Optional structured hints (domain, urgency)
            max_results: Number of suggestions (defaults to engine setting)
            include_alternatives: Also return the next ``max_results`` matches

        Returns:
            DiscoveryResult; both lists empty when nothing clears the threshold
        """
        specialists = await self._ensure_ready()
        hints = self._coerce_hints(hints)
        limit = self.max_results if max_results is None else max_results
        if limit <= 0:
            return DiscoveryResult()

        if not (context or "").strip():
            return DiscoveryResult(suggestions=self._default_suggestions(specialists)[:limit])

        context_tokens = tokenize(context)
        scored = []
        for index, specialist in enumerate(specialists):
            signals = self.score_signals(specialist, context, hints)
            raw = sum(s.weight for s in signals)
            confidence = min(raw / NORMALIZATION, 1.0)
            if confidence <= MIN_CONFIDENCE:
                continue
            keywords = self._keyword_index.get(specialist.id, set())
            suggestion = Suggestion(
                specialist=specialist,
                confidence=confidence,
                reasons=[s.reason for s in signals],
                keywords_matched=[t for t in context_tokens if t in keywords],
            )
            scored.append((index, suggestion))

        scored.sort(key=lambda pair: (-pair[1].confidence, -pair[0]))
        ordered = [suggestion for _, suggestion in scored]

        result = DiscoveryResult(suggestions=ordered[:limit])
        if include_alternatives:
            result.alternatives = ordered[limit : limit * 2]

        logger.debug(
            f"suggest: {len(ordered)} specialists above threshold, "
            f"returning {len(result.suggestions)}"
        )
        return result

    def _default_suggestions(self, specialists: List[Specialist]) -> List[Suggestion]:
        by_id = {s.id: s for s in specialists}
        return [
            Suggestion(
                specialist=by_id[specialist_id],
                confidence=DEFAULT_CONFIDENCE,
                reasons=["Popular general-purpose specialist"],
            )
            for specialist_id in self.default_specialists
            if specialist_id in by_id
        ]

    async def rank(
        self,
        context: str,
        hints: DiscoveryHints | Dict[str, Any] | None = None,
        limit: Optional[int] = None,
    ) -> List[RankedSpecialist]:
        """Rank specialists by uncapped raw score (score > 0 only)."""
        specialists = await self._ensure_ready()
        hints = self._coerce_hints(hints)

        ranked = []
        for index, specialist in enumerate(specialists):
            signals = self.score_signals(specialist, context, hints)
            score = sum(s.weight for s in signals)
            if score > 0:
                ranked.append((index, RankedSpecialist(specialist, score, signals)))

        ranked.sort(key=lambda pair: (-pair[1].score, -pair[0]))
        results = [entry for _, entry in ranked]
        return results if limit is None else results[:limit]

    # =========================================================================
    # Lookup
    # =========================================================================

    @staticmethod
    def _searchable_fields(specialist: Specialist) -> List[str]:
        fields = [
            specialist.title,
            specialist.role,
            specialist.id,
            *specialist.expertise.primary,
            *specialist.expertise.secondary,
            *specialist.domains,
            *specialist.when_to_use,
        ]
        return [f.lower() for f in fields if f and f.strip()]

    async def search_by_tokens(self, query: str) -> List[Specialist]:
        """
        Match specialists against a compound query.

        A specialist matches if any query token is a substring of any
        searchable field, or any field is a substring of a token. Results are
        in resolution order.
        """
        specialists = await self._ensure_ready()
        tokens = tokenize(query)
        if not tokens:
            return []

        matches = []
        for specialist in specialists:
            fields = self._searchable_fields(specialist)
            if any(t in f or f in t for t in tokens for f in fields):
                matches.append(specialist)
        return matches

    async def get_specialist(self, specialist_id: str) -> Optional[Specialist]:
        specialists = await self._ensure_ready()
        for specialist in specialists:
            if specialist.id == specialist_id:
                return specialist
        return None

    async def find_by_name(self, partial_name: str) -> Optional[Specialist]:
        """
        Find a specialist from a partial or informal name.

        Tries, in order: exact id, id substring, first name (the id part
        before the first dash, so "dean" finds "dean-debug"), title substring.
        """
        specialists = await self._ensure_ready()
        term = (partial_name or "").strip().lower()
        if not term:
            return None

        matchers = [
            lambda s: s.id.lower() == term,
            lambda s: term in s.id.lower(),
            lambda s: s.id.split("-")[0].lower() == term,
            lambda s: term in s.title.lower(),
        ]
        for matcher in matchers:
            for specialist in specialists:
                if matcher(specialist):
                    return specialist
        return None

    async def specialists_by_domain(self, domain: str) -> List[Specialist]:
        specialists = await self._ensure_ready()
        wanted = (domain or "").strip().lower()
        return [
            s for s in specialists if wanted in (d.strip().lower() for d in s.domains)
        ]

    async def specialists_by_category(self) -> Dict[str, List[Specialist]]:
        """Group specialists by their first (primary) domain."""
        specialists = await self._ensure_ready()
        categories: Dict[str, List[Specialist]] = {}
        for specialist in specialists:
            category = specialist.domains[0] if specialist.domains else "general"
            categories.setdefault(category, []).append(specialist)
        return categories

    async def collaboration_options(
        self, specialist: Specialist | str
    ) -> Dict[str, List[Specialist]]:
        """
        Resolve a specialist's collaborators.

        Ids that no layer defines are skipped.
        """
        if isinstance(specialist, str):
            found = await self.get_specialist(specialist)
            if found is None:
                return {"natural_handoffs": [], "team_consultations": []}
            specialist = found

        options: Dict[str, List[Specialist]] = {}
        for group, ids in (
            ("natural_handoffs", specialist.collaboration.natural_handoffs),
            ("team_consultations", specialist.collaboration.team_consultations),
        ):
            resolved = []
            for collaborator_id in ids:
                collaborator = await self.resolver.resolve_one(
                    ContentKind.SPECIALIST, collaborator_id
                )
                if collaborator is None:
                    logger.debug(
                        f"Collaborator '{collaborator_id}' of '{specialist.id}' not found"
                    )
                    continue
                resolved.append(collaborator)
            options[group] = resolved
        return options
