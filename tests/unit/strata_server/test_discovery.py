"""Unit tests for SpecialistDiscoveryEngine."""

import itertools

import pytest

from strata_server.discovery import (
    DEFAULT_CONFIDENCE,
    DOMAIN_WEIGHT,
    HINT_DOMAIN_WEIGHT,
    MIN_CONFIDENCE,
    NORMALIZATION,
    PRIMARY_EXPERTISE_WEIGHT,
    ROLE_MATCH_WEIGHT,
    SECONDARY_EXPERTISE_WEIGHT,
    URGENCY_WEIGHT,
    WHEN_TO_USE_WEIGHT,
    DiscoveryHints,
    SpecialistDiscoveryEngine,
    tokenize,
)
from strata_server.layers import InMemoryLayer
from tests.helpers import make_specialist


@pytest.fixture
def roster():
    return [
        make_specialist(
            "dean-debug",
            title="Dean Debug",
            role="Performance Specialist",
            when_to_use=["performance issues", "slow queries"],
            primary=["performance tuning"],
            secondary=["profiling"],
            domains=["performance"],
            personality=["methodical", "quick to isolate"],
            handoffs=["alex-architect", "ghost-specialist"],
            consultations=["sam-coder"],
        ),
        make_specialist(
            "sam-coder",
            title="Sam Coder",
            role="Implementation Specialist",
            when_to_use=["writing new features"],
            primary=["implementation"],
            secondary=["naming conventions", "error handling"],
            domains=["development"],
            personality=["pragmatic", "direct"],
        ),
        make_specialist(
            "alex-architect",
            title="Alex Architect",
            role="Solution Architect",
            when_to_use=["designing a new module"],
            primary=["system design"],
            domains=["architecture"],
        ),
        make_specialist(
            "quinn-tester",
            title="Quinn Tester",
            role="Testing Specialist",
            when_to_use=["writing tests"],
            primary=["test design"],
            domains=["testing"],
        ),
    ]


@pytest.fixture
def discovery(make_engine, roster):
    engine = make_engine(InMemoryLayer("embedded", 1000, items=roster))
    return SpecialistDiscoveryEngine(engine)


class TestTokenize:
    """Tests for query tokenization."""

    def test_drops_short_tokens_and_punctuation(self):
        assert tokenize("Naming, AND error-handling; in tests!") == [
            "naming",
            "errorhandling",
            "tests",
        ]

    def test_empty(self):
        assert tokenize("   ") == []


class TestScoreSignals:
    """Tests for the weighted-signal core."""

    def _signals(self, specialist, context, **hints):
        engine = SpecialistDiscoveryEngine(resolver=None)
        return engine.score_signals(specialist, context, DiscoveryHints(**hints))

    def test_each_signal_weight(self, roster):
        dean = roster[0]

        signals = self._signals(
            dean,
            "performance issues with profiling in my performance tuning work "
            "- need a performance specialist",
            domain="Performance",
            urgency="high",
        )

        weights = {s.category: s.weight for s in signals}
        assert weights == {
            "when_to_use": WHEN_TO_USE_WEIGHT,
            "primary_expertise": PRIMARY_EXPERTISE_WEIGHT,
            "secondary_expertise": SECONDARY_EXPERTISE_WEIGHT,
            "domain": DOMAIN_WEIGHT,
            "role": ROLE_MATCH_WEIGHT,
            "hint_domain": HINT_DOMAIN_WEIGHT,
            "urgency": URGENCY_WEIGHT,
        }

    def test_context_inside_phrase_matches(self, roster):
        signals = self._signals(roster[0], "slow")

        assert [s.reason for s in signals] == ["Ideal for slow queries"]

    def test_empty_context_yields_no_text_signals(self, roster):
        assert self._signals(roster[0], "   ") == []

    def test_hints_apply_without_text(self, roster):
        signals = self._signals(roster[0], "", domain="performance")

        assert [s.category for s in signals] == ["hint_domain"]

    def test_urgency_needs_matching_trait(self, roster):
        alex = roster[2]

        assert self._signals(alex, "", urgency="high") == []


@pytest.mark.asyncio
class TestSuggest:
    """Tests for the capped-confidence regime."""

    async def test_best_match_first(self, discovery):
        result = await discovery.suggest("my app has performance issues")

        assert result.suggestions[0].specialist.id == "dean-debug"
        assert "Ideal for performance issues" in result.suggestions[0].reasons

    async def test_confidence_is_normalized_and_capped(self, discovery):
        result = await discovery.suggest(
            "performance issues, slow queries, performance tuning, profiling "
            "for the performance specialist"
        )

        assert result.suggestions[0].confidence == 1.0

    async def test_confidence_scale(self, discovery):
        result = await discovery.suggest("writing new features")

        sam = result.suggestions[0]
        assert sam.specialist.id == "sam-coder"
        assert sam.confidence == pytest.approx(WHEN_TO_USE_WEIGHT / NORMALIZATION)

    async def test_threshold_excludes_weak_matches(self, discovery):
        # A lone secondary expertise hit lands exactly on the threshold
        result = await discovery.suggest("something about profiling")

        assert result.suggestions == []
        assert all(s.confidence > MIN_CONFIDENCE for s in result.suggestions)

    async def test_no_match_is_empty_not_error(self, discovery):
        result = await discovery.suggest("quantum basket weaving")

        assert result.suggestions == []
        assert result.alternatives == []

    async def test_max_results_and_alternatives(self, discovery):
        result = await discovery.suggest(
            "writing new features, designing a new module, writing tests",
            max_results=1,
            include_alternatives=True,
        )

        assert len(result.suggestions) == 1
        assert len(result.alternatives) == 1

    async def test_ties_favour_later_insertion(self, discovery):
        # All three score exactly one when_to_use hit
        result = await discovery.suggest(
            "writing new features designing a new module writing tests", max_results=3
        )

        assert [s.specialist.id for s in result.suggestions] == [
            "quinn-tester",
            "alex-architect",
            "sam-coder",
        ]

    async def test_keywords_matched_reported(self, discovery):
        result = await discovery.suggest("performance issues in profiling")

        assert "performance" in result.suggestions[0].keywords_matched

    async def test_hints_accepted_as_dict(self, discovery):
        result = await discovery.suggest(
            "slow queries", hints={"domain": "performance", "urgency": "high"}
        )

        dean = result.suggestions[0]
        assert dean.confidence == pytest.approx(
            (WHEN_TO_USE_WEIGHT + HINT_DOMAIN_WEIGHT + URGENCY_WEIGHT) / NORMALIZATION
        )

    async def test_zero_max_results(self, discovery):
        result = await discovery.suggest("performance issues", max_results=0)

        assert result.suggestions == []

    async def test_empty_context_returns_defaults(self, discovery):
        result = await discovery.suggest("   ")

        assert [s.specialist.id for s in result.suggestions] == [
            "sam-coder",
            "alex-architect",
        ]
        assert all(s.confidence == DEFAULT_CONFIDENCE for s in result.suggestions)
        assert result.suggestions[0].reasons == ["Popular general-purpose specialist"]
        assert result.suggestions[0].keywords_matched == []

    async def test_configured_defaults_in_order(self, make_engine, roster):
        discovery = SpecialistDiscoveryEngine(
            make_engine(InMemoryLayer("embedded", 1000, items=roster)),
            default_specialists=["quinn-tester", "ghost-specialist", "dean-debug"],
        )

        result = await discovery.suggest("", max_results=1)

        assert [s.specialist.id for s in result.suggestions] == ["quinn-tester"]

    async def test_no_configured_defaults(self, make_engine, roster):
        discovery = SpecialistDiscoveryEngine(
            make_engine(InMemoryLayer("embedded", 1000, items=roster)),
            default_specialists=[],
        )

        result = await discovery.suggest("")

        assert result.suggestions == []


@pytest.mark.asyncio
class TestRank:
    """Tests for the raw regime."""

    async def test_scores_are_uncapped(self, discovery):
        ranked = await discovery.rank(
            "performance issues, slow queries, performance tuning, profiling "
            "for the performance specialist"
        )

        assert ranked[0].specialist.id == "dean-debug"
        assert ranked[0].score > NORMALIZATION

    async def test_only_positive_scores(self, discovery):
        ranked = await discovery.rank("writing tests")

        assert [r.specialist.id for r in ranked] == ["quinn-tester"]

    async def test_adding_matching_phrase_increases_score(self, make_engine, roster):
        query = "flaky pipeline"
        quinn = roster[3]
        with_phrase = make_specialist(
            "quinn-tester",
            title=quinn.title,
            role=quinn.role,
            when_to_use=quinn.when_to_use + [query],
            primary=quinn.expertise.primary,
            domains=quinn.domains,
        )
        without_engine = SpecialistDiscoveryEngine(
            make_engine(InMemoryLayer("l", 1, items=[quinn]))
        )
        with_engine = SpecialistDiscoveryEngine(
            make_engine(InMemoryLayer("l", 1, items=[with_phrase]))
        )

        before = await without_engine.rank(f"{query} testing specialist")
        after = await with_engine.rank(f"{query} testing specialist")

        assert after[0].score > before[0].score

    async def test_limit(self, discovery):
        ranked = await discovery.rank("performance specialist implementation", limit=1)

        assert len(ranked) == 1


@pytest.mark.asyncio
class TestSearchByTokens:
    """Tests for compound token search."""

    async def test_compound_query_matches_each_clause(self, discovery):
        matches = await discovery.search_by_tokens(
            "naming conventions AND architecture AND testing"
        )

        assert {s.id for s in matches} == {"sam-coder", "alex-architect", "quinn-tester"}

    async def test_order_independent(self, discovery):
        words = ["naming", "profiling", "architecture"]
        results = set()
        for permutation in itertools.permutations(words):
            matches = await discovery.search_by_tokens(" ".join(permutation))
            results.add(tuple(s.id for s in matches))

        assert len(results) == 1

    async def test_results_in_resolution_order(self, discovery):
        matches = await discovery.search_by_tokens("testing performance")

        assert [s.id for s in matches] == ["dean-debug", "quinn-tester"]

    async def test_short_tokens_ignored(self, discovery):
        assert await discovery.search_by_tokens("a an the of") == []


@pytest.mark.asyncio
class TestLookup:
    """Tests for name, domain, keyword and collaboration lookup."""

    async def test_find_by_name_strategies(self, discovery):
        assert (await discovery.find_by_name("dean-debug")).id == "dean-debug"
        assert (await discovery.find_by_name("architect")).id == "alex-architect"
        assert (await discovery.find_by_name("Quinn")).id == "quinn-tester"
        assert (await discovery.find_by_name("sam coder")).id == "sam-coder"
        assert await discovery.find_by_name("nobody") is None

    async def test_get_specialist(self, discovery):
        assert (await discovery.get_specialist("sam-coder")).title == "Sam Coder"
        assert await discovery.get_specialist("sam") is None

    async def test_find_by_keyword(self, discovery):
        matches = await discovery.find_by_keyword("Pragmatic")

        assert [s.id for s in matches] == ["sam-coder"]

    async def test_specialists_by_domain(self, discovery):
        matches = await discovery.specialists_by_domain("Testing")

        assert [s.id for s in matches] == ["quinn-tester"]

    async def test_specialists_by_category(self, discovery):
        categories = await discovery.specialists_by_category()

        assert set(categories) == {"performance", "development", "architecture", "testing"}

    async def test_collaboration_options_skip_unknown(self, discovery):
        options = await discovery.collaboration_options("dean-debug")

        assert [s.id for s in options["natural_handoffs"]] == ["alex-architect"]
        assert [s.id for s in options["team_consultations"]] == ["sam-coder"]

    async def test_collaboration_options_unknown_specialist(self, discovery):
        options = await discovery.collaboration_options("nobody")

        assert options == {"natural_handoffs": [], "team_consultations": []}


@pytest.mark.asyncio
class TestReadiness:
    """Tests for snapshot lifecycle."""

    async def test_ready_after_first_call(self, discovery):
        assert discovery.is_ready is False

        await discovery.suggest("anything")

        assert discovery.is_ready is True

    async def test_layer_change_triggers_rebuild(self, discovery):
        await discovery.suggest("anything")

        discovery.resolver.register(
            InMemoryLayer(
                "project",
                1,
                items=[make_specialist("rita-reports", when_to_use=["slow reports"])],
            )
        )

        assert discovery.is_ready is False
        result = await discovery.suggest("slow reports")
        assert result.suggestions[0].specialist.id == "rita-reports"

    async def test_reload_returns_count(self, discovery):
        assert await discovery.reload() == 4
