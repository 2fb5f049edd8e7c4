"""Topic Search

Keyword search over the merged, capability-filtered topic collection.

Scoring:
    Each query token (see discovery.tokenize) is matched as a substring of
    a topic's fields and earns the weight of every field it hits:

        title   3
        tags    3
        domain  2
        body    1

    Topics that score nothing are dropped. Ties keep resolution order.
    With no usable tokens the filters alone select the topics.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from strata_server.content import ContentKind, Topic
from strata_server.discovery import tokenize
from strata_server.resolver import LayerResolutionEngine

logger = logging.getLogger(__name__)

TITLE_WEIGHT = 3
TAG_WEIGHT = 3
DOMAIN_WEIGHT = 2
BODY_WEIGHT = 1

DEFAULT_LIMIT = 10


@dataclass
class TopicMatch:
    topic: Topic
    score: int
    keywords_matched: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.topic.id,
            "title": self.topic.title,
            "domain": self.topic.domain,
            "tags": list(self.topic.tags),
            "difficulty": self.topic.difficulty,
            "source_layer": self.topic.source_layer,
            "score": self.score,
            "keywords_matched": list(self.keywords_matched),
        }


def score_topic(topic: Topic, tokens: List[str]) -> TopicMatch:
    title = topic.title.lower()
    tags = " ".join(topic.tags).lower()
    domain = topic.domain.lower()
    body = topic.body.lower()

    score = 0
    matched = []
    for token in tokens:
        gained = 0
        if token in title:
            gained += TITLE_WEIGHT
        if token in tags:
            gained += TAG_WEIGHT
        if token in domain:
            gained += DOMAIN_WEIGHT
        if token in body:
            gained += BODY_WEIGHT
        if gained:
            score += gained
            matched.append(token)
    return TopicMatch(topic=topic, score=score, keywords_matched=matched)


async def search_topics(
    resolver: LayerResolutionEngine,
    query: str = "",
    domain: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    limit: int = DEFAULT_LIMIT,
) -> List[TopicMatch]:
    """
    Search the topics visible under the resolver's current capabilities.

    Args:
        resolver: Engine whose merged topic collection is searched
        query: Free text; words shorter than four characters are ignored
        domain: Only topics in this domain (case-insensitive)
        tags: Only topics carrying at least one of these tags
        limit: Maximum number of matches

    Returns:
        Matches ordered by descending score
    """
    if limit <= 0:
        return []

    topics = list((await resolver.resolve_all(ContentKind.TOPIC)).values())

    if domain:
        topics = [t for t in topics if t.domain.lower() == domain.lower()]
    wanted = {tag.lower() for tag in (tags or []) if tag}
    if wanted:
        topics = [t for t in topics if wanted & {x.lower() for x in t.tags}]

    tokens = tokenize(query)
    if not tokens:
        return [TopicMatch(topic=t, score=0) for t in topics[:limit]]

    scored = [score_topic(t, tokens) for t in topics]
    matches = [m for m in scored if m.score > 0]
    # sort() is stable, so equal scores stay in resolution order
    matches.sort(key=lambda m: -m.score)

    logger.debug(
        f"search_topics: {len(matches)} of {len(topics)} topics matched {tokens}"
    )
    return matches[:limit]
