"""
Discovery Result Formatter for Strata.

Formats specialist suggestions for agent consumption via the prompt hook
(strata-suggest) and the MCP tools.

Output is XML-tagged so the agent can tell injected context apart from the
user's own message:
- <directive>: what the agent should do with the suggestions
- <specialists>: one <specialist> block per suggestion, with reasons
- <alternatives>: optional lower-ranked matches
"""

from typing import Any

BODY_EXCERPT_LENGTH = 600


def example_query(specialist: dict[str, Any]) -> str:
    """Build a sample request that would route to ``specialist``."""
    when_to_use = specialist.get("when_to_use") or []
    if when_to_use:
        return f"Help me with {when_to_use[0].lower()}"

    primary = (specialist.get("expertise") or {}).get("primary") or []
    if primary:
        return f"I need help with {primary[0].lower()}"

    title = specialist.get("title") or specialist.get("specialist_id", "")
    return f"Ask {title} for guidance"


def _format_suggestion(suggestion: dict[str, Any], tag: str = "specialist") -> str:
    parts = []
    specialist_id = suggestion.get("specialist_id", "unknown")
    confidence = round(float(suggestion.get("confidence", 0)) * 100)
    parts.append(f'<{tag} id="{specialist_id}" confidence="{confidence}%">\n')

    title = suggestion.get("title") or specialist_id
    emoji = suggestion.get("emoji") or ""
    parts.append(f"<name>{(emoji + ' ') if emoji else ''}{title}</name>\n")

    if suggestion.get("role"):
        parts.append(f"<role>{suggestion['role']}</role>\n")

    reasons = suggestion.get("reasons") or []
    if reasons:
        parts.append("<reasons>\n")
        for reason in reasons:
            parts.append(f"- {reason}\n")
        parts.append("</reasons>\n")

    keywords = suggestion.get("keywords_matched") or []
    if keywords:
        parts.append(f"<keywords>{', '.join(keywords)}</keywords>\n")

    parts.append(f"</{tag}>\n")
    return "".join(parts)


def format_suggestions(result: dict[str, Any], message: str = "") -> str:
    """
    Format suggestion results for agent consumption via hook.

    Args:
        result: DiscoveryResult.to_dict() output
        message: Original user message (unused in output, kept for logging callers)

    Returns:
        Formatted XML context string, or "" when there is nothing to inject
    """
    suggestions = result.get("suggestions", [])
    alternatives = result.get("alternatives", [])

    # Early exit if nothing to inject
    if not suggestions:
        return ""

    output_parts = []
    output_parts.append('<strata_specialists context="automatic_discovery">\n')

    output_parts.append("<directive>\n")
    output_parts.append(
        "These specialists match the user's request. Adopt the best match's "
        "expertise, or suggest the user consult them by name.\n"
    )
    output_parts.append("</directive>\n\n")

    output_parts.append(f'<specialists count="{len(suggestions)}">\n')
    for suggestion in suggestions:
        output_parts.append(_format_suggestion(suggestion))
    output_parts.append("</specialists>\n")

    if alternatives:
        output_parts.append(f'\n<alternatives count="{len(alternatives)}">\n')
        for suggestion in alternatives:
            output_parts.append(_format_suggestion(suggestion, tag="alternative"))
        output_parts.append("</alternatives>\n")

    output_parts.append("</strata_specialists>")
    return "".join(output_parts)


def format_search_results(query: str, specialists: list[dict[str, Any]]) -> str:
    """
    Format token-search matches as a Markdown list.

    Args:
        query: The compound query that was searched
        specialists: Specialist dicts (Specialist.to_dict() output)
    """
    if not specialists:
        return f"No specialists matched: {query}"

    lines = [f"**Specialists matching:** {query}", ""]
    for specialist in specialists:
        emoji = specialist.get("emoji") or "-"
        title = specialist.get("title") or specialist.get("id", "")
        role = specialist.get("role", "")
        lines.append(f"{emoji} **{title}** ({specialist.get('id', '')})" + (f" - {role}" if role else ""))
        lines.append(f'   Try: "{example_query(specialist)}"')
    return "\n".join(lines)


def format_topic(topic: dict[str, Any]) -> str:
    """Format a topic as Markdown with a truncated body."""
    body = topic.get("body", "")
    excerpt = (
        body[:BODY_EXCERPT_LENGTH] + "\n[...truncated]"
        if len(body) > BODY_EXCERPT_LENGTH
        else body
    )
    title = topic.get("title") or topic.get("id", "")
    header = f"# {title}"
    meta = []
    if topic.get("domain"):
        meta.append(f"domain: {topic['domain']}")
    if topic.get("tags"):
        meta.append(f"tags: {', '.join(topic['tags'])}")
    if topic.get("source_layer"):
        meta.append(f"layer: {topic['source_layer']}")
    if meta:
        header += "\n_" + " | ".join(meta) + "_"
    return f"{header}\n\n{excerpt}".rstrip()
