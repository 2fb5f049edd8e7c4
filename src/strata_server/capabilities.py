"""Capability Gating

Topics can be conditional on companion tools the host reports as available:

    conditional_capability: X          -> shown only when X is available
    conditional_capability_missing: X  -> shown only when X is NOT available

Gating is evaluated at listing/search time against the current capability
set and is never stored with the item.
"""

from typing import Iterable

from strata_server.content import ContentItem


def normalize_capabilities(capabilities: Iterable[str] | str | None) -> tuple[str, ...]:
    """
    Clean a host-supplied capability list.

    Accepts a list or a comma-separated string. Whitespace is stripped,
    empty names dropped, and repeats removed (first occurrence kept).
    """
    if capabilities is None:
        return ()
    if isinstance(capabilities, str):
        capabilities = capabilities.split(",")

    result: list[str] = []
    for name in capabilities:
        name = str(name).strip()
        if name and name not in result:
            result.append(name)
    return tuple(result)


def is_available(item: ContentItem, capabilities: Iterable[str]) -> bool:
    """
    Return True if ``item`` should be visible under ``capabilities``.

    Items without gating fields (specialists, workflows, ungated topics) are
    always visible. When both fields are set, conditional_capability wins.
    """
    required = getattr(item, "conditional_capability", None)
    if required:
        return required in capabilities

    excluded_by = getattr(item, "conditional_capability_missing", None)
    if excluded_by:
        return excluded_by not in capabilities

    return True
