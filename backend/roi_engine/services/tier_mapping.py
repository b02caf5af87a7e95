# backend/roi_engine/services/tier_mapping.py
"""
Legacy tier vocabulary adapter.

Signals published before the tier restructuring use old names. This module is
the only place that knows about them; everything else works with the current
tiers:

    T1  single strategy, no category
    T2  multi-strategy, category required (e.g. "majors")

Legacy rules:
    T2 without category       -> T1
    T3                        -> T2 (keeps its category, "majors" if absent)
    GROWTH / ELITE (names)    -> T1 / T2 (same rules as T1 / T3)
"""

CANONICAL_TIERS: tuple[str, ...] = ("T1", "T2")
MULTI_STRATEGY_TIERS: frozenset[str] = frozenset({"T2"})

DEFAULT_T2_CATEGORY = "majors"

# Matches any stored category (including none) in signal_sources_for results
ANY_CATEGORY = "*"

_SINGLE_STRATEGY_ALIASES = ("T1", "GROWTH")
_MULTI_STRATEGY_ALIASES = ("T3", "ELITE")


def normalize_category(category: str | None) -> str | None:
    if category is None:
        return None
    cleaned = category.strip().lower()
    return cleaned or None


def canonical_tier(tier: str, category: str | None) -> tuple[str, str | None]:
    """
    Map a published (tier, category) pair to the current vocabulary.

    Unknown tiers are returned uppercased so key validation can reject them.
    """
    raw = tier.strip().upper()
    cat = normalize_category(category)

    if raw in _SINGLE_STRATEGY_ALIASES:
        return "T1", None
    if raw in _MULTI_STRATEGY_ALIASES:
        return "T2", cat or DEFAULT_T2_CATEGORY
    if raw == "T2":
        return ("T2", cat) if cat else ("T1", None)
    return raw, cat


def signal_sources_for(tier: str, category: str | None) -> list[tuple[str, str | None]]:
    """
    Raw (tier, category) pairs whose signals feed a canonical portfolio.

    Inverse of canonical_tier, used to build signal queries.
    """
    if tier == "T1":
        return [(alias, ANY_CATEGORY) for alias in _SINGLE_STRATEGY_ALIASES] + [("T2", None)]
    if tier == "T2" and category:
        sources: list[tuple[str, str | None]] = [("T2", category)]
        sources += [(alias, category) for alias in _MULTI_STRATEGY_ALIASES]
        if category == DEFAULT_T2_CATEGORY:
            sources += [(alias, None) for alias in _MULTI_STRATEGY_ALIASES]
        return sources
    return []
