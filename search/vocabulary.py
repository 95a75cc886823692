"""
Vocabulary tables used when composing queries.

These are data, not logic: the scaffold nouns appended when augmentation is
enabled, and the terms that may only ever appear in a query if the user
typed them.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Tuple


# ------------------------------------------------------------------
# Event-noun scaffolds per locale
# ------------------------------------------------------------------

EVENT_SCAFFOLDS: Dict[str, Tuple[str, ...]] = {
    "de": (
        "Konferenz", "Kongress", "Tagung",
        "Seminar", "Workshop", "Forum",
        "Symposium", "Veranstaltung", "Fortbildung",
    ),
    "en": (
        "conference", "summit", "congress",
        "seminar", "workshop", "forum",
        "symposium",
    ),
    "fr": (
        "conférence", "congrès", "colloque",
        "séminaire", "atelier", "forum",
    ),
}

# Tier C groups this many scaffold nouns into one OR-group per query.
SCAFFOLD_GROUP_SIZE = 3


def scaffold_for(locale: str) -> Tuple[str, ...]:
    """Scaffold nouns for a locale such as 'de', 'de-DE' or 'en_GB'."""
    key = (locale or "").replace("_", "-").split("-")[0].lower()
    return EVENT_SCAFFOLDS.get(key, EVENT_SCAFFOLDS["en"])


# ------------------------------------------------------------------
# Blocked augmentation vocabulary
# ------------------------------------------------------------------

# Generic buzzwords that drifted into automatically broadened queries and
# dragged in off-topic results. Users may still configure them explicitly.
BLOCKED_AUGMENTATION_TERMS: FrozenSet[str] = frozenset({
    "regtech",
    "esg",
    "trade show",
    "industry event",
    "governance",
    "risk management",
    "privacy",
})
