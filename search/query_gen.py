"""
Query Generator. Builds tier-scoped search queries from a base query.

Tier A: narrowest (base + one event noun + city)
Tier B: broader   (base + one event noun)
Tier C: broadest  (base + an OR-group of event nouns)

With augmentation disabled (the default) every tier is just "(base)". The
base query is only ever wrapped and appended to, never edited. Every token
in a composed query carries its provenance so the guard can check it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from models.enums import QueryTier, TokenSource
from models.schema import ComposedQuery, TierQuerySet, Token

from .config import SearchSettings, resolve_settings
from .errors import QueryTooLongError, SearchConfigurationError
from .vocabulary import SCAFFOLD_GROUP_SIZE, scaffold_for

logger = logging.getLogger(__name__)

BOOLEAN_OPERATORS = {"OR", "AND", "NOT", "|"}


# ------------------------------------------------------------------
# Augmentation strategies
# ------------------------------------------------------------------

@dataclass(frozen=True)
class NoAugmentation:
    """Emit the base query only."""


@dataclass(frozen=True)
class ScaffoldAugmentation:
    """Append locale event nouns (and the city, when known) to the base."""

    locale: str
    city: Optional[str] = None

    @property
    def terms(self) -> Sequence[str]:
        return scaffold_for(self.locale)


AugmentationStrategy = Union[NoAugmentation, ScaffoldAugmentation]


def select_augmentation(
    settings: SearchSettings,
    locale: Optional[str] = None,
    city: Optional[str] = None,
) -> AugmentationStrategy:
    """Pick the strategy from the feature flag and request context."""
    if not settings.augmentation_enabled:
        return NoAugmentation()
    city = (city or "").strip() or None
    return ScaffoldAugmentation(locale=locale or settings.default_locale, city=city)


# ------------------------------------------------------------------
# Base query fitting
# ------------------------------------------------------------------

def split_top_level(text: str) -> List[str]:
    """
    Split on whitespace that is outside quotes and parentheses.

    '(a OR b) "c d" e' -> ['(a OR b)', '"c d"', 'e']
    """
    segments: List[str] = []
    current: List[str] = []
    depth = 0
    in_quote = False

    for ch in text:
        if ch == '"':
            in_quote = not in_quote
        elif not in_quote and ch == "(":
            depth += 1
        elif not in_quote and ch == ")" and depth > 0:
            depth -= 1

        if ch.isspace() and depth == 0 and not in_quote:
            if current:
                segments.append("".join(current))
                current = []
            continue
        current.append(ch)

    if current:
        segments.append("".join(current))
    return segments


def _is_group(segment: str) -> bool:
    return segment.startswith("(") and segment.endswith(")") and len(segment) >= 2


def _strip_operators(segments: List[str]) -> List[str]:
    while segments and segments[-1].upper() in BOOLEAN_OPERATORS:
        segments.pop()
    while segments and segments[0].upper() in BOOLEAN_OPERATORS:
        segments.pop(0)
    return segments


def fit_base_query(base: str, budget: int) -> str:
    """
    Shorten `base` to at most `budget` characters by dropping whole
    trailing terms. Parenthesis groups and quoted phrases are kept intact;
    a group that is too big on its own is fitted recursively so that it
    keeps its leading alternatives.
    """
    if len(base) <= budget:
        return base

    kept: List[str] = []
    for segment in split_top_level(base):
        candidate = " ".join(kept + [segment])
        if len(candidate) <= budget:
            kept.append(segment)
            continue

        if not kept and _is_group(segment) and budget > 2:
            inner = fit_base_query(segment[1:-1], budget - 2)
            if inner:
                kept.append(f"({inner})")
        break

    kept = _strip_operators(kept)
    return " ".join(kept)


def _render_phrase(text: str) -> str:
    text = text.strip()
    if any(ch.isspace() for ch in text) and not text.startswith('"'):
        return f'"{text}"'
    return text


# ------------------------------------------------------------------
# Builder
# ------------------------------------------------------------------

class QueryBuilder:
    """
    Compose tier-scoped queries.

    Usage:
        builder = QueryBuilder(SearchSettings(augmentation_enabled=True))
        tiers = builder.build_tier_queries('(compliance OR "legal tech")', city="Berlin")
    """

    def __init__(self, settings: Optional[SearchSettings] = None):
        self._settings = resolve_settings(settings)

    @property
    def max_length(self) -> int:
        return self._settings.max_query_length

    def build_queries(
        self,
        base_query: str,
        tier: Union[QueryTier, str],
        locale: Optional[str] = None,
        city: Optional[str] = None,
        strategy: Optional[AugmentationStrategy] = None,
    ) -> List[ComposedQuery]:
        """Queries for a single tier. Never returns an empty list."""
        tier = QueryTier(tier)
        if strategy is None:
            strategy = select_augmentation(self._settings, locale, city)

        base_text = self._fit_base(base_query)
        base_token = Token(text=base_text, source=TokenSource.USER_CONFIG)
        plain = ComposedQuery(query=f"({base_text})", tier=tier, tokens=(base_token,))

        if isinstance(strategy, NoAugmentation):
            return [plain]

        queries: List[ComposedQuery] = []
        for extra in self._variants(tier, strategy):
            composed = self._compose(base_token, tier, extra)
            if composed is None:
                logger.debug(
                    f"Dropping tier {tier.value} variant over {self.max_length} chars: "
                    f"{[t.text for t in extra]}"
                )
                continue
            queries.append(composed)

        if not queries:
            logger.info(
                f"All augmented variants for tier {tier.value} exceed the length cap; "
                f"using base query only"
            )
            return [plain]
        return queries

    def build_tier_queries(
        self,
        base_query: str,
        locale: Optional[str] = None,
        city: Optional[str] = None,
    ) -> TierQuerySet:
        """Fresh query set for every tier of one search request."""
        strategy = select_augmentation(self._settings, locale, city)
        return TierQuerySet(
            tier_a=tuple(self.build_queries(base_query, QueryTier.A, strategy=strategy)),
            tier_b=tuple(self.build_queries(base_query, QueryTier.B, strategy=strategy)),
            tier_c=tuple(self.build_queries(base_query, QueryTier.C, strategy=strategy)),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fit_base(self, base_query: str) -> str:
        if not base_query or not base_query.strip():
            raise SearchConfigurationError("Base query is empty")

        budget = self.max_length - 2  # enclosing parentheses
        fitted = fit_base_query(base_query, budget)
        if not fitted:
            raise QueryTooLongError(
                f"Base query cannot be fitted under {self.max_length} characters "
                f"without splitting a term"
            )
        if fitted != base_query:
            logger.warning(
                f"Base query shortened from {len(base_query)} to {len(fitted)} chars "
                f"to respect the {self.max_length} char cap"
            )
        return fitted

    def _variants(
        self,
        tier: QueryTier,
        strategy: ScaffoldAugmentation,
    ) -> List[List[Token]]:
        """Augmented token lists, one per scaffold variant."""
        terms = list(strategy.terms)
        variants: List[List[Token]] = []

        if tier == QueryTier.C:
            for i in range(0, len(terms), SCAFFOLD_GROUP_SIZE):
                chunk = terms[i:i + SCAFFOLD_GROUP_SIZE]
                variants.append([_augmented(term) for term in chunk])
            return variants

        for term in terms:
            extra = [_augmented(term)]
            if tier == QueryTier.A and strategy.city:
                extra.append(_augmented(_render_phrase(strategy.city)))
            variants.append(extra)
        return variants

    def _compose(
        self,
        base_token: Token,
        tier: QueryTier,
        extra: List[Token],
    ) -> Optional[ComposedQuery]:
        parts = [f"({base_token.text})"]
        if tier == QueryTier.C and len(extra) > 1:
            parts.append("(" + " OR ".join(t.text for t in extra) + ")")
        else:
            parts.extend(t.text for t in extra)

        query = " ".join(parts)
        if len(query) > self.max_length:
            return None
        return ComposedQuery(query=query, tier=tier, tokens=(base_token, *extra))


def _augmented(text: str) -> Token:
    return Token(text=_render_phrase(text), source=TokenSource.AUGMENTED)


# ------------------------------------------------------------------
# Module-level convenience
# ------------------------------------------------------------------

def build_queries(
    base_query: str,
    tier: Union[QueryTier, str],
    locale: Optional[str] = None,
    city: Optional[str] = None,
    settings: Optional[SearchSettings] = None,
) -> List[ComposedQuery]:
    return QueryBuilder(settings).build_queries(base_query, tier, locale=locale, city=city)


def build_tier_queries(
    base_query: str,
    locale: Optional[str] = None,
    city: Optional[str] = None,
    settings: Optional[SearchSettings] = None,
) -> TierQuerySet:
    return QueryBuilder(settings).build_tier_queries(base_query, locale=locale, city=city)
