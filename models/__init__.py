"""
Models package initialization.
"""

from .enums import TokenSource, QueryTier, BreakerState
from .schema import (
    Token,
    ComposedQuery,
    TierQuerySet,
    ProviderQuery,
    ProviderItem,
    ProviderResponse,
    SearchCandidate,
    EventCandidate,
    ScopeDecision,
    ScopeFilterConfig,
    SearchRequest,
    SearchResponse,
    EnhancedSearchResponse,
)

__all__ = [
    "TokenSource",
    "QueryTier",
    "BreakerState",
    "Token",
    "ComposedQuery",
    "TierQuerySet",
    "ProviderQuery",
    "ProviderItem",
    "ProviderResponse",
    "SearchCandidate",
    "EventCandidate",
    "ScopeDecision",
    "ScopeFilterConfig",
    "SearchRequest",
    "SearchResponse",
    "EnhancedSearchResponse",
]
