"""
Event Search Module. Builds tiered queries, fans out over search
providers with per-provider resilience, and scopes the results to a
target country and date window.
"""

from .client import (
    DatabaseSearchProvider,
    FirecrawlSearchProvider,
    GoogleCSESearchProvider,
    SearchProvider,
    get_search_provider,
)
from .config import ProviderPolicy, SearchSettings
from .dedupe import CandidateSet, normalize_url
from .domain_trust import DomainTrustModel, DomainVerdict
from .errors import (
    CircuitOpenError,
    NonRetryableProviderError,
    ProviderError,
    ProvenanceViolation,
    QueryTooLongError,
    SearchConfigurationError,
    TransientProviderError,
)
from .extractor import EventExtractor, SnippetEventExtractor
from .orchestrator import SearchContext, SearchOrchestrator
from .provenance import (
    assert_no_blocked_augmentation,
    guard_query,
    validate_query_provenance,
)
from .query_gen import (
    NoAugmentation,
    QueryBuilder,
    ScaffoldAugmentation,
    build_queries,
    build_tier_queries,
)
from .resilience import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    RetryPolicy,
    with_timeout_and_retry,
)
from .trace import RunTrace, StageStat

__all__ = [
    "DatabaseSearchProvider",
    "FirecrawlSearchProvider",
    "GoogleCSESearchProvider",
    "SearchProvider",
    "get_search_provider",
    "ProviderPolicy",
    "SearchSettings",
    "CandidateSet",
    "normalize_url",
    "DomainTrustModel",
    "DomainVerdict",
    "CircuitOpenError",
    "NonRetryableProviderError",
    "ProviderError",
    "ProvenanceViolation",
    "QueryTooLongError",
    "SearchConfigurationError",
    "TransientProviderError",
    "EventExtractor",
    "SnippetEventExtractor",
    "SearchContext",
    "SearchOrchestrator",
    "assert_no_blocked_augmentation",
    "guard_query",
    "validate_query_provenance",
    "NoAugmentation",
    "QueryBuilder",
    "ScaffoldAugmentation",
    "build_queries",
    "build_tier_queries",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "RetryPolicy",
    "with_timeout_and_retry",
    "RunTrace",
    "StageStat",
]
