"""
Pydantic data models for the event search pipeline.

Query side:    Token, ComposedQuery, TierQuerySet
Provider side: ProviderQuery, ProviderItem, ProviderResponse
Run side:      SearchCandidate, SearchRequest, SearchResponse
Scope side:    EventCandidate, ScopeFilterConfig, ScopeDecision
"""

from datetime import date
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import QueryTier, TokenSource


# ------------------------------------------------------------------
# Query model
# ------------------------------------------------------------------

class Token(BaseModel):
    """A piece of query text tagged with how it entered the query."""
    text: str = Field(..., description="Token text as it appears in the query")
    source: TokenSource = Field(..., description="user_config or augmented")

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {"text": "Konferenz", "source": "augmented"}
        }


class ComposedQuery(BaseModel):
    """A finished query string plus the tokens it was built from."""
    query: str = Field(..., description="Query string sent to providers")
    tier: QueryTier = Field(..., description="Scope tier of this query")
    tokens: Tuple[Token, ...] = Field(default_factory=tuple)

    @field_validator('query')
    @classmethod
    def validate_query(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Composed query cannot be empty")
        return v

    @property
    def augmented_tokens(self) -> List[Token]:
        return [t for t in self.tokens if t.source == TokenSource.AUGMENTED]

    class Config:
        frozen = True


class TierQuerySet(BaseModel):
    """Per-request set of queries for every tier. Read-only once built."""
    tier_a: Tuple[ComposedQuery, ...] = Field(default_factory=tuple)
    tier_b: Tuple[ComposedQuery, ...] = Field(default_factory=tuple)
    tier_c: Tuple[ComposedQuery, ...] = Field(default_factory=tuple)

    def for_tier(self, tier: QueryTier) -> Tuple[ComposedQuery, ...]:
        return {
            QueryTier.A: self.tier_a,
            QueryTier.B: self.tier_b,
            QueryTier.C: self.tier_c,
        }[tier]

    def tiers(self) -> Iterator[Tuple[QueryTier, Tuple[ComposedQuery, ...]]]:
        """Yield (tier, queries) from narrowest to broadest."""
        for tier in (QueryTier.A, QueryTier.B, QueryTier.C):
            yield tier, self.for_tier(tier)

    def all_queries(self) -> List[ComposedQuery]:
        return [*self.tier_a, *self.tier_b, *self.tier_c]

    class Config:
        frozen = True


# ------------------------------------------------------------------
# Provider contract
# ------------------------------------------------------------------

class ProviderQuery(BaseModel):
    """Uniform request parameters accepted by every provider adapter."""
    q: str = Field(..., description="Query string")
    limit: Optional[int] = Field(None, ge=1, le=100, description="Max items")
    country: Optional[str] = Field(None, description="ISO-2 country code")
    date_from: Optional[date] = Field(None, description="Window start")
    date_to: Optional[date] = Field(None, description="Window end")


class ProviderItem(BaseModel):
    """Single hit returned by a provider, narrowed at the adapter boundary."""
    url: str = Field(..., description="Result URL")
    title: Optional[str] = None
    snippet: Optional[str] = None

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError(f"Not an http(s) URL: {v}")
        return v


class ProviderResponse(BaseModel):
    """Provider result envelope. Degraded responses carry no items."""
    items: List[ProviderItem] = Field(default_factory=list)
    degraded: bool = Field(False, description="True when the call failed and was absorbed")
    error: Optional[str] = Field(None, description="Failure summary when degraded")

    @classmethod
    def empty(cls, error: Optional[str] = None) -> 'ProviderResponse':
        return cls(items=[], degraded=error is not None, error=error)


# ------------------------------------------------------------------
# Orchestration
# ------------------------------------------------------------------

class SearchCandidate(BaseModel):
    """Raw provider hit kept by the orchestrator."""
    url: str
    title: str = ""
    snippet: str = ""
    provider: str = Field(..., description="Provider that returned this hit")
    tier: QueryTier = Field(..., description="Tier of the query that found it")


class SearchRequest(BaseModel):
    """Caller input for one search run."""
    query: str = Field(..., min_length=1, description="Base query from user configuration")
    country: Optional[str] = Field(None, description="Target country (any alias)")
    city: Optional[str] = Field(None, description="Target city")
    locale: Optional[str] = Field(None, description="Scaffold locale override")
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    limit: Optional[int] = Field(None, ge=1, le=100)
    allow_global_lists: Optional[bool] = None
    allow_undated: Optional[bool] = None

    @model_validator(mode='after')
    def validate_window(self) -> 'SearchRequest':
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to cannot be before date_from")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "query": '(compliance OR "e-discovery" OR "legal tech")',
                "country": "DE",
                "city": "Berlin",
                "date_from": "2025-11-10",
                "date_to": "2025-11-20",
            }
        }


class SearchResponse(BaseModel):
    """URL-level result of execute_search."""
    run_id: str
    items: List[SearchCandidate] = Field(default_factory=list)
    provider_used: Optional[str] = None
    providers_tried: List[str] = Field(default_factory=list)
    tiers_executed: List[QueryTier] = Field(default_factory=list)
    deadline_exceeded: bool = False

    @property
    def urls(self) -> List[str]:
        return [c.url for c in self.items]


# ------------------------------------------------------------------
# Scope admission
# ------------------------------------------------------------------

class EventCandidate(BaseModel):
    """Event-level candidate evaluated by the scope filter."""
    url: str
    title: Optional[str] = None
    snippet: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = Field(None, description="Free-text country name")
    country_code: Optional[str] = Field(None, description="Explicit country code")
    start_date: Optional[str] = Field(None, description="Raw start date text")
    end_date: Optional[str] = Field(None, description="Raw end date text")
    provider: Optional[str] = None
    tier: Optional[QueryTier] = None

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://example.de/events/legal-tech-summit-2025",
                "title": "Legal Tech Summit 2025",
                "city": "Berlin",
                "start_date": "2025-11-12",
            }
        }


class ScopeFilterConfig(BaseModel):
    """Admission settings for the scope filter."""
    country_code: Optional[str] = Field(None, description="Target country (any alias)")
    cities: List[str] = Field(default_factory=list, description="Extra cities counted as in-country")
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    allow_global_lists: bool = False
    allow_undated: bool = False
    locale: Optional[str] = Field(None, description="Date parsing locale, e.g. 'de' or 'en-US'")

    @property
    def has_date_window(self) -> bool:
        return self.date_from is not None or self.date_to is not None


class ScopeDecision(BaseModel):
    """Verdict of one scope evaluation. Never stored on the candidate."""
    passes: bool
    reason: Optional[str] = None
    code: Optional[str] = Field(None, description="Stable rejection code for grouping")

    class Config:
        frozen = True


class EnhancedSearchResponse(BaseModel):
    """Event-level result of execute_enhanced_search."""
    run_id: str
    events: List[EventCandidate] = Field(default_factory=list)
    provider_used: Optional[str] = None
    providers_tried: List[str] = Field(default_factory=list)
    rejections: Dict[str, int] = Field(default_factory=dict)
    deadline_exceeded: bool = False
