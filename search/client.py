"""
SearchProvider ABC and provider adapters.

Supports:
  - Firecrawl search API (primary crawl/search backend)
  - Google Programmable Search Engine API (structured search)
  - Supabase `collected_events` table (local database fallback)

Every adapter exposes the same `search(ProviderQuery) -> ProviderResponse`
contract. The backend call is wrapped in the provider's circuit breaker and
the timeout/retry wrapper; any failure that survives those is logged and
turned into an empty, degraded response.

API keys are read from the environment unless passed explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import httpx
from pydantic import ValidationError

from database.repository import CollectedEventsRepository
from models.schema import ProviderItem, ProviderQuery, ProviderResponse
from validators.geo import country_name, derive_locale, to_iso2_country

from .config import ProviderPolicy
from .errors import CircuitOpenError, NonRetryableProviderError, TransientProviderError
from .resilience import CircuitBreaker, RetryPolicy, with_timeout_and_retry

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20


# ------------------------------------------------------------------
# Abstract provider
# ------------------------------------------------------------------

class SearchProvider(ABC):
    """Abstract search backend with resilience built in."""

    def __init__(
        self,
        policy: Optional[ProviderPolicy] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._policy = policy or ProviderPolicy()
        self._breaker = breaker or CircuitBreaker.from_policy(self.provider_name, self._policy)
        self._retry = RetryPolicy.from_provider_policy(self._policy)

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @abstractmethod
    async def _do_search(self, params: ProviderQuery) -> List[Dict[str, Any]]:
        """
        Provider-specific call. Returns raw dicts with `url`, `title` and
        `snippet` keys; narrowing happens in search().
        """
        ...

    async def search(self, params: ProviderQuery) -> ProviderResponse:
        """
        Public search entry point. Never raises for provider failures.
        """
        label = f"{self.provider_name} search"

        async def attempt_with_retries() -> List[Dict[str, Any]]:
            return await with_timeout_and_retry(
                lambda: self._do_search(params), self._retry, label=label
            )

        try:
            raw = await self._breaker.call(attempt_with_retries)
        except CircuitOpenError as e:
            logger.info(f"{label} skipped: {e}")
            return ProviderResponse.empty(error="circuit_open")
        except Exception as e:
            logger.warning(f"{label} failed for '{params.q}': {e!r}")
            return ProviderResponse.empty(error=type(e).__name__)

        items = self._narrow(raw)
        limit = params.limit or DEFAULT_LIMIT
        logger.debug(f"{label}: {len(items)} items for '{params.q}'")
        return ProviderResponse(items=items[:limit])

    def _narrow(self, raw: Iterable[Dict[str, Any]]) -> List[ProviderItem]:
        """Validate loosely-typed backend rows into ProviderItem."""
        items: List[ProviderItem] = []
        for row in raw or []:
            if not isinstance(row, dict) or not row.get("url"):
                continue
            try:
                items.append(
                    ProviderItem(
                        url=str(row["url"]),
                        title=_text_or_none(row.get("title")),
                        snippet=_text_or_none(row.get("snippet")),
                    )
                )
            except ValidationError:
                logger.debug(f"{self.provider_name}: dropping malformed item {row!r}")
        return items


class HTTPSearchProvider(SearchProvider):
    """Shared httpx plumbing for HTTP-backed providers."""

    def __init__(
        self,
        policy: Optional[ProviderPolicy] = None,
        breaker: Optional[CircuitBreaker] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(policy=policy, breaker=breaker)
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._policy.timeout_ms / 1000.0) as client:
            yield client


# ------------------------------------------------------------------
# Firecrawl provider
# ------------------------------------------------------------------

class FirecrawlSearchProvider(HTTPSearchProvider):
    """Search via Firecrawl (https://firecrawl.dev)."""

    API_URL = "https://api.firecrawl.dev/v2/search"

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._api_key = api_key or os.environ.get("FIRECRAWL_API_KEY", "")

    @property
    def provider_name(self) -> str:
        return "firecrawl"

    async def _do_search(self, params: ProviderQuery) -> List[Dict[str, Any]]:
        if not self._api_key:
            raise NonRetryableProviderError(
                "FIRECRAWL_API_KEY not set. Set env var or pass api_key.",
                provider=self.provider_name,
            )

        payload: Dict[str, Any] = {
            "query": params.q,
            "limit": min(params.limit or DEFAULT_LIMIT, 50),
            "sources": ["web"],
        }
        country = to_iso2_country(params.country)
        if country:
            payload["country"] = country
            payload["location"] = country_name(country)
        tbs = _custom_date_range(params)
        if tbs:
            payload["tbs"] = tbs

        headers = {"Authorization": f"Bearer {self._api_key}"}
        async with self._client() as client:
            resp = await client.post(self.API_URL, json=payload, headers=headers)
            _raise_for_status(resp, self.provider_name)
            data = resp.json()

        if isinstance(data, dict) and data.get("success") is False:
            raise TransientProviderError(
                f"Firecrawl reported failure: {data.get('error', 'unknown')}",
                provider=self.provider_name,
            )

        body = data.get("data") if isinstance(data, dict) else None
        if isinstance(body, dict):
            rows = body.get("web") or []
        elif isinstance(body, list):
            rows = body
        else:
            rows = []

        return [
            {
                "url": row.get("url"),
                "title": row.get("title"),
                "snippet": row.get("description") or row.get("snippet"),
            }
            for row in rows
            if isinstance(row, dict)
        ]


# ------------------------------------------------------------------
# Google Programmable Search Engine (CSE) provider
# ------------------------------------------------------------------

class GoogleCSESearchProvider(HTTPSearchProvider):
    """Search via Google Custom Search JSON API."""

    API_URL = "https://www.googleapis.com/customsearch/v1"

    LANGUAGE_RESTRICTS = {
        "de": "lang_de|lang_en",
        "fr": "lang_fr|lang_en",
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        cx: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._api_key = api_key or os.environ.get("GOOGLE_CSE_KEY", "")
        self._cx = cx or os.environ.get("GOOGLE_CSE_CX", "")

    @property
    def provider_name(self) -> str:
        return "cse"

    async def _do_search(self, params: ProviderQuery) -> List[Dict[str, Any]]:
        if not self._api_key or not self._cx:
            raise NonRetryableProviderError(
                "GOOGLE_CSE_KEY and GOOGLE_CSE_CX not set.",
                provider=self.provider_name,
            )

        query: Dict[str, Any] = {
            "key": self._api_key,
            "cx": self._cx,
            "q": params.q,
            "num": min(params.limit or DEFAULT_LIMIT, 10),
        }
        country = to_iso2_country(params.country)
        if country:
            query["gl"] = country.lower()
            query["cr"] = f"country{country}"
        query["lr"] = self.LANGUAGE_RESTRICTS.get(derive_locale(country), "lang_en")

        async with self._client() as client:
            resp = await client.get(self.API_URL, params=query)
            _raise_for_status(resp, self.provider_name)
            data = resp.json()

        return [
            {
                "url": item.get("link"),
                "title": item.get("title"),
                "snippet": item.get("snippet"),
            }
            for item in (data.get("items") or [])
            if isinstance(item, dict)
        ]


# ------------------------------------------------------------------
# Supabase database provider
# ------------------------------------------------------------------

class DatabaseSearchProvider(SearchProvider):
    """Fallback search over previously collected events in Supabase."""

    MAX_KEYWORDS = 8

    def __init__(self, client=None, repository: Optional[CollectedEventsRepository] = None, **kwargs):
        super().__init__(**kwargs)
        self._repo = repository or CollectedEventsRepository(client)

    @property
    def provider_name(self) -> str:
        return "database"

    async def _do_search(self, params: ProviderQuery) -> List[Dict[str, Any]]:
        if not self._repo.available:
            raise NonRetryableProviderError(
                "Supabase not configured (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY).",
                provider=self.provider_name,
            )
        # supabase-py is synchronous; keep it off the event loop
        rows = await asyncio.to_thread(
            self._repo.search,
            keywords=extract_keywords(params.q)[: self.MAX_KEYWORDS],
            country=to_iso2_country(params.country),
            date_from=params.date_from,
            date_to=params.date_to,
            limit=min(params.limit or DEFAULT_LIMIT, 50),
        )
        return [
            {
                "url": row.get("source_url"),
                "title": row.get("title"),
                "snippet": row.get("description"),
            }
            for row in rows
            if isinstance(row, dict)
        ]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _raise_for_status(resp: httpx.Response, provider: str) -> None:
    """Map auth failures to non-retryable errors, everything else to httpx's."""
    if resp.status_code in (401, 403):
        raise NonRetryableProviderError(
            f"{provider} rejected credentials (HTTP {resp.status_code})",
            provider=provider,
        )
    resp.raise_for_status()


def _custom_date_range(params: ProviderQuery) -> Optional[str]:
    """Google-style custom date range understood by Firecrawl's `tbs`."""
    if not params.date_from and not params.date_to:
        return None
    parts = ["cdr:1"]
    if params.date_from:
        parts.append(f"cd_min:{params.date_from:%m/%d/%Y}")
    if params.date_to:
        parts.append(f"cd_max:{params.date_to:%m/%d/%Y}")
    return ",".join(parts)


_OPERATOR_WORDS = {"or", "and", "not"}


def extract_keywords(query: str) -> List[str]:
    """
    Plain search terms from a boolean query, for ILIKE matching.

    '(compliance OR "legal tech") Konferenz' -> ['legal tech', 'compliance', 'Konferenz']
    """
    terms: List[str] = []
    for phrase in re.findall(r'"([^"]+)"', query):
        terms.append(phrase.strip())
    rest = re.sub(r'"[^"]*"', " ", query)
    for word in re.split(r"[\s()|]+", rest):
        word = word.strip()
        if not word or word.lower() in _OPERATOR_WORDS:
            continue
        if word.startswith("-") or ":" in word:
            continue
        terms.append(word)

    seen = set()
    cleaned: List[str] = []
    for term in terms:
        term = re.sub(r"[,%()]", "", term).strip()
        if len(term) < 2 or term.lower() in seen:
            continue
        seen.add(term.lower())
        cleaned.append(term)
    return cleaned


def get_search_provider(provider: str, **kwargs) -> SearchProvider:
    """Factory: create a provider adapter by name."""
    providers = {
        "firecrawl": FirecrawlSearchProvider,
        "cse": GoogleCSESearchProvider,
        "database": DatabaseSearchProvider,
    }
    cls = providers.get(provider)
    if not cls:
        raise ValueError(
            f"Unknown provider '{provider}'. Choose from: {list(providers.keys())}"
        )
    return cls(**kwargs)
