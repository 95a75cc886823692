"""
Search Orchestrator.

Ties together QueryBuilder, the provenance guard, the provider adapters,
DomainTrustModel, an EventExtractor and the scope filter into a workflow
that:

  1. Builds tier A/B/C queries and guards every one of them
  2. Calls providers in priority order, tier by tier, escalating only
     while too few unique results exist
  3. Deduplicates hits by normalized URL across providers and tiers
  4. (enhanced) Extracts event candidates and applies the scope filter

Only configuration errors escape; provider failures are absorbed.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from models.enums import QueryTier
from models.schema import (
    ComposedQuery,
    EnhancedSearchResponse,
    ProviderQuery,
    ProviderResponse,
    ScopeFilterConfig,
    SearchCandidate,
    SearchRequest,
    SearchResponse,
    TierQuerySet,
)
from validators.geo import derive_locale, to_iso2_country
from validators.scope import partition_by_scope

from .client import SearchProvider, get_search_provider
from .config import PROVIDER_PRIORITY, SearchSettings, resolve_settings
from .dedupe import CandidateSet, top_provider
from .domain_trust import DomainTrustModel
from .extractor import EventExtractor, SnippetEventExtractor
from .provenance import guard_query
from .query_gen import QueryBuilder
from .resilience import CircuitBreakerRegistry
from .trace import RunTrace, StageStat

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Context
# ------------------------------------------------------------------

class SearchContext:
    """
    Process-wide collaborators for search runs.

    Built once per process and passed to the orchestrator explicitly. Holds
    the settings, the shared circuit breakers and the provider adapters in
    priority order, and hands out a fresh run id per run.
    """

    def __init__(
        self,
        settings: Optional[SearchSettings] = None,
        providers: Optional[Sequence[SearchProvider]] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        trust: Optional[DomainTrustModel] = None,
        run_id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = resolve_settings(settings)
        self.clock = clock
        self.breakers = breakers or CircuitBreakerRegistry(clock=clock)
        self.trust = trust or DomainTrustModel()
        self._run_id_factory = run_id_factory
        if providers is None:
            providers = self._default_providers()
        self.providers: List[SearchProvider] = list(providers)

    @classmethod
    def from_env(cls) -> SearchContext:
        return cls(settings=SearchSettings.from_env())

    @property
    def provider_names(self) -> List[str]:
        return [p.provider_name for p in self.providers]

    def new_run_id(self) -> str:
        return self._run_id_factory()

    def _default_providers(self) -> List[SearchProvider]:
        providers = []
        for name in PROVIDER_PRIORITY:
            policy = self.settings.policy_for(name)
            providers.append(
                get_search_provider(
                    name,
                    policy=policy,
                    breaker=self.breakers.get(name, policy),
                )
            )
        return providers


# ------------------------------------------------------------------
# Per-run state
# ------------------------------------------------------------------

@dataclass
class _RunState:
    """Mutable accumulation for one run. Only touched between awaits."""

    trace: RunTrace
    gate: StageStat
    candidates: CandidateSet = field(default_factory=CandidateSet)
    providers_tried: List[str] = field(default_factory=list)
    tiers_executed: List[QueryTier] = field(default_factory=list)
    deadline_exceeded: bool = False

    def mark_tried(self, provider: str) -> None:
        if provider not in self.providers_tried:
            self.providers_tried.append(provider)


# ------------------------------------------------------------------
# Orchestrator
# ------------------------------------------------------------------

class SearchOrchestrator:
    """
    Main entry point of the search core.

    Usage:
        context = SearchContext.from_env()
        orchestrator = SearchOrchestrator(context)
        response = await orchestrator.execute_search(
            SearchRequest(query='(compliance OR "legal tech")', country="DE")
        )
    """

    def __init__(
        self,
        context: SearchContext,
        extractor: Optional[EventExtractor] = None,
    ):
        self._ctx = context
        self._settings = context.settings
        self._builder = QueryBuilder(context.settings)
        self._extractor = extractor or SnippetEventExtractor()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute_search(self, request: SearchRequest) -> SearchResponse:
        """
        URL-level search. Returns deduplicated, domain-gated candidates.

        Raises:
            SearchConfigurationError: a composed query failed the
                provenance guard; no provider has been called.
        """
        run_id = self._ctx.new_run_id()
        trace = RunTrace(run_id, clock=self._ctx.clock)
        state = await self._search(request, trace)
        trace.emit(state.gate)
        trace.emit_summary()
        return self._to_response(run_id, state)

    async def execute_enhanced_search(self, request: SearchRequest) -> EnhancedSearchResponse:
        """
        Event-level search: execute_search, then extraction and scope admission.

        Raises:
            SearchConfigurationError: as for execute_search.
        """
        run_id = self._ctx.new_run_id()
        trace = RunTrace(run_id, clock=self._ctx.clock)
        state = await self._search(request, trace)
        trace.emit(state.gate)

        items = state.candidates.items()
        country = self._country(request)
        locale = request.locale or derive_locale(country)

        extract_stat = trace.stage("extract", count_in=len(items))
        events = []
        if items:
            remaining = self._settings.run_deadline_s - trace.elapsed_ms() / 1000.0
            try:
                events = await asyncio.wait_for(
                    self._extractor.extract(items, locale=locale),
                    timeout=max(remaining, 0.001),
                )
            except asyncio.TimeoutError:
                state.deadline_exceeded = True
                trace.deadline_exceeded = True
                extract_stat.reject("deadline_exceeded")
                logger.warning(f"[{run_id}] extraction hit the run deadline")
        extract_stat.count_out = len(events)
        trace.emit(extract_stat)

        scope_config = self._scope_config(request, country, locale)
        admitted, rejected = partition_by_scope(events, scope_config)

        scope_stat = trace.stage("scope", count_in=len(events))
        scope_stat.count_out = len(admitted)
        rejections: Counter = Counter()
        for event, decision in rejected:
            code = decision.code or "rejected"
            rejections[code] += 1
            scope_stat.reject(code, event.url)
        trace.emit(scope_stat)
        trace.emit_summary()

        contributions = Counter(e.provider for e in admitted if e.provider)
        return EnhancedSearchResponse(
            run_id=run_id,
            events=admitted,
            provider_used=top_provider(contributions, self._ctx.provider_names),
            providers_tried=list(state.providers_tried),
            rejections=dict(rejections),
            deadline_exceeded=state.deadline_exceeded,
        )

    # ------------------------------------------------------------------
    # Search loop
    # ------------------------------------------------------------------

    async def _search(self, request: SearchRequest, trace: RunTrace) -> _RunState:
        # Build and guard everything before the first await.
        tier_set = self.prepare_queries(request)

        state = _RunState(trace=trace, gate=trace.stage("url_gate"))
        try:
            await asyncio.wait_for(
                self._run_tiers(request, tier_set, state),
                timeout=self._settings.run_deadline_s,
            )
        except asyncio.TimeoutError:
            state.deadline_exceeded = True
            trace.deadline_exceeded = True
            logger.warning(
                f"[{trace.run_id}] run deadline of {self._settings.run_deadline_s}s reached; "
                f"returning {len(state.candidates)} results"
            )
        state.gate.count_out = len(state.candidates)
        return state

    def prepare_queries(self, request: SearchRequest) -> TierQuerySet:
        """Build the tier query set and run the provenance guard on every query."""
        country = self._country(request)
        locale = request.locale or derive_locale(country)
        tier_set = self._builder.build_tier_queries(request.query, locale=locale, city=request.city)
        for query in tier_set.all_queries():
            guard_query(query, self._settings)
        return tier_set

    async def _run_tiers(
        self,
        request: SearchRequest,
        tier_set: TierQuerySet,
        state: _RunState,
    ) -> None:
        settings = self._settings
        candidates = state.candidates

        for tier, queries in tier_set.tiers():
            if state.tiers_executed and len(candidates) >= settings.min_keep_after_prior:
                logger.info(
                    f"[{state.trace.run_id}] {len(candidates)} results after tier "
                    f"{state.tiers_executed[-1].value}; not escalating"
                )
                break

            state.tiers_executed.append(tier)
            tier_min = settings.min_results_for(tier)

            for provider in self._ctx.providers:
                if self._final_floor_met(state):
                    return
                if len(candidates) >= tier_min:
                    break
                await self._call_provider(provider, tier, queries, request, state)

            if self._final_floor_met(state):
                return

    async def _call_provider(
        self,
        provider: SearchProvider,
        tier: QueryTier,
        queries: Sequence[ComposedQuery],
        request: SearchRequest,
        state: _RunState,
    ) -> None:
        """Send every query of a tier to one provider concurrently, then merge."""
        name = provider.provider_name
        state.mark_tried(name)

        params = [self._provider_query(q, request) for q in queries]
        results = await asyncio.gather(
            *(provider.search(p) for p in params),
            return_exceptions=True,
        )

        # Merge sequentially, in query order.
        for query, result in zip(queries, results):
            if isinstance(result, BaseException):
                logger.warning(f"{name} search raised for '{query.query}': {result!r}")
                result = ProviderResponse.empty(error=type(result).__name__)

            state.trace.record_query(
                tier.value, name, query.query, len(result.items), degraded=result.degraded
            )
            for item in result.items:
                state.gate.count_in += 1
                reason = self._ctx.trust.rejection_reason(item.url, item.title)
                if reason:
                    state.gate.reject(reason, item.url)
                    continue
                added = state.candidates.add(
                    SearchCandidate(
                        url=item.url,
                        title=item.title or "",
                        snippet=item.snippet or "",
                        provider=name,
                        tier=tier,
                    )
                )
                if not added:
                    state.gate.reject("duplicate", item.url)

        logger.info(
            f"[{state.trace.run_id}] tier {tier.value} via {name}: "
            f"{len(state.candidates)} unique results so far"
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _final_floor_met(self, state: _RunState) -> bool:
        return len(state.candidates) >= self._settings.min_final_results

    def _country(self, request: SearchRequest) -> Optional[str]:
        return to_iso2_country(request.country or self._settings.default_country)

    def _provider_query(self, query: ComposedQuery, request: SearchRequest) -> ProviderQuery:
        return ProviderQuery(
            q=query.query,
            limit=request.limit or self._settings.provider_limit,
            country=self._country(request),
            date_from=request.date_from,
            date_to=request.date_to,
        )

    def _scope_config(
        self,
        request: SearchRequest,
        country: Optional[str],
        locale: Optional[str],
    ) -> ScopeFilterConfig:
        settings = self._settings
        return ScopeFilterConfig(
            country_code=country,
            cities=list(settings.extra_cities),
            date_from=request.date_from,
            date_to=request.date_to,
            allow_global_lists=(
                request.allow_global_lists
                if request.allow_global_lists is not None
                else settings.allow_global_lists
            ),
            allow_undated=(
                request.allow_undated
                if request.allow_undated is not None
                else settings.allow_undated
            ),
            locale=locale,
        )

    def _to_response(self, run_id: str, state: _RunState) -> SearchResponse:
        return SearchResponse(
            run_id=run_id,
            items=state.candidates.items(),
            provider_used=state.candidates.top_provider(self._ctx.provider_names),
            providers_tried=list(state.providers_tried),
            tiers_executed=list(state.tiers_executed),
            deadline_exceeded=state.deadline_exceeded,
        )
