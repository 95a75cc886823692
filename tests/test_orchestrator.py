"""
Tests for SearchOrchestrator: tier escalation, thresholds, fallback,
deduplication, the URL gate, deadlines and scope admission.

Providers are in-process fakes built on SearchProvider, so the real
breaker and retry wrapper run around them.
"""

import asyncio
import json
import logging
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from models.enums import BreakerState, QueryTier, TokenSource
from models.schema import ComposedQuery, SearchRequest, TierQuerySet, Token
from search.client import SearchProvider
from search.config import ProviderPolicy, SearchSettings
from search.errors import ProvenanceViolation, QueryTooLongError, TransientProviderError
from search.orchestrator import SearchContext, SearchOrchestrator
from search.resilience import CircuitBreakerRegistry


FAST = ProviderPolicy(timeout_ms=2000, max_retries=0, backoff_ms=1, failure_threshold=3, cooldown_s=30)


class FakeProvider(SearchProvider):
    """
    Provider returning canned rows.

    `pages` is a list of URL lists; call N returns pages[N] (the last page
    repeats). Each URL becomes a row with a neutral title.
    """

    def __init__(self, name, pages=None, delay=0.0, error=None, titles=None, **kwargs):
        self._name = name
        kwargs.setdefault("policy", FAST)
        super().__init__(**kwargs)
        self.pages = pages or [[]]
        self.delay = delay
        self.error = error
        self.titles = titles or {}
        self.calls = []

    @property
    def provider_name(self):
        return self._name

    async def _do_search(self, params):
        index = min(len(self.calls), len(self.pages) - 1)
        self.calls.append(params)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [
            {"url": url, "title": self.titles.get(url, f"Event {i}"), "snippet": ""}
            for i, url in enumerate(self.pages[index])
        ]


def _urls(prefix, n, start=0):
    return [f"https://{prefix}.example.de/event/{i}" for i in range(start, start + n)]


def _settings(**overrides):
    base = dict(
        augmentation_enabled=False,
        min_results_tier_a=10,
        min_results_tier_b=10,
        min_results_tier_c=10,
        min_keep_after_prior=5,
        min_final_results=10,
        run_deadline_s=5.0,
    )
    base.update(overrides)
    return SearchSettings(**base)


def _orchestrator(providers, settings=None, **context_kwargs):
    context = SearchContext(settings=settings or _settings(), providers=providers, **context_kwargs)
    return SearchOrchestrator(context)


REQUEST = SearchRequest(query='(compliance OR "legal tech")', country="DE")


# ===================================================================
# Context
# ===================================================================


class TestSearchContext:

    def test_default_providers_in_priority_order(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        context = SearchContext(settings=SearchSettings())
        assert context.provider_names == ["firecrawl", "cse", "database"]

    def test_default_providers_share_registry_breakers(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        context = SearchContext(settings=SearchSettings())
        for provider in context.providers:
            assert provider.breaker is context.breakers.get(provider.provider_name)

    @pytest.mark.asyncio
    async def test_run_ids_unique_per_run(self):
        orch = _orchestrator([FakeProvider("firecrawl", [_urls("a", 10)])])
        first = await orch.execute_search(REQUEST)
        second = await orch.execute_search(REQUEST)
        assert first.run_id and second.run_id
        assert first.run_id != second.run_id


# ===================================================================
# Thresholds and fallback
# ===================================================================


class TestProviderFallback:

    @pytest.mark.asyncio
    async def test_primary_timeout_falls_back(self):
        primary = FakeProvider(
            "firecrawl", [_urls("a", 5)], delay=1.0,
            policy=ProviderPolicy(timeout_ms=20, max_retries=0),
        )
        fallback = FakeProvider("cse", [_urls("b", 5)])
        orch = _orchestrator(
            [primary, fallback],
            settings=_settings(min_results_tier_a=3, min_keep_after_prior=2, min_final_results=3),
        )

        response = await orch.execute_search(REQUEST)

        assert response.providers_tried == ["firecrawl", "cse"]
        assert response.provider_used == "cse"
        assert len(response.items) == 5
        assert all(item.provider == "cse" for item in response.items)
        assert primary.breaker.stats().failure_count == 1

    @pytest.mark.asyncio
    async def test_stops_at_min_final_results(self):
        primary = FakeProvider("firecrawl", [_urls("a", 10)])
        cse = FakeProvider("cse", [_urls("b", 10)])
        database = FakeProvider("database", [_urls("c", 10)])
        orch = _orchestrator([primary, cse, database])

        response = await orch.execute_search(REQUEST)

        assert len(primary.calls) == 1
        assert cse.calls == []
        assert database.calls == []
        assert response.providers_tried == ["firecrawl"]
        assert response.tiers_executed == [QueryTier.A]
        assert response.provider_used == "firecrawl"

    @pytest.mark.asyncio
    async def test_tier_minimum_stops_provider_loop(self):
        primary = FakeProvider("firecrawl", [_urls("a", 4)])
        cse = FakeProvider("cse", [_urls("b", 4)])
        database = FakeProvider("database", [_urls("c", 4)])
        orch = _orchestrator(
            [primary, cse, database],
            settings=_settings(min_results_tier_a=3, min_keep_after_prior=3, min_final_results=20),
        )

        response = await orch.execute_search(REQUEST)

        assert len(primary.calls) == 1
        assert cse.calls == []
        assert database.calls == []
        assert response.tiers_executed == [QueryTier.A]

    @pytest.mark.asyncio
    async def test_all_providers_failing_returns_empty(self):
        providers = [
            FakeProvider(name, error=TransientProviderError("down"))
            for name in ("firecrawl", "cse", "database")
        ]
        orch = _orchestrator(providers)

        response = await orch.execute_search(REQUEST)

        assert response.items == []
        assert response.provider_used is None
        assert response.providers_tried == ["firecrawl", "cse", "database"]
        assert response.tiers_executed == [QueryTier.A, QueryTier.B, QueryTier.C]
        assert response.deadline_exceeded is False

    @pytest.mark.asyncio
    async def test_provider_raising_from_search_is_absorbed(self):
        broken = FakeProvider("firecrawl")
        broken.search = AsyncMock(side_effect=RuntimeError("adapter bug"))
        cse = FakeProvider("cse", [_urls("b", 10)])
        orch = _orchestrator([broken, cse])

        response = await orch.execute_search(REQUEST)

        assert response.provider_used == "cse"
        assert len(response.items) == 10

    @pytest.mark.asyncio
    async def test_provider_receives_country_window_and_limit(self):
        primary = FakeProvider("firecrawl", [_urls("a", 10)])
        orch = _orchestrator([primary], settings=_settings(provider_limit=15))
        request = SearchRequest(
            query="compliance",
            country="Deutschland",
            date_from=date(2025, 11, 10),
            date_to=date(2025, 11, 20),
        )

        await orch.execute_search(request)

        params = primary.calls[0]
        assert params.q == "(compliance)"
        assert params.country == "DE"
        assert params.limit == 15
        assert params.date_from == date(2025, 11, 10)

    @pytest.mark.asyncio
    async def test_country_defaults_from_settings(self):
        primary = FakeProvider("firecrawl", [_urls("a", 10)])
        orch = _orchestrator([primary], settings=_settings(default_country="France"))

        await orch.execute_search(SearchRequest(query="compliance"))

        assert primary.calls[0].country == "FR"


# ===================================================================
# Tier escalation
# ===================================================================


class TestTierEscalation:

    @pytest.mark.asyncio
    async def test_escalates_while_below_keep_threshold(self):
        primary = FakeProvider(
            "firecrawl", [_urls("a", 2, 0), _urls("a", 2, 2), _urls("a", 2, 4)]
        )
        cse = FakeProvider("cse")
        orch = _orchestrator([primary, cse])

        response = await orch.execute_search(REQUEST)

        assert response.tiers_executed == [QueryTier.A, QueryTier.B, QueryTier.C]
        assert len(primary.calls) == 3
        assert len(cse.calls) == 3
        # earlier tiers are carried forward
        assert [item.tier for item in response.items] == [
            QueryTier.A, QueryTier.A, QueryTier.B, QueryTier.B, QueryTier.C, QueryTier.C,
        ]

    @pytest.mark.asyncio
    async def test_no_escalation_once_keep_threshold_met(self):
        primary = FakeProvider("firecrawl", [_urls("a", 6)])
        cse = FakeProvider("cse")
        database = FakeProvider("database")
        orch = _orchestrator([primary, cse, database])

        response = await orch.execute_search(REQUEST)

        # tier A still asks every provider because its own minimum is 10
        assert len(cse.calls) == 1
        assert len(database.calls) == 1
        assert response.tiers_executed == [QueryTier.A]
        assert len(response.items) == 6

    @pytest.mark.asyncio
    async def test_every_query_of_a_tier_is_sent(self):
        primary = FakeProvider("firecrawl", [_urls("a", 10)])
        orch = _orchestrator([primary], settings=_settings(augmentation_enabled=True))

        await orch.execute_search(SearchRequest(query="compliance", country="DE", city="Berlin"))

        tier_a = orch.prepare_queries(
            SearchRequest(query="compliance", country="DE", city="Berlin")
        ).tier_a
        assert sorted(p.q for p in primary.calls) == sorted(q.query for q in tier_a)
        assert all("Berlin" in p.q for p in primary.calls)


# ===================================================================
# Deduplication and the URL gate
# ===================================================================


class TestDeduplication:

    @pytest.mark.asyncio
    async def test_dedup_across_providers(self):
        primary = FakeProvider("firecrawl", [[
            "https://example.com/e/1/",
            "https://example.com/e/2?b=2&a=1",
        ]])
        cse = FakeProvider("cse", [[
            "https://EXAMPLE.com/e/1",
            "https://example.com/e/2?a=1&b=2",
            "https://example.com/e/3#details",
        ]])
        orch = _orchestrator(
            [primary, cse], settings=_settings(min_keep_after_prior=1, min_final_results=20)
        )

        response = await orch.execute_search(REQUEST)

        assert len(response.items) == 3
        assert [item.provider for item in response.items] == ["firecrawl", "firecrawl", "cse"]
        assert response.provider_used == "firecrawl"

    @pytest.mark.asyncio
    async def test_duplicates_do_not_count_toward_thresholds(self):
        same = _urls("a", 6)
        primary = FakeProvider("firecrawl", [same])
        cse = FakeProvider("cse", [same])
        database = FakeProvider("database", [_urls("c", 4)])
        orch = _orchestrator([primary, cse, database])

        response = await orch.execute_search(REQUEST)

        assert len(database.calls) == 1
        assert len(response.items) == 10
        assert response.provider_used == "firecrawl"

    @pytest.mark.asyncio
    async def test_provider_used_tie_goes_to_priority(self):
        primary = FakeProvider("firecrawl", [_urls("a", 3)])
        cse = FakeProvider("cse", [_urls("b", 3)])
        orch = _orchestrator(
            [primary, cse], settings=_settings(min_keep_after_prior=1, min_final_results=6)
        )

        response = await orch.execute_search(REQUEST)

        assert response.provider_used == "firecrawl"


class TestUrlGate:

    @pytest.mark.asyncio
    async def test_blocked_domains_not_counted(self):
        primary = FakeProvider("firecrawl", [[
            "https://www.linkedin.com/events/123",
            "https://de.linkedin.com/posts/abc",
            "https://www.reddit.com/r/legaltech",
            "https://veranstalter.de/tagung",
            "https://kanzlei.de/forum-2025",
        ]])
        cse = FakeProvider("cse")
        orch = _orchestrator(
            [primary, cse],
            settings=_settings(min_results_tier_a=3, min_keep_after_prior=1, min_final_results=3),
        )

        response = await orch.execute_search(REQUEST)

        assert [item.url for item in response.items] == [
            "https://veranstalter.de/tagung",
            "https://kanzlei.de/forum-2025",
        ]
        assert len(cse.calls) == 1

    @pytest.mark.asyncio
    async def test_error_pages_and_invalid_urls_dropped(self):
        primary = FakeProvider(
            "firecrawl",
            [["https://example.de/missing", "mailto:info@example.de", "https://example.de/ok"]],
            titles={"https://example.de/missing": "Seite nicht gefunden"},
        )
        orch = _orchestrator([primary])

        response = await orch.execute_search(REQUEST)

        assert [item.url for item in response.items] == ["https://example.de/ok"]

    @pytest.mark.asyncio
    async def test_gate_stage_logged_as_json(self, caplog):
        caplog.set_level(logging.INFO, logger="search.trace")
        primary = FakeProvider("firecrawl", [[
            "https://www.facebook.com/events/1",
            "https://example.de/a",
            "https://example.de/a/",
        ]])
        orch = _orchestrator([primary], settings=_settings(min_keep_after_prior=1))

        response = await orch.execute_search(REQUEST)

        payloads = [json.loads(r.getMessage()) for r in caplog.records if r.name == "search.trace"]
        stages = [p for p in payloads if p.get("stage") == "url_gate"]
        assert len(stages) == 1
        gate = stages[0]
        assert gate["run_id"] == response.run_id
        assert gate["out"] == 1
        reasons = {r["key"]: r["count"] for r in gate["reasons"]}
        assert reasons["blocked_domain"] == 1
        assert reasons["duplicate"] >= 1


# ===================================================================
# Provenance guard
# ===================================================================


class TestGuardBeforeProviders:

    @pytest.mark.asyncio
    async def test_guard_raises_before_any_provider_call(self):
        primary = FakeProvider("firecrawl", [_urls("a", 10)])
        orch = _orchestrator([primary])
        bad = ComposedQuery(
            query="(compliance) Konferenz",
            tier=QueryTier.B,
            tokens=(
                Token(text="compliance", source=TokenSource.USER_CONFIG),
                Token(text="Konferenz", source=TokenSource.AUGMENTED),
            ),
        )
        good = ComposedQuery(
            query="(compliance)",
            tier=QueryTier.A,
            tokens=(Token(text="compliance", source=TokenSource.USER_CONFIG),),
        )
        orch._builder = MagicMock()
        orch._builder.build_tier_queries.return_value = TierQuerySet(tier_a=(good,), tier_b=(bad,))

        with pytest.raises(ProvenanceViolation):
            await orch.execute_search(REQUEST)
        assert primary.calls == []

    @pytest.mark.asyncio
    async def test_untrimmable_query_raises(self):
        primary = FakeProvider("firecrawl", [_urls("a", 10)])
        orch = _orchestrator([primary])

        with pytest.raises(QueryTooLongError):
            await orch.execute_search(SearchRequest(query='"' + "a" * 300 + '"'))
        assert primary.calls == []


# ===================================================================
# Deadline
# ===================================================================


class TestRunDeadline:

    @pytest.mark.asyncio
    async def test_deadline_returns_partial_results(self):
        primary = FakeProvider("firecrawl", [_urls("a", 2)])
        slow = FakeProvider("cse", [_urls("b", 10)], delay=5.0)
        orch = _orchestrator([primary, slow], settings=_settings(run_deadline_s=0.2))

        response = await orch.execute_search(REQUEST)

        assert response.deadline_exceeded is True
        assert len(response.items) == 2
        assert response.providers_tried == ["firecrawl", "cse"]
        # cancellation is not a provider failure
        assert slow.breaker.state == BreakerState.CLOSED


# ===================================================================
# Shared breakers
# ===================================================================


class TestSharedBreakers:

    @pytest.mark.asyncio
    async def test_open_breaker_persists_across_runs(self):
        registry = CircuitBreakerRegistry()
        policy = ProviderPolicy(timeout_ms=2000, max_retries=0, failure_threshold=1, cooldown_s=60)
        primary = FakeProvider(
            "firecrawl",
            error=TransientProviderError("down"),
            policy=policy,
            breaker=registry.get("firecrawl", policy),
        )
        cse = FakeProvider("cse", [_urls("b", 10)])
        orch = _orchestrator([primary, cse], breakers=registry)

        await orch.execute_search(REQUEST)
        assert len(primary.calls) == 1
        assert registry.snapshot()["firecrawl"].state == BreakerState.OPEN

        response = await orch.execute_search(REQUEST)
        assert len(primary.calls) == 1
        assert response.providers_tried == ["firecrawl", "cse"]
        assert response.provider_used == "cse"


# ===================================================================
# Enhanced search
# ===================================================================


class TestEnhancedSearch:

    def setup_method(self):
        self.request = SearchRequest(
            query='(compliance OR "legal tech")',
            country="DE",
            date_from=date(2025, 11, 10),
            date_to=date(2025, 11, 20),
        )
        self.titles = {
            "https://veranstalter.de/legal-tech-tag-2025": "Legal Tech Tag Berlin 12.11.2025",
            "https://example.co.uk/compliance-summit": "Compliance Summit London, November 14, 2025",
            "https://example.de/events": "Events Berlin 13.11.2025",
            "https://example.de/forum-2026": "Forum München 3. März 2026",
        }

    @pytest.mark.asyncio
    async def test_scope_rejections_grouped_by_code(self):
        primary = FakeProvider("firecrawl", [list(self.titles)], titles=self.titles)
        orch = _orchestrator([primary])

        response = await orch.execute_enhanced_search(self.request)

        assert [e.url for e in response.events] == ["https://veranstalter.de/legal-tech-tag-2025"]
        assert response.events[0].city == "Berlin"
        assert response.events[0].start_date == "2025-11-12"
        assert response.rejections == {
            "city_not_in_country": 1,
            "global_list": 1,
            "date_out_of_range": 1,
        }
        assert response.provider_used == "firecrawl"
        assert response.providers_tried == ["firecrawl"]

    @pytest.mark.asyncio
    async def test_global_lists_allowed_by_request(self):
        primary = FakeProvider("firecrawl", [list(self.titles)], titles=self.titles)
        orch = _orchestrator([primary])
        request = self.request.model_copy(update={"allow_global_lists": True})

        response = await orch.execute_enhanced_search(request)

        assert "https://example.de/events" in [e.url for e in response.events]
        assert "global_list" not in response.rejections

    @pytest.mark.asyncio
    async def test_provider_used_counts_admitted_events_only(self):
        primary = FakeProvider(
            "firecrawl",
            [["https://example.co.uk/a", "https://example.co.uk/b"]],
            titles={
                "https://example.co.uk/a": "Summit London 12.11.2025",
                "https://example.co.uk/b": "Forum Manchester 12.11.2025",
            },
        )
        cse = FakeProvider(
            "cse",
            [["https://veranstalter.de/tagung"]],
            titles={"https://veranstalter.de/tagung": "Tagung Köln 14.11.2025"},
        )
        orch = _orchestrator([primary, cse])

        response = await orch.execute_enhanced_search(self.request)

        assert [e.url for e in response.events] == ["https://veranstalter.de/tagung"]
        assert response.provider_used == "cse"

    @pytest.mark.asyncio
    async def test_custom_extractor(self):
        extractor = MagicMock()
        extractor.extract = AsyncMock(return_value=[])
        primary = FakeProvider("firecrawl", [_urls("a", 10)])
        context = SearchContext(settings=_settings(), providers=[primary])
        orch = SearchOrchestrator(context, extractor=extractor)

        response = await orch.execute_enhanced_search(self.request)

        extractor.extract.assert_awaited_once()
        items = extractor.extract.await_args.args[0]
        assert len(items) == 10
        assert extractor.extract.await_args.kwargs["locale"] == "de"
        assert response.events == []
        assert response.rejections == {}
        assert response.provider_used is None

    @pytest.mark.asyncio
    async def test_no_results_skips_extraction(self):
        extractor = MagicMock()
        extractor.extract = AsyncMock(return_value=[])
        context = SearchContext(settings=_settings(), providers=[FakeProvider("firecrawl")])
        orch = SearchOrchestrator(context, extractor=extractor)

        response = await orch.execute_enhanced_search(self.request)

        extractor.extract.assert_not_awaited()
        assert response.events == []
        assert response.provider_used is None
