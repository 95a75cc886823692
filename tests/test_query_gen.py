"""
Tests for query composition and the provenance guard.
"""

import pytest

from models.enums import QueryTier, TokenSource
from models.schema import ComposedQuery, Token
from search.config import SearchSettings
from search.errors import ProvenanceViolation, QueryTooLongError, SearchConfigurationError
from search.provenance import (
    AUGMENTATION_DISABLED_ERROR,
    assert_no_blocked_augmentation,
    find_blocked_terms,
    guard_query,
    validate_query_provenance,
)
from search.query_gen import (
    NoAugmentation,
    QueryBuilder,
    ScaffoldAugmentation,
    build_queries,
    fit_base_query,
    select_augmentation,
    split_top_level,
)
from search.vocabulary import BLOCKED_AUGMENTATION_TERMS, EVENT_SCAFFOLDS


BASE = '(compliance OR "e-discovery" OR "legal tech")'


# ===================================================================
# Query Builder: augmentation disabled
# ===================================================================


class TestQueryBuilderDisabled:
    """Augmentation off: every tier is exactly '(base)'."""

    def setup_method(self):
        self.builder = QueryBuilder(SearchSettings(augmentation_enabled=False))

    def test_every_tier_is_wrapped_base(self):
        tiers = self.builder.build_tier_queries(BASE, locale="de", city="Berlin")
        for tier, queries in tiers.tiers():
            assert len(queries) == 1
            assert queries[0].query == f"({BASE})"
            assert queries[0].tier == tier

    def test_all_tokens_user_config(self):
        tiers = self.builder.build_tier_queries("Datenschutz", city="München")
        for q in tiers.all_queries():
            assert all(t.source == TokenSource.USER_CONFIG for t in q.tokens)
            assert q.augmented_tokens == []

    def test_city_is_ignored(self):
        queries = self.builder.build_queries("Datenschutz", QueryTier.A, city="Berlin")
        assert "Berlin" not in queries[0].query

    def test_strategy_selection(self):
        settings = SearchSettings(augmentation_enabled=False)
        assert isinstance(select_augmentation(settings, "de", "Berlin"), NoAugmentation)

    def test_empty_base_rejected(self):
        with pytest.raises(SearchConfigurationError):
            self.builder.build_queries("   ", QueryTier.A)

    def test_module_level_build_queries(self):
        queries = build_queries(
            "compliance", "B", settings=SearchSettings(augmentation_enabled=False)
        )
        assert [q.query for q in queries] == ["(compliance)"]
        assert queries[0].tier == QueryTier.B


# ===================================================================
# Query Builder: augmentation enabled
# ===================================================================


class TestQueryBuilderEnabled:
    """Augmentation on: scaffold nouns and city appended as augmented tokens."""

    def setup_method(self):
        self.settings = SearchSettings(augmentation_enabled=True)
        self.builder = QueryBuilder(self.settings)

    def test_each_tier_contains_scaffold_term(self):
        tiers = self.builder.build_tier_queries(BASE, locale="de", city="Berlin")
        nouns = EVENT_SCAFFOLDS["de"]
        for _, queries in tiers.tiers():
            assert any(any(n in q.query for n in nouns) for q in queries)
            assert any(q.augmented_tokens for q in queries)

    def test_more_queries_than_disabled(self):
        enabled = self.builder.build_tier_queries(BASE, locale="de", city="Berlin")
        disabled = QueryBuilder(SearchSettings()).build_tier_queries(BASE, locale="de", city="Berlin")
        for tier in QueryTier:
            assert len(enabled.for_tier(tier)) > len(disabled.for_tier(tier))

    def test_tier_a_includes_city(self):
        queries = self.builder.build_queries(BASE, QueryTier.A, locale="de", city="Berlin")
        assert all(q.query.endswith(" Berlin") for q in queries)
        city_tokens = [t for t in queries[0].tokens if t.text == "Berlin"]
        assert city_tokens[0].source == TokenSource.AUGMENTED

    def test_tier_b_has_no_city(self):
        queries = self.builder.build_queries(BASE, QueryTier.B, locale="de", city="Berlin")
        assert all("Berlin" not in q.query for q in queries)

    def test_tier_c_uses_or_groups(self):
        queries = self.builder.build_queries(BASE, QueryTier.C, locale="en")
        assert queries[0].query == f"({BASE}) (conference OR summit OR congress)"

    def test_multiword_city_is_quoted(self):
        queries = self.builder.build_queries("compliance", QueryTier.A, locale="de", city="Frankfurt am Main")
        assert queries[0].query == '(compliance) Konferenz "Frankfurt am Main"'

    def test_base_is_kept_verbatim_as_first_group(self):
        tiers = self.builder.build_tier_queries(BASE, locale="fr", city="Paris")
        for q in tiers.all_queries():
            assert q.query.startswith(f"({BASE})")
            assert q.tokens[0].text == BASE
            assert q.tokens[0].source == TokenSource.USER_CONFIG

    def test_no_blocked_term_is_augmented(self):
        tiers = self.builder.build_tier_queries(BASE, locale="de", city="Berlin")
        for q in tiers.all_queries():
            for token in q.augmented_tokens:
                assert find_blocked_terms(token.text) == []

    def test_unknown_locale_falls_back_to_english(self):
        strategy = select_augmentation(self.settings, "pt", None)
        assert isinstance(strategy, ScaffoldAugmentation)
        assert tuple(strategy.terms) == EVENT_SCAFFOLDS["en"]

    def test_user_config_blocked_term_passes_guard(self):
        tiers = self.builder.build_tier_queries("regtech", locale="de", city="Berlin")
        for q in tiers.all_queries():
            guard_query(q, self.settings)


# ===================================================================
# Query length
# ===================================================================


class TestQueryLength:
    """Queries never exceed the cap and never split a term."""

    def setup_method(self):
        self.settings = SearchSettings(augmentation_enabled=True, max_query_length=230)
        self.builder = QueryBuilder(self.settings)

    def test_all_queries_under_cap(self):
        tiers = self.builder.build_tier_queries(BASE, locale="de", city="Frankfurt am Main")
        assert all(len(q.query) <= 230 for q in tiers.all_queries())

    def test_triple_length_base_stays_under_cap(self):
        long_base = " OR ".join([BASE] * 3)
        long_base = " OR ".join([long_base] * 3)
        assert len(long_base) > 230
        tiers = self.builder.build_tier_queries(long_base, locale="de", city="Berlin")
        assert tiers.all_queries()
        assert all(len(q.query) <= 230 for q in tiers.all_queries())

    def test_variants_dropped_not_truncated(self):
        base = "x" * 215
        queries = self.builder.build_queries(base, QueryTier.A, locale="de", city="Berlin")
        for q in queries:
            assert len(q.query) <= 230
            assert q.query.startswith(f"({base})")

    def test_falls_back_to_plain_when_nothing_fits(self):
        base = "x" * 226
        queries = self.builder.build_queries(base, QueryTier.C, locale="de")
        assert [q.query for q in queries] == [f"({base})"]
        assert queries[0].augmented_tokens == []

    def test_indivisible_term_raises(self):
        with pytest.raises(QueryTooLongError):
            self.builder.build_queries('"' + "a" * 300 + '"', QueryTier.A)

    def test_fit_keeps_whole_groups(self):
        base = '(alpha OR "beta gamma") delta epsilon'
        assert fit_base_query(base, 30) == '(alpha OR "beta gamma") delta'

    def test_fit_recurses_into_group(self):
        base = '(alpha OR beta OR gamma OR delta)'
        fitted = fit_base_query(base, 20)
        assert fitted == "(alpha OR beta)"

    def test_fit_strips_dangling_operator(self):
        assert fit_base_query("alpha OR betagammadelta", 12) == "alpha"

    def test_split_top_level(self):
        assert split_top_level('(a OR b) "c d" e') == ["(a OR b)", '"c d"', "e"]


# ===================================================================
# Provenance Guard
# ===================================================================


class TestAssertNoBlockedAugmentation:
    """Fail-fast denylist check on augmented tokens."""

    def test_augmented_blocked_term_raises(self):
        with pytest.raises(ProvenanceViolation) as exc:
            assert_no_blocked_augmentation([{"text": "regtech", "source": "augmented"}])
        assert exc.value.term == "regtech"
        assert "regtech" in str(exc.value)

    def test_user_config_blocked_term_allowed(self):
        assert_no_blocked_augmentation([{"text": "regtech", "source": "user_config"}])

    def test_multiword_blocked_term(self):
        with pytest.raises(ProvenanceViolation) as exc:
            assert_no_blocked_augmentation(
                [Token(text='"Trade Show"', source=TokenSource.AUGMENTED)]
            )
        assert exc.value.term == "trade show"

    def test_substring_is_not_a_match(self):
        # "esg" must not match inside another word
        assert_no_blocked_augmentation([{"text": "Fortbildungsgesgipfel", "source": "augmented"}])

    def test_denylist_is_nonempty(self):
        assert "regtech" in BLOCKED_AUGMENTATION_TERMS


class TestValidateQueryProvenance:
    """Non-throwing provenance report."""

    def test_augmented_with_flag_off_is_invalid(self):
        report = validate_query_provenance(
            [{"text": "Konferenz", "source": "augmented"}], augmentation_enabled=False
        )
        assert report.is_valid is False
        assert AUGMENTATION_DISABLED_ERROR in report.errors
        assert "disabled" in report.errors[0].lower()

    def test_augmented_with_flag_on_is_valid(self):
        report = validate_query_provenance(
            [{"text": "Konferenz", "source": "augmented"}], augmentation_enabled=True
        )
        assert report.is_valid is True
        assert report.errors == []

    def test_both_rules_reported(self):
        report = validate_query_provenance(
            [{"text": "esg", "source": "augmented"}], augmentation_enabled=False
        )
        assert report.is_valid is False
        assert len(report.errors) == 2
        assert any("esg" in e for e in report.errors)

    def test_user_config_only_is_valid_with_flag_off(self):
        report = validate_query_provenance(
            [{"text": "privacy", "source": "user_config"}], augmentation_enabled=False
        )
        assert report.is_valid is True

    def test_flag_read_from_env(self, monkeypatch):
        monkeypatch.setenv("ENABLE_QUERY_AUGMENTATION", "false")
        report = validate_query_provenance([{"text": "Forum", "source": "augmented"}])
        assert report.is_valid is False

        monkeypatch.setenv("ENABLE_QUERY_AUGMENTATION", "true")
        report = validate_query_provenance([{"text": "Forum", "source": "augmented"}])
        assert report.is_valid is True


class TestGuardQuery:
    """guard_query combines both checks and raises."""

    def test_augmented_query_rejected_when_disabled(self):
        query = ComposedQuery(
            query="(compliance) Konferenz",
            tier=QueryTier.B,
            tokens=(
                Token(text="compliance", source=TokenSource.USER_CONFIG),
                Token(text="Konferenz", source=TokenSource.AUGMENTED),
            ),
        )
        with pytest.raises(ProvenanceViolation) as exc:
            guard_query(query, SearchSettings(augmentation_enabled=False))
        assert AUGMENTATION_DISABLED_ERROR in exc.value.errors

    def test_blocked_augmentation_rejected_when_enabled(self):
        query = ComposedQuery(
            query="(compliance) governance",
            tier=QueryTier.B,
            tokens=(
                Token(text="compliance", source=TokenSource.USER_CONFIG),
                Token(text="governance", source=TokenSource.AUGMENTED),
            ),
        )
        with pytest.raises(ProvenanceViolation, match="governance"):
            guard_query(query, SearchSettings(augmentation_enabled=True))
