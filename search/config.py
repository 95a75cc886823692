"""
Search configuration.

Settings are plain dataclasses with defaults; from_env() overlays values from
the environment (a local .env file is honoured via python-dotenv). The core
never reads the environment on its own once a SearchSettings object has been
handed to it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from dotenv import load_dotenv


PROVIDER_PRIORITY = ("firecrawl", "cse", "database")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [part.strip() for part in raw.split(",") if part.strip()]


# ------------------------------------------------------------------
# Provider policies
# ------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderPolicy:
    """Timeout, retry and circuit-breaker parameters for one provider."""

    timeout_ms: int = 10000
    max_retries: int = 2
    backoff_ms: int = 500
    failure_threshold: int = 3
    cooldown_s: float = 30.0

    @classmethod
    def from_env(cls, provider: str, default: "ProviderPolicy") -> "ProviderPolicy":
        prefix = provider.upper()
        return cls(
            timeout_ms=_env_int(f"{prefix}_TIMEOUT_MS", default.timeout_ms),
            max_retries=_env_int(f"{prefix}_MAX_RETRIES", default.max_retries),
            backoff_ms=_env_int(f"{prefix}_BACKOFF_MS", default.backoff_ms),
            failure_threshold=_env_int(
                f"{prefix}_CIRCUIT_THRESHOLD", default.failure_threshold
            ),
            cooldown_s=_env_float(f"{prefix}_CIRCUIT_COOLDOWN_S", default.cooldown_s),
        )


DEFAULT_PROVIDER_POLICIES: Dict[str, ProviderPolicy] = {
    "firecrawl": ProviderPolicy(
        timeout_ms=20000, max_retries=2, backoff_ms=500,
        failure_threshold=3, cooldown_s=30.0,
    ),
    "cse": ProviderPolicy(
        timeout_ms=10000, max_retries=2, backoff_ms=500,
        failure_threshold=3, cooldown_s=30.0,
    ),
    "database": ProviderPolicy(
        timeout_ms=5000, max_retries=1, backoff_ms=250,
        failure_threshold=10, cooldown_s=15.0,
    ),
}


# ------------------------------------------------------------------
# Search settings
# ------------------------------------------------------------------

@dataclass
class SearchSettings:
    """Feature flags and thresholds for the search core."""

    augmentation_enabled: bool = False
    max_query_length: int = 230
    default_locale: str = "de"
    default_country: str = "DE"

    # Tier thresholds
    min_results_tier_a: int = 10
    min_results_tier_b: int = 10
    min_results_tier_c: int = 10
    min_keep_after_prior: int = 5
    min_final_results: int = 10

    provider_limit: int = 20
    run_deadline_s: float = 60.0

    # Scope admission defaults
    allow_global_lists: bool = False
    allow_undated: bool = False
    extra_cities: List[str] = field(default_factory=list)

    providers: Dict[str, ProviderPolicy] = field(
        default_factory=lambda: dict(DEFAULT_PROVIDER_POLICIES)
    )

    @classmethod
    def from_env(cls) -> SearchSettings:
        """Load settings from environment variables (and .env if present)."""
        load_dotenv()
        defaults = cls()
        return cls(
            augmentation_enabled=_env_bool(
                "ENABLE_QUERY_AUGMENTATION", defaults.augmentation_enabled
            ),
            max_query_length=_env_int("MAX_QUERY_LENGTH", defaults.max_query_length),
            default_locale=os.getenv("SEARCH_DEFAULT_LOCALE", defaults.default_locale),
            default_country=os.getenv("SEARCH_DEFAULT_COUNTRY", defaults.default_country),
            min_results_tier_a=_env_int("MIN_RESULTS_TIER_A", defaults.min_results_tier_a),
            min_results_tier_b=_env_int("MIN_RESULTS_TIER_B", defaults.min_results_tier_b),
            min_results_tier_c=_env_int("MIN_RESULTS_TIER_C", defaults.min_results_tier_c),
            min_keep_after_prior=_env_int(
                "MIN_KEEP_AFTER_PRIOR", defaults.min_keep_after_prior
            ),
            min_final_results=_env_int("MIN_FINAL_RESULTS", defaults.min_final_results),
            provider_limit=_env_int("SEARCH_PROVIDER_LIMIT", defaults.provider_limit),
            run_deadline_s=_env_float("SEARCH_RUN_DEADLINE_S", defaults.run_deadline_s),
            allow_global_lists=_env_bool("ALLOW_GLOBAL_LISTS", defaults.allow_global_lists),
            allow_undated=_env_bool("ALLOW_UNDATED", defaults.allow_undated),
            extra_cities=_env_list("SEARCH_EXTRA_CITIES"),
            providers={
                name: ProviderPolicy.from_env(name, policy)
                for name, policy in DEFAULT_PROVIDER_POLICIES.items()
            },
        )

    def min_results_for(self, tier: str) -> int:
        """Per-tier minimum unique results before a tier stops calling providers."""
        key = getattr(tier, "value", tier)
        return {
            "A": self.min_results_tier_a,
            "B": self.min_results_tier_b,
            "C": self.min_results_tier_c,
        }[key]

    def policy_for(self, provider: str) -> ProviderPolicy:
        return self.providers.get(provider, ProviderPolicy())

    def with_overrides(self, **changes) -> SearchSettings:
        """Copy with some fields replaced; handy in tests and the CLI."""
        return replace(self, **changes)


def resolve_settings(settings: Optional[SearchSettings]) -> SearchSettings:
    """Use the given settings, or load them from the environment."""
    return settings if settings is not None else SearchSettings.from_env()
