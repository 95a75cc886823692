"""
Provenance Guard. Checks how each query term got into a query.

Two independent rules:
  1. Vocabulary safety: a blocked term may appear only in user_config
     tokens, never in augmented ones.
  2. Flag consistency: augmented tokens may only exist while augmentation
     is enabled.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional, Union

from models.enums import TokenSource
from models.schema import ComposedQuery, Token

from .config import SearchSettings, resolve_settings
from .errors import ProvenanceViolation
from .vocabulary import BLOCKED_AUGMENTATION_TERMS

logger = logging.getLogger(__name__)

AUGMENTATION_DISABLED_ERROR = "Augmentation is disabled. Found unexpected augmented tokens."

TokenLike = Union[Token, Mapping[str, Any]]


@dataclass
class ProvenanceReport:
    """Non-throwing verdict of validate_query_provenance."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)


def _coerce(tokens: Iterable[TokenLike]) -> List[Token]:
    return [t if isinstance(t, Token) else Token.model_validate(t) for t in tokens]


def _term_pattern(term: str) -> re.Pattern:
    return re.compile(r"(?<!\w)" + re.escape(term) + r"(?!\w)", re.IGNORECASE)


def find_blocked_terms(
    text: str,
    blocked: FrozenSet[str] = BLOCKED_AUGMENTATION_TERMS,
) -> List[str]:
    """Blocked terms occurring in `text` as whole words, sorted."""
    return sorted(term for term in blocked if _term_pattern(term).search(text))


def assert_no_blocked_augmentation(
    tokens: Iterable[TokenLike],
    blocked: FrozenSet[str] = BLOCKED_AUGMENTATION_TERMS,
) -> None:
    """
    Raise ProvenanceViolation if an augmented token carries a blocked term.

    Runs right after composition, before anything is sent to a provider.
    """
    for token in _coerce(tokens):
        if token.source != TokenSource.AUGMENTED:
            continue
        hits = find_blocked_terms(token.text, blocked)
        if hits:
            raise ProvenanceViolation(
                f"Blocked augmentation detected: {hits[0]}",
                term=hits[0],
            )


def validate_query_provenance(
    tokens: Iterable[TokenLike],
    augmentation_enabled: Optional[bool] = None,
    blocked: FrozenSet[str] = BLOCKED_AUGMENTATION_TERMS,
) -> ProvenanceReport:
    """
    Check both provenance rules and report every problem found.

    When `augmentation_enabled` is None the flag is read from the
    environment-backed settings.
    """
    if augmentation_enabled is None:
        augmentation_enabled = SearchSettings.from_env().augmentation_enabled

    tokens = _coerce(tokens)
    errors: List[str] = []

    augmented = [t for t in tokens if t.source == TokenSource.AUGMENTED]
    if augmented and not augmentation_enabled:
        errors.append(AUGMENTATION_DISABLED_ERROR)

    for token in augmented:
        for term in find_blocked_terms(token.text, blocked):
            errors.append(f"Blocked augmentation detected: {term}")

    return ProvenanceReport(is_valid=not errors, errors=errors)


def guard_query(
    query: ComposedQuery,
    settings: Optional[SearchSettings] = None,
) -> None:
    """Run both checks on a composed query; raise on the first failure."""
    settings = resolve_settings(settings)
    assert_no_blocked_augmentation(query.tokens)
    report = validate_query_provenance(
        query.tokens, augmentation_enabled=settings.augmentation_enabled
    )
    if not report.is_valid:
        logger.error(f"Provenance check failed for query '{query.query}': {report.errors}")
        raise ProvenanceViolation(
            f"Query provenance invalid: {'; '.join(report.errors)}",
            errors=report.errors,
        )
