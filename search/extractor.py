"""
Event Extractor. Turns URL-level search hits into event-level candidates.

The real extraction stage (page fetch + LLM enrichment) lives outside this
package and plugs in through the EventExtractor protocol. The default
SnippetEventExtractor reads only what the provider already returned:

  - schema.org addressLocality / addressCountry markup in the snippet
  - a known city mentioned in the title or snippet
  - the first recognisable date in the title or snippet

Rules:
  - Never invent data: unknown fields stay None.
  - An empty input list is a valid input and yields an empty output.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from models.schema import EventCandidate, SearchCandidate
from validators.geo import find_known_city
from validators.scope import parse_event_date

logger = logging.getLogger(__name__)

_LOCALITY_RE = re.compile(
    r'"addressLocality"\s*:\s*"([^"]+)"|itemprop="addressLocality"[^>]*>([^<]+)<',
    re.IGNORECASE,
)
_COUNTRY_RE = re.compile(
    r'"addressCountry"\s*:\s*"([^"]+)"|itemprop="addressCountry"[^>]*>([^<]+)<',
    re.IGNORECASE,
)


@runtime_checkable
class EventExtractor(Protocol):
    """Downstream stage consuming the deduplicated URL list."""

    async def extract(
        self,
        candidates: Sequence[SearchCandidate],
        locale: Optional[str] = None,
    ) -> List[EventCandidate]:
        ...


def _first_group(pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    if not match:
        return None
    value = next((g for g in match.groups() if g), "")
    return value.strip() or None


class SnippetEventExtractor:
    """
    Heuristic extractor working from title + snippet only.

    Usage:
        extractor = SnippetEventExtractor()
        events = await extractor.extract(response.items, locale="de")
    """

    async def extract(
        self,
        candidates: Sequence[SearchCandidate],
        locale: Optional[str] = None,
    ) -> List[EventCandidate]:
        events = [self.extract_one(c, locale) for c in candidates]
        logger.debug(f"SnippetEventExtractor: {len(events)} events from {len(candidates)} hits")
        return events

    def extract_one(self, candidate: SearchCandidate, locale: Optional[str] = None) -> EventCandidate:
        text = f"{candidate.title}\n{candidate.snippet}"

        city = _first_group(_LOCALITY_RE, text) or find_known_city(text)
        country = _first_group(_COUNTRY_RE, text)

        start = parse_event_date(candidate.title, locale) or parse_event_date(
            candidate.snippet, locale
        )

        return EventCandidate(
            url=candidate.url,
            title=candidate.title or None,
            snippet=candidate.snippet or None,
            city=city,
            country=country,
            start_date=start.isoformat() if start else None,
            provider=candidate.provider,
            tier=candidate.tier,
        )
