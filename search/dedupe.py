"""
URL normalisation and the run-wide deduplicated candidate set.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict, Iterator, List, Mapping, Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from models.schema import SearchCandidate


def normalize_url(url: str) -> str:
    """
    Canonical form used as the dedup key.

    - scheme and host are lower-cased (path case is kept)
    - the fragment is dropped
    - a trailing slash is removed except for the root path
    - query parameters are sorted by key, then value

    'HTTPS://Example.com/a/?b=2&a=1' -> 'https://example.com/a?a=1&b=2'
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()

    path = parts.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    query = ""
    if parts.query:
        pairs = parse_qsl(parts.query, keep_blank_values=True)
        query = urlencode(sorted(pairs))

    return urlunsplit((scheme, netloc, path, query, ""))


class CandidateSet:
    """
    Insertion-ordered set of SearchCandidate keyed by normalized URL.

    The first provider/tier to contribute a URL keeps the credit.
    """

    def __init__(self):
        self._items: Dict[str, SearchCandidate] = {}

    def add(self, candidate: SearchCandidate) -> bool:
        """Add a candidate; return False if its URL was already present."""
        key = normalize_url(candidate.url)
        if key in self._items:
            return False
        self._items[key] = candidate
        return True

    def __contains__(self, url: str) -> bool:
        return normalize_url(url) in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[SearchCandidate]:
        return iter(self._items.values())

    def items(self) -> List[SearchCandidate]:
        return list(self._items.values())

    def contributions(self) -> Counter:
        """Unique candidates credited to each provider."""
        return Counter(c.provider for c in self._items.values())

    def top_provider(self, priority: Sequence[str]) -> Optional[str]:
        return top_provider(self.contributions(), priority)


def top_provider(counts: Mapping[str, int], priority: Sequence[str]) -> Optional[str]:
    """
    Provider with the most unique contributions.
    Ties go to the provider listed first in `priority`.
    """
    counts = {p: n for p, n in counts.items() if n > 0}
    if not counts:
        return None
    rank = {name: i for i, name in enumerate(priority)}
    return min(counts, key=lambda p: (-counts[p], rank.get(p, len(rank))))
