"""
Domain Trust Model: URL-level gate applied before a hit counts toward
any threshold.

Deny = social media, forums, Q&A and homework sites, plus hits whose title
says the page is an error page.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable, Optional, Set
from urllib.parse import urlparse


class DomainVerdict(str, Enum):
    ALLOWED = "allowed"
    DENY = "deny"
    INVALID = "invalid"


# Global denylist, never event sources
GLOBAL_DENYLIST: Set[str] = {
    "facebook.com",
    "instagram.com",
    "twitter.com",
    "x.com",
    "linkedin.com",
    "youtube.com",
    "tiktok.com",
    "pinterest.com",
    "reddit.com",
    "mumsnet.com",
    "quora.com",
    "answers.yahoo.com",
    "quizlet.com",
    "chegg.com",
    "coursehero.com",
    "brainly.com",
    "studocu.com",
    "4chan.org",
    "8kun.top",
}

_ERROR_TITLE_RE = re.compile(r"\b(404|page not found|fehler 404|not found|seite nicht gefunden)\b", re.IGNORECASE)


class DomainTrustModel:
    """
    Decide whether a URL may enter the candidate set.

    Resolution order:
      1. Unparseable or non-http(s) URL -> INVALID
      2. Global denylist or configured extras (suffix match) -> DENY
      3. Otherwise -> ALLOWED
    """

    def __init__(self, extra_deny: Optional[Iterable[str]] = None):
        self._deny: Set[str] = set(GLOBAL_DENYLIST)
        if extra_deny:
            self._deny |= {d.lower().strip() for d in extra_deny if d and d.strip()}

    @property
    def denied_domains(self) -> Set[str]:
        return self._deny

    def classify(self, url: str) -> DomainVerdict:
        """Classify a URL's domain."""
        domain = self._extract_domain(url)
        if not domain:
            return DomainVerdict.INVALID
        if self._domain_matches(domain, self._deny):
            return DomainVerdict.DENY
        return DomainVerdict.ALLOWED

    def is_allowed(self, url: str) -> bool:
        """Return True if URL is valid and not denylisted."""
        return self.classify(url) == DomainVerdict.ALLOWED

    def rejection_reason(self, url: str, title: Optional[str] = None) -> Optional[str]:
        """Short reason code when the hit must be dropped, else None."""
        verdict = self.classify(url)
        if verdict == DomainVerdict.INVALID:
            return "invalid_url"
        if verdict == DomainVerdict.DENY:
            return "blocked_domain"
        if title and _ERROR_TITLE_RE.search(title):
            return "error_page"
        return None

    # ------------------------------------------------------------------

    @staticmethod
    def _extract_domain(url: str) -> str:
        """Get host from URL, without a leading 'www.'."""
        try:
            parsed = urlparse(url)
        except ValueError:
            return ""
        if parsed.scheme not in ("http", "https"):
            return ""
        host = parsed.hostname or ""
        if host.startswith("www."):
            host = host[4:]
        return host.lower()

    @staticmethod
    def _domain_matches(domain: str, domain_set: Set[str]) -> bool:
        """
        Check if domain matches any entry in the set.
        Supports suffix matching (e.g., "de.linkedin.com" matches "linkedin.com").
        """
        for d in domain_set:
            if domain == d or domain.endswith("." + d):
                return True
        return False
