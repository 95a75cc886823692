"""
Geographic and temporal scope admission for event candidates.

passes_scope() is a pure function of (candidate, config): it returns a fresh
ScopeDecision every time and never writes anything onto the candidate.
"""

import re
from datetime import date
from typing import Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

from dateutil import parser as date_parser

from models.schema import EventCandidate, ScopeDecision, ScopeFilterConfig
from .geo import is_city_in_country, to_iso2_country


# Rejection codes, stable for log grouping
GLOBAL_LIST = "global_list"
COUNTRY_MISMATCH = "country_mismatch"
CITY_NOT_IN_COUNTRY = "city_not_in_country"
NO_LOCATION = "no_location"
DATE_UNPARSEABLE = "date_unparseable"
DATE_OUT_OF_RANGE = "date_out_of_range"


# ------------------------------------------------------------------
# Listing pages
# ------------------------------------------------------------------

_LIST_INDEX_RE = re.compile(
    r"/(events?|calendar|kalender|conferences?|veranstaltungen|termine)/?$",
    re.IGNORECASE,
)
# whole path segments only, so slugs like 'upcoming-legal-summit' stay detail pages
_LIST_MARKER_RE = re.compile(
    r"(?:^|/)(?:(?:upcoming|past|archive)(?:-events)?|all-events)(?:/|$)",
    re.IGNORECASE,
)


def is_listing_url(url: str) -> bool:
    """
    True for generic event index pages such as '/events' or
    '/veranstaltungen/', as opposed to a slugged detail page.
    """
    path = urlparse(url).path or "/"
    return bool(_LIST_INDEX_RE.search(path) or _LIST_MARKER_RE.search(path))


# ------------------------------------------------------------------
# Date parsing
# ------------------------------------------------------------------

class GermanParserInfo(date_parser.parserinfo):
    MONTHS = [
        ("Jan", "Januar", "Jänner"),
        ("Feb", "Februar"),
        ("Mär", "Mrz", "März", "Maerz"),
        ("Apr", "April"),
        ("Mai",),
        ("Jun", "Juni"),
        ("Jul", "Juli"),
        ("Aug", "August"),
        ("Sep", "Sept", "September"),
        ("Okt", "Oktober"),
        ("Nov", "November"),
        ("Dez", "Dezember"),
    ]


class FrenchParserInfo(date_parser.parserinfo):
    MONTHS = [
        ("janv", "janvier"),
        ("févr", "fevr", "février", "fevrier"),
        ("mars",),
        ("avr", "avril"),
        ("mai",),
        ("juin",),
        ("juil", "juillet"),
        ("août", "aout"),
        ("sept", "septembre"),
        ("oct", "octobre"),
        ("nov", "novembre"),
        ("déc", "dec", "décembre", "decembre"),
    ]


PARSER_INFOS = {
    "de": GermanParserInfo(dayfirst=True),
    "fr": FrenchParserInfo(dayfirst=True),
    "en": date_parser.parserinfo(),
}

_ISO_RE = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_DOTTED_RE = re.compile(r"(?<!\d)(\d{1,2})\.(\d{1,2})\.(\d{4}|\d{2})(?!\d)")
_SLASHED_RE = re.compile(r"(?<!\d)(\d{1,2})/(\d{1,2})/(\d{4})(?!\d)")
# '12. November 2025', '12-14 mars 2026', '3 März 2026'
_DAY_MONTH_YEAR_RE = re.compile(
    r"(?<!\d)(\d{1,2})\.?(?:\s*[-–]\s*\d{1,2}\.?)?\s+([^\W\d_]+)\.?\s+(\d{4})"
)
# 'November 12, 2025', 'Nov 12-14, 2025'
_MONTH_DAY_YEAR_RE = re.compile(
    r"([^\W\d_]+)\.?\s+(\d{1,2})(?:st|nd|rd|th)?(?:\s*[-–]\s*\d{1,2})?,?\s+(\d{4})"
)


def _normalize_locale(locale: Optional[str]) -> str:
    return (locale or "").strip().lower().replace("_", "-")


def _make_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _month_number(name: str, locale: str) -> Optional[int]:
    """Resolve a month name, trying the locale's vocabulary first."""
    primary = locale.split("-")[0]
    order = [primary] + [code for code in PARSER_INFOS if code != primary]
    for code in order:
        info = PARSER_INFOS.get(code)
        if info is None:
            continue
        month = info.month(name)
        if month:
            return month
    return None


def parse_event_date(text: Optional[str], locale: Optional[str] = None) -> Optional[date]:
    """
    Parse the first recognisable date in `text`.

    Supported formats:
        2025-11-12              ISO
        12.11.2025 / 12.11.25   dotted, day first (two-digit years are 20yy)
        12/11/2025              slashed, day first; month first for en-US
        12. November 2025       day + month name (German, French, English)
        November 12, 2025       month name + day (English)

    Args:
        text: Raw date text, possibly embedded in a sentence
        locale: 'de', 'fr', 'en', 'en-US', ...

    Returns:
        date, or None when nothing parseable is found
    """
    if not text or not text.strip():
        return None
    trimmed = text.strip()
    locale = _normalize_locale(locale)

    # earliest position in the text wins; ties keep the format order above
    matches = list(_find_dates(trimmed, locale))
    if not matches:
        return None
    return min(matches, key=lambda m: m[0])[1]


def _find_dates(text: str, locale: str) -> Iterator[Tuple[int, Optional[date]]]:
    """Yield (offset, date) for every recognised date expression."""
    match = _ISO_RE.search(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        yield match.start(), _make_date(year, month, day)

    match = _DOTTED_RE.search(text)
    if match:
        day, month, year = (int(g) for g in match.groups())
        if year < 100:
            year += 2000
        yield match.start(), _make_date(year, month, day)

    match = _SLASHED_RE.search(text)
    if match:
        first, second, year = (int(g) for g in match.groups())
        if locale == "en-us":
            yield match.start(), _make_date(year, first, second)
        else:
            yield match.start(), _make_date(year, second, first)

    for match in _DAY_MONTH_YEAR_RE.finditer(text):
        month = _month_number(match.group(2), locale)
        if month:
            yield match.start(), _make_date(int(match.group(3)), month, int(match.group(1)))
            break

    for match in _MONTH_DAY_YEAR_RE.finditer(text):
        month = _month_number(match.group(1), locale)
        if month:
            yield match.start(), _make_date(int(match.group(3)), month, int(match.group(2)))
            break


def is_date_in_range(
    value: Optional[date],
    date_from: Optional[date],
    date_to: Optional[date],
) -> bool:
    """Inclusive window check; a missing bound is open."""
    if value is None:
        return False
    if date_from and value < date_from:
        return False
    if date_to and value > date_to:
        return False
    return True


# ------------------------------------------------------------------
# Admission
# ------------------------------------------------------------------

def _reject(reason: str, code: str) -> ScopeDecision:
    return ScopeDecision(passes=False, reason=reason, code=code)


def _check_country(candidate: EventCandidate, config: ScopeFilterConfig) -> Optional[ScopeDecision]:
    target = to_iso2_country(config.country_code)
    if not target:
        return None

    raw_country = (candidate.country_code or "").strip() or (candidate.country or "").strip()
    explicit = to_iso2_country(candidate.country_code) or to_iso2_country(candidate.country)
    city = (candidate.city or "").strip()
    city_in_target = is_city_in_country(city, target, config.cities)

    # any stated country decides, recognised or not
    if raw_country:
        if explicit == target:
            return None
        label = explicit or raw_country
        if city_in_target:
            return _reject(
                f"Conflicting location: city '{city}' is in {target} but country is {label}",
                COUNTRY_MISMATCH,
            )
        return _reject(f"Country mismatch: {label} is not {target}", COUNTRY_MISMATCH)

    if not city:
        return _reject("No country or city signal; cannot confirm scope", NO_LOCATION)
    if not city_in_target:
        return _reject(f"City '{city}' is not a known city in {target}", CITY_NOT_IN_COUNTRY)
    return None


def _check_dates(candidate: EventCandidate, config: ScopeFilterConfig) -> Optional[ScopeDecision]:
    if not config.has_date_window:
        return None

    start = parse_event_date(candidate.start_date, config.locale)
    end = parse_event_date(candidate.end_date, config.locale)
    if start is None and end is None:
        if config.allow_undated:
            return None
        raw = candidate.start_date or candidate.end_date or ""
        return _reject(f"Unparseable or missing event date: '{raw}'", DATE_UNPARSEABLE)

    span_start = start or end
    span_end = end or start
    if span_end < span_start:
        span_start, span_end = span_end, span_start

    # multi-day events count when any day overlaps the window
    overlaps = (
        is_date_in_range(span_start, None, config.date_to)
        and is_date_in_range(span_end, config.date_from, None)
    )

    if not overlaps:
        window = f"{config.date_from or '...'} to {config.date_to or '...'}"
        return _reject(
            f"Date out of range: {span_start.isoformat()} not in {window}",
            DATE_OUT_OF_RANGE,
        )
    return None


def passes_scope(candidate: EventCandidate, config: ScopeFilterConfig) -> ScopeDecision:
    """
    Decide whether an event candidate is inside the configured scope.

    Rules, in order:
        1. Generic listing pages are rejected unless allow_global_lists.
        2. An explicit country must match the target; without one, the
           city must be a known city of the target country.
        3. With a date window, the parsed date must fall inside it.
           Unparseable dates are rejected unless allow_undated.
        4. No country and no city means the candidate cannot be placed.

    Args:
        candidate: Event-level candidate
        config: Scope settings

    Returns:
        ScopeDecision with a reason on rejection
    """
    if not config.allow_global_lists and is_listing_url(candidate.url):
        return _reject("Global list/aggregator page excluded by scope filter", GLOBAL_LIST)

    for check in (_check_country, _check_dates):
        decision = check(candidate, config)
        if decision is not None:
            return decision

    return ScopeDecision(passes=True, reason="Passes all scope checks")


def partition_by_scope(
    candidates: Iterable[EventCandidate],
    config: ScopeFilterConfig,
) -> Tuple[List[EventCandidate], List[Tuple[EventCandidate, ScopeDecision]]]:
    """Split candidates into (admitted, [(rejected, decision), ...])."""
    admitted: List[EventCandidate] = []
    rejected: List[Tuple[EventCandidate, ScopeDecision]] = []
    for candidate in candidates:
        decision = passes_scope(candidate, config)
        if decision.passes:
            admitted.append(candidate)
        else:
            rejected.append((candidate, decision))
    return admitted, rejected
