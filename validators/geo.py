"""
Country and city knowledge used for geographic scoping.
"""

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class CountryInfo:
    """Static facts about a supported target country."""
    iso2: str
    name: str
    locale: str
    cities: Tuple[str, ...] = field(default_factory=tuple)


COUNTRIES: Dict[str, CountryInfo] = {
    "DE": CountryInfo(
        "DE", "Germany", "de",
        ("Berlin", "München", "Munich", "Frankfurt am Main", "Frankfurt", "Hamburg",
         "Köln", "Cologne", "Stuttgart", "Düsseldorf", "Leipzig", "Hannover",
         "Nürnberg", "Nuremberg", "Dresden", "Bonn", "Essen", "Dortmund", "Bremen",
         "Mannheim", "Karlsruhe", "Wiesbaden", "Mainz", "Münster", "Augsburg",
         "Heidelberg", "Freiburg", "Potsdam", "Regensburg"),
    ),
    "FR": CountryInfo(
        "FR", "France", "fr",
        ("Paris", "Lyon", "Marseille", "Lille", "Toulouse", "Bordeaux", "Nantes",
         "Strasbourg", "Nice", "Rennes", "Montpellier", "Grenoble"),
    ),
    "NL": CountryInfo(
        "NL", "Netherlands", "en",
        ("Amsterdam", "Rotterdam", "Utrecht", "Eindhoven", "Groningen", "The Hague",
         "Den Haag", "Tilburg", "Almere", "Breda", "Nijmegen", "Maastricht"),
    ),
    "GB": CountryInfo(
        "GB", "United Kingdom", "en",
        ("London", "Manchester", "Birmingham", "Glasgow", "Edinburgh", "Liverpool",
         "Leeds", "Bristol", "Cardiff", "Belfast", "Cambridge", "Oxford"),
    ),
    "ES": CountryInfo(
        "ES", "Spain", "en",
        ("Madrid", "Barcelona", "Valencia", "Sevilla", "Seville", "Bilbao", "Zaragoza",
         "Málaga", "Murcia", "Granada", "Valladolid"),
    ),
    "IT": CountryInfo(
        "IT", "Italy", "en",
        ("Roma", "Rome", "Milano", "Milan", "Torino", "Turin", "Napoli", "Naples",
         "Bologna", "Firenze", "Florence", "Genova", "Venezia", "Venice", "Verona",
         "Palermo"),
    ),
    "AT": CountryInfo(
        "AT", "Austria", "de",
        ("Wien", "Vienna", "Graz", "Linz", "Salzburg", "Innsbruck", "Klagenfurt"),
    ),
    "CH": CountryInfo(
        "CH", "Switzerland", "de",
        ("Zürich", "Zurich", "Genf", "Geneva", "Genève", "Basel", "Bern", "Lausanne",
         "Luzern", "Lucerne", "St. Gallen", "Lugano"),
    ),
}

# Keys are upper-case with non-letters removed
COUNTRY_ALIASES: Dict[str, str] = {
    "GERMANY": "DE",
    "DEUTSCHLAND": "DE",
    "BUNDESREPUBLIKDEUTSCHLAND": "DE",
    "FRANCE": "FR",
    "FRANKREICH": "FR",
    "NETHERLANDS": "NL",
    "THENETHERLANDS": "NL",
    "NEDERLAND": "NL",
    "NIEDERLANDE": "NL",
    "HOLLAND": "NL",
    "UK": "GB",
    "UNITEDKINGDOM": "GB",
    "GREATBRITAIN": "GB",
    "ENGLAND": "GB",
    "SCOTLAND": "GB",
    "WALES": "GB",
    "SPAIN": "ES",
    "ESPANA": "ES",
    "SPANIEN": "ES",
    "ITALY": "IT",
    "ITALIA": "IT",
    "ITALIEN": "IT",
    "AUSTRIA": "AT",
    "OSTERREICH": "AT",
    "OESTERREICH": "AT",
    "SWITZERLAND": "CH",
    "SCHWEIZ": "CH",
    "SUISSE": "CH",
    # ISO-3
    "DEU": "DE",
    "FRA": "FR",
    "NLD": "NL",
    "GBR": "GB",
    "ESP": "ES",
    "ITA": "IT",
    "AUT": "AT",
    "CHE": "CH",
    # outside the supported targets, recognised so they can be rejected
    "USA": "US",
    "UNITEDSTATES": "US",
    "UNITEDSTATESOFAMERICA": "US",
}


def strip_accents(text: str) -> str:
    """Drop combining marks: 'München' -> 'Munchen', 'España' -> 'Espana'."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def fold_place_name(name: str) -> str:
    """
    Reduce a place name to a comparison key.

    Lower-cases, turns German umlaut transliterations ('ue', 'oe', 'ae')
    and the umlauts themselves into the plain vowel, removes accents and
    collapses punctuation. 'München', 'Munchen' and 'Muenchen' all fold
    to 'munchen'.
    """
    text = name.strip().lower()
    text = text.replace("ß", "ss")
    text = strip_accents(text)
    text = re.sub(r"([aou])e", r"\1", text)
    text = re.sub(r"[^a-z0-9]+", " ", text)
    return text.strip()


def to_iso2_country(raw: Optional[str]) -> Optional[str]:
    """
    Normalize a country code or name to ISO-2.

    Args:
        raw: 'DE', 'de', 'Germany', 'Deutschland', 'UK', 'España', ...

    Returns:
        ISO-2 upper-case code, or None when not recognised. Unknown
        two-letter inputs are passed through upper-cased.
    """
    if not raw:
        return None
    trimmed = raw.strip()
    if not trimmed:
        return None

    upper = trimmed.upper()
    if len(upper) == 2 and upper.isalpha():
        return COUNTRY_ALIASES.get(upper, upper)

    key = re.sub(r"[^A-Z]", "", strip_accents(upper))
    if key in COUNTRIES:
        return key
    return COUNTRY_ALIASES.get(key)


def country_name(iso2: Optional[str]) -> Optional[str]:
    """English display name for a country, if known."""
    code = to_iso2_country(iso2)
    info = COUNTRIES.get(code or "")
    return info.name if info else None


def derive_locale(country: Optional[str], override: Optional[str] = None) -> str:
    """Scaffold locale for a country ('de', 'fr' or 'en')."""
    if override and override.strip():
        return override.strip().lower()
    info = COUNTRIES.get(to_iso2_country(country) or "")
    return info.locale if info else "en"


def city_keys(iso2: str, extra_cities: Iterable[str] = ()) -> FrozenSet[str]:
    """Folded names of every city known to belong to `iso2`."""
    info = COUNTRIES.get(iso2)
    names: List[str] = list(info.cities) if info else []
    names.extend(extra_cities)
    return frozenset(fold_place_name(n) for n in names if n and n.strip())


def country_for_city(city: Optional[str]) -> Optional[str]:
    """ISO-2 of the country a known city belongs to, or None."""
    if not city:
        return None
    key = fold_place_name(city)
    for iso2, info in COUNTRIES.items():
        if key in {fold_place_name(c) for c in info.cities}:
            return iso2
    return None


def is_city_in_country(
    city: Optional[str],
    country: Optional[str],
    extra_cities: Iterable[str] = (),
) -> bool:
    """
    Whether `city` is a recognised city of `country`.

    Args:
        city: City name in any spelling (accented, ASCII-folded, transliterated)
        country: Target country code or name
        extra_cities: Additional configured cities counted as in-country

    Returns:
        True when the folded city name is on the country's list
    """
    iso2 = to_iso2_country(country)
    if not city or not iso2:
        return False
    return fold_place_name(city) in city_keys(iso2, extra_cities)


def find_known_city(text: Optional[str], countries: Optional[Iterable[str]] = None) -> Optional[str]:
    """
    First known city mentioned in free text, returned in its listed spelling.

    Longer names are tried first so 'Frankfurt am Main' wins over 'Frankfurt'.
    """
    if not text:
        return None
    haystack = f" {fold_place_name(text)} "
    codes = list(countries) if countries else list(COUNTRIES)
    candidates = [
        city
        for code in codes
        for city in (COUNTRIES[code].cities if code in COUNTRIES else ())
    ]
    for city in sorted(candidates, key=len, reverse=True):
        if f" {fold_place_name(city)} " in haystack:
            return city
    return None
