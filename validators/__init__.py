"""
Validators package initialization.
"""

from .geo import (
    country_name,
    derive_locale,
    fold_place_name,
    is_city_in_country,
    to_iso2_country,
)
from .scope import (
    is_date_in_range,
    is_listing_url,
    parse_event_date,
    partition_by_scope,
    passes_scope,
)

__all__ = [
    "country_name",
    "derive_locale",
    "fold_place_name",
    "is_city_in_country",
    "to_iso2_country",
    "is_date_in_range",
    "is_listing_url",
    "parse_event_date",
    "partition_by_scope",
    "passes_scope",
]
