"""
Enumerations for search data models.
"""

from enum import Enum


class TokenSource(str, Enum):
    """Where a query token came from."""
    USER_CONFIG = "user_config"
    AUGMENTED = "augmented"


class QueryTier(str, Enum):
    """Query scope tier, A narrowest to C broadest."""
    A = "A"
    B = "B"
    C = "C"


class BreakerState(str, Enum):
    """Circuit breaker state."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"
