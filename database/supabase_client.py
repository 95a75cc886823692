import logging
import os
from typing import Optional

from supabase import Client, create_client

logger = logging.getLogger(__name__)


def get_supabase_client(
    url: Optional[str] = None,
    key: Optional[str] = None,
) -> Optional[Client]:
    """
    Initialize and return a Supabase client.

    Falls back to SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY from the
    environment. Returns None when either is missing so callers can treat
    the database as unavailable.
    """
    url = url or os.environ.get("SUPABASE_URL")
    key = key or os.environ.get("SUPABASE_SERVICE_ROLE_KEY")

    if not url or not key:
        logger.info("Supabase not configured; database search disabled")
        return None

    return create_client(url, key)
