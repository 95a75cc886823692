"""
Repository for previously collected events stored in Supabase.
"""

from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from supabase import Client

from database.supabase_client import get_supabase_client

COLLECTED_EVENTS_TABLE = "collected_events"
COLLECTED_EVENT_COLUMNS = "source_url,title,description,city,country,starts_at,ends_at"


class CollectedEventsRepository:
    """
    Read access to the `collected_events` table.

    The supabase client is synchronous; callers running inside an event
    loop should go through asyncio.to_thread.
    """

    def __init__(self, client: Optional[Client] = None):
        self.supabase: Optional[Client] = client if client is not None else get_supabase_client()

    @property
    def available(self) -> bool:
        return self.supabase is not None

    def search(
        self,
        keywords: Sequence[str] = (),
        country: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        """
        Events matching any keyword in title or description.

        Args:
            keywords: Plain terms, matched case-insensitively
            country: ISO-2 code stored in the `country` column
            date_from: Earliest `starts_at`
            date_to: Latest `starts_at`
            limit: Max rows

        Returns:
            Raw rows as dicts
        """
        if self.supabase is None:
            return []

        query = (
            self.supabase.table(COLLECTED_EVENTS_TABLE)
            .select(COLLECTED_EVENT_COLUMNS)
            .limit(limit)
        )
        if country:
            query = query.eq("country", country)
        if date_from:
            query = query.gte("starts_at", date_from.isoformat())
        if date_to:
            query = query.lte("starts_at", date_to.isoformat())

        if keywords:
            clauses = []
            for kw in keywords:
                clauses.append(f"title.ilike.%{kw}%")
                clauses.append(f"description.ilike.%{kw}%")
            query = query.or_(",".join(clauses))

        response = query.execute()
        return list(response.data or [])
