"""Meetings handed to the core by the request layer, kept in the CacheLayer.

The core never talks to a calendar provider: a single meeting is stored when a briefing is
requested, and meeting lists go through `list_meetings`, which takes the caller's fetch function
and only calls it when the cached list is missing or older than the TTL.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from briefings.models.schemas import Meeting
from briefings.store.cache import CacheLayer

logger = logging.getLogger(__name__)


def is_meeting_stale(meeting: Meeting, ttl_seconds: float, now: Optional[datetime] = None) -> bool:
    """True when the meeting was never fetched or its lastFetchedAt is older than ttl_seconds."""
    if meeting.last_fetched_at is None:
        return True
    now = now or datetime.now(timezone.utc)
    fetched = meeting.last_fetched_at
    if fetched.tzinfo is None:
        fetched = fetched.replace(tzinfo=timezone.utc)
    return (now - fetched).total_seconds() > ttl_seconds


class MeetingDirectory:
    """Meeting lookups for the pipeline plus the read-through meeting-list path for the request layer."""

    def __init__(self, cache: CacheLayer, meeting_ttl_seconds: int, list_ttl_seconds: int):
        self.cache = cache
        self.meeting_ttl_seconds = meeting_ttl_seconds
        self.list_ttl_seconds = list_ttl_seconds

    def save(self, owner_id: str, meeting: Meeting) -> None:
        key = self.cache.build_key("meeting", owner_id, meeting.id)
        self.cache.set(key, meeting.to_wire(), self.meeting_ttl_seconds)

    def get_meeting(self, owner_id: str, meeting_id: str) -> Optional[Meeting]:
        """The stored meeting, or None. A stale copy is still returned; the request layer owns refreshing it."""
        data = self.cache.get(self.cache.build_key("meeting", owner_id, meeting_id))
        if not data:
            return None
        meeting = Meeting.model_validate(data)
        if is_meeting_stale(meeting, self.list_ttl_seconds):
            logger.debug("meeting_stale", extra={"owner_id": owner_id, "meeting_id": meeting_id})
        return meeting

    def list_meetings(
        self,
        owner_id: str,
        start: str,
        end: str,
        fetch: Callable[[], Sequence[Meeting]],
    ) -> Tuple[List[Meeting], float, bool]:
        """Return (meetings, stored_at, cached) for the window; a stale or missing list is refetched and every meeting in it re-saved.
        Why available: Keeps calendar reads within the 15-minute freshness window without a background refresher."""
        key = self.cache.build_key("meetings", owner_id, start, end)
        refreshed: List[Meeting] = []

        def _fetch():
            meetings = list(fetch())
            refreshed.extend(meetings)
            return [m.to_wire() for m in meetings]

        data, stored_at, cached = self.cache.read_through(key, _fetch, self.list_ttl_seconds)
        for m in refreshed:
            self.save(owner_id, m)
        if not cached:
            logger.debug("meetings_refetched", extra={"owner_id": owner_id, "count": len(refreshed)})
        return [Meeting.model_validate(d) for d in data or []], stored_at, cached

    def invalidate(self, owner_id: str) -> None:
        self.cache.delete_pattern(self.cache.build_key("meetings", owner_id, "*"))
