import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any

MAX_EVENTS_PER_TEAM = 100
MAX_POLLING_EVENTS = 50


@dataclass
class StoredEvent:
    id: str
    type: str
    data: Any
    timestamp: int  # Unix milliseconds
    team_id: str
    project_id: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "timestamp": self.timestamp,
            "teamId": self.team_id,
            "projectId": self.project_id,
        }


class EventStore:
    """In-memory recent-events buffer per team.

    Keeps the newest MAX_EVENTS_PER_TEAM events for each team; older ones
    fall off. Nothing survives a restart.
    """

    def __init__(self, max_events_per_team: int = MAX_EVENTS_PER_TEAM) -> None:
        self._events: dict[str, deque[StoredEvent]] = defaultdict(
            lambda: deque(maxlen=max_events_per_team)
        )

    def add(
        self,
        team_id: str,
        event_type: str,
        data: Any,
        project_id: str | None = None,
    ) -> StoredEvent:
        event = StoredEvent(
            id=f"event-{uuid.uuid4().hex[:12]}",
            type=event_type,
            data=data,
            timestamp=self._next_timestamp(team_id),
            team_id=team_id,
            project_id=project_id,
        )
        self._events[team_id].append(event)
        return event

    def _next_timestamp(self, team_id: str) -> int:
        # Strictly increasing per team so `since` cursors never skip an event
        now = int(time.time() * 1000)
        events = self._events.get(team_id)
        if events:
            now = max(now, events[-1].timestamp + 1)
        return now

    def events_since(
        self,
        team_id: str,
        since: int = 0,
        project_id: str | None = None,
        limit: int = 10,
    ) -> tuple[list[StoredEvent], bool]:
        """Oldest-first events newer than `since`.

        Returns:
            (events, has_more) where has_more means events were held back by
            the limit.
        """
        limit = max(1, min(limit, MAX_POLLING_EVENTS))
        matching = [
            event
            for event in self._events.get(team_id, ())
            if event.timestamp > since
            and (project_id is None or event.project_id == project_id)
        ]
        return matching[:limit], len(matching) > limit

    def count(self, team_id: str) -> int:
        return len(self._events.get(team_id, ()))
