"""
In-memory calendar client for development/testing
Same contract as GoogleCalendarClient, no network or credentials involved
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from axis_sync.core.calendar_client import (
    RemoteCalendar, RemoteEvent, EventPayload, WatchChannel, DEFAULT_CHANNEL_TTL, new_channel_id
)
from axis_sync.core.errors import NotFound, SyncError
from axis_sync.core.models import utcnow


class InMemoryCalendarClient:
    """Complete mock calendar service with per-account calendar and event storage"""

    def __init__(self, seed_primary: bool = True):
        self.logger = logging.getLogger(__name__)
        self.seed_primary = seed_primary
        self.calendars: Dict[str, Dict[str, RemoteCalendar]] = defaultdict(dict)
        self.events: Dict[Tuple[str, str], Dict[str, RemoteEvent]] = defaultdict(dict)
        self.channels: Dict[str, Tuple[str, str, str]] = {}
        self.calls: List[Tuple] = []
        self._failures: Dict[Tuple[str, Optional[str]], SyncError] = {}

    # Test helpers

    def fail_on(self, operation: str, error: SyncError, key: Optional[str] = None):
        """Make `operation` raise `error`; `key` narrows it to one summary/event id"""
        self._failures[(operation, key)] = error

    def clear_failures(self):
        self._failures.clear()

    def calls_for(self, operation: str) -> List[Tuple]:
        return [call for call in self.calls if call[0] == operation]

    def add_calendar(self, account_id: str, calendar: RemoteCalendar) -> RemoteCalendar:
        self.calendars[account_id][calendar.id] = calendar
        return calendar

    def add_event(self, account_id: str, event: RemoteEvent) -> RemoteEvent:
        self.events[(account_id, event.calendar_id)][event.id] = event
        return event

    def remove_event(self, account_id: str, calendar_id: str, event_id: str):
        self.events[(account_id, calendar_id)].pop(event_id, None)

    def _check_failure(self, operation: str, key: Optional[str] = None):
        error = self._failures.get((operation, key)) or self._failures.get((operation, None))
        if error is not None:
            raise error

    def _account_calendars(self, account_id: str) -> Dict[str, RemoteCalendar]:
        calendars = self.calendars[account_id]
        if self.seed_primary and not calendars:
            calendars['primary'] = RemoteCalendar(
                id='primary', summary='Primary', primary=True, access_role='owner'
            )
        return calendars

    # Calendars

    async def list_calendars(self, account_id: str) -> List[RemoteCalendar]:
        self.calls.append(('list_calendars', account_id))
        self._check_failure('list_calendars')
        return list(self._account_calendars(account_id).values())

    async def create_calendar(self, account_id: str, name: str, description: Optional[str] = None) -> RemoteCalendar:
        self.calls.append(('create_calendar', account_id, name))
        self._check_failure('create_calendar')
        calendar = RemoteCalendar(
            id=f"{uuid.uuid4().hex}@group.calendar.google.com",
            summary=name,
            description=description,
            access_role='owner',
        )
        self._account_calendars(account_id)[calendar.id] = calendar
        self.logger.info(f"Mock: created calendar {name} ({calendar.id})")
        return calendar

    async def find_calendar_by_name(self, account_id: str, name: str) -> Optional[RemoteCalendar]:
        for calendar in await self.list_calendars(account_id):
            if calendar.summary == name:
                return calendar
        return None

    async def delete_calendar(self, account_id: str, calendar_id: str) -> None:
        self.calls.append(('delete_calendar', account_id, calendar_id))
        if self._account_calendars(account_id).pop(calendar_id, None) is None:
            raise NotFound("Calendar or event not found", 404)
        self.events.pop((account_id, calendar_id), None)

    # Events

    async def list_events(
        self,
        account_id: str,
        calendar_id: str,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
    ) -> List[RemoteEvent]:
        self.calls.append(('list_events', account_id, calendar_id))
        self._check_failure('list_events', calendar_id)
        result = []
        for event in self.events[(account_id, calendar_id)].values():
            if event.is_cancelled:
                continue
            if time_min and event.end and event.end < time_min:
                continue
            if time_max and event.start and event.start > time_max:
                continue
            result.append(event)
        return sorted(result, key=lambda e: e.start or datetime.min)

    async def get_event(self, account_id: str, calendar_id: str, event_id: str) -> Optional[RemoteEvent]:
        self.calls.append(('get_event', account_id, calendar_id, event_id))
        return self.events[(account_id, calendar_id)].get(event_id)

    async def create_event(self, account_id: str, calendar_id: str, payload: EventPayload) -> RemoteEvent:
        self.calls.append(('create_event', account_id, calendar_id, payload))
        self._check_failure('create_event', payload.summary)
        event = RemoteEvent(
            id=uuid.uuid4().hex,
            calendar_id=calendar_id,
            summary=payload.summary,
            description=payload.description,
            start=payload.start,
            end=payload.end,
            color_id=payload.color_id,
            private_properties={k: v for k, v in payload.private_properties.items() if v},
        )
        return self.add_event(account_id, event)

    async def update_event(
        self, account_id: str, calendar_id: str, event_id: str, payload: EventPayload
    ) -> RemoteEvent:
        self.calls.append(('update_event', account_id, calendar_id, event_id, payload))
        self._check_failure('update_event', event_id)
        existing = self.events[(account_id, calendar_id)].get(event_id)
        if existing is None or existing.is_cancelled:
            raise NotFound("Calendar or event not found", 404)
        updated = replace(
            existing,
            summary=payload.summary,
            description=payload.description,
            start=payload.start,
            end=payload.end,
            color_id=payload.color_id,
            private_properties={k: v for k, v in payload.private_properties.items() if v},
        )
        return self.add_event(account_id, updated)

    async def delete_event(self, account_id: str, calendar_id: str, event_id: str) -> None:
        self.calls.append(('delete_event', account_id, calendar_id, event_id))
        self._check_failure('delete_event', event_id)
        if self.events[(account_id, calendar_id)].pop(event_id, None) is None:
            raise NotFound("Calendar or event not found", 404)

    # Push notifications

    async def watch_calendar(
        self, account_id: str, calendar_id: str, webhook_url: str, ttl: Optional[timedelta] = None
    ) -> WatchChannel:
        self.calls.append(('watch_calendar', account_id, calendar_id, webhook_url))
        self._check_failure('watch_calendar', calendar_id)
        channel = WatchChannel(
            channel_id=new_channel_id(),
            resource_id=f"resource-{uuid.uuid4().hex[:12]}",
            expiration=utcnow() + (ttl or DEFAULT_CHANNEL_TTL),
        )
        self.channels[channel.channel_id] = (account_id, calendar_id, channel.resource_id)
        return channel

    async def stop_watch(self, account_id: str, channel_id: str, resource_id: str) -> None:
        self.calls.append(('stop_watch', account_id, channel_id, resource_id))
        self._check_failure('stop_watch')
        self.channels.pop(channel_id, None)

    async def close(self):
        pass
