"""
Google Calendar provider
CalendarProvider backed by the CalendarEvent cache, refreshed from Google on demand
"""

from datetime import datetime
from typing import Dict, Any, List, Optional

from axis_sync.core.calendar_client import EventPayload, RemoteEvent
from axis_sync.core.errors import NotFound
from axis_sync.core.models import CalendarEventDB, GOOGLE_PROVIDER
from axis_sync.core.source_adapter import (
    CalendarProvider, ProviderCalendar, ProviderEvent, ProviderEventInput
)
from axis_sync.core.sync_engine import PRIMARY_CALENDAR


class GoogleCalendarProvider(CalendarProvider):
    """Google Calendar provider; reads come from the cache, writes go to Google and the cache"""

    provider_id = GOOGLE_PROVIDER

    def __init__(self, engine, config: Dict[str, Any] = None):
        super().__init__(config)
        self.engine = engine

    async def is_connected(self, account_id: str) -> bool:
        return await self.engine.credentials.has_valid_auth(account_id)

    async def get_calendars(self, account_id: str) -> List[ProviderCalendar]:
        async with self.engine.db.get_session() as session:
            rows = await self.engine.calendars.list_for_account(session, account_id)

        if not rows:
            rows = await self.engine.refresh_calendars(account_id)

        return [
            ProviderCalendar(
                id=row.external_id,
                name=row.name,
                primary=row.is_primary,
                writable=row.is_writable,
                synced=row.is_synced,
                color=row.color,
            )
            for row in rows
        ]

    async def _resolve_calendar_id(self, account_id: str, calendar_id: Optional[str]) -> Optional[str]:
        """'primary' means the account's primary calendar row; unknown primary means no filter"""
        if calendar_id != PRIMARY_CALENDAR:
            return calendar_id
        async with self.engine.db.get_session() as session:
            for row in await self.engine.calendars.list_for_account(session, account_id):
                if row.is_primary:
                    return row.external_id
        return None

    async def get_events(
        self,
        account_id: str,
        start: datetime,
        end: datetime,
        calendar_id: Optional[str] = None,
    ) -> List[ProviderEvent]:
        resolved = await self._resolve_calendar_id(account_id, calendar_id)
        rows = await self.engine.get_cached_events(account_id, start, end, resolved)

        if not rows:
            self.logger.info(f"Cache empty for account {account_id}, syncing from Google...")
            try:
                await self.engine.refresh_calendars(account_id)
                await self.engine.refresh_event_cache(account_id)
                resolved = await self._resolve_calendar_id(account_id, calendar_id)
                rows = await self.engine.get_cached_events(account_id, start, end, resolved)
            except Exception as e:
                self.logger.error(f"Auto-sync failed for account {account_id}: {e}")
                return []

        return [self._from_cache(row) for row in rows]

    async def create_event(self, account_id: str, calendar_id: str, event: ProviderEventInput) -> ProviderEvent:
        remote = await self.engine.client.create_event(account_id, calendar_id, self._to_payload(event))
        await self._cache_remote(account_id, remote)
        return self._from_remote(remote)

    async def update_event(
        self, account_id: str, calendar_id: str, event_id: str, event: ProviderEventInput
    ) -> ProviderEvent:
        remote = await self.engine.client.update_event(account_id, calendar_id, event_id, self._to_payload(event))
        await self._cache_remote(account_id, remote)
        return self._from_remote(remote)

    async def delete_event(self, account_id: str, calendar_id: str, event_id: str) -> None:
        try:
            await self.engine.client.delete_event(account_id, calendar_id, event_id)
        except NotFound:
            self.logger.debug(f"Event {event_id} already deleted remotely")
        async with self.engine.db.get_session() as session:
            await self.engine.cache.delete_event(session, account_id, event_id)

    async def _cache_remote(self, account_id: str, remote: RemoteEvent):
        async with self.engine.db.get_session() as session:
            await self.engine.cache.upsert(session, account_id, remote, self.provider_id)

    @staticmethod
    def _to_payload(event: ProviderEventInput) -> EventPayload:
        return EventPayload(
            summary=event.title,
            description=event.description,
            start=event.start,
            end=event.end,
            color_id=event.color,
        )

    @staticmethod
    def _from_remote(remote: RemoteEvent) -> ProviderEvent:
        return ProviderEvent(
            id=remote.id,
            calendar_id=remote.calendar_id,
            title=remote.summary or 'Untitled',
            start=remote.start,
            end=remote.end or remote.start,
            all_day=remote.all_day,
            description=remote.description,
            location=remote.location,
            status=remote.status,
            color=remote.color_id,
            metadata={'private_properties': dict(remote.private_properties)},
        )

    @staticmethod
    def _from_cache(row: CalendarEventDB) -> ProviderEvent:
        return ProviderEvent(
            id=row.external_id,
            calendar_id=row.calendar_id,
            title=row.title,
            start=row.start,
            end=row.end,
            all_day=row.all_day,
            description=row.description,
            location=row.location,
            status=row.status,
            color=row.color,
        )
