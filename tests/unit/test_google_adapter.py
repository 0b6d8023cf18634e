"""Provider registry and the cache-backed Google provider"""

from datetime import datetime, timedelta

import pytest

from axis_sync.core.calendar_client import RemoteEvent
from axis_sync.core.errors import AuthRequired
from axis_sync.core.google_adapter import GoogleCalendarProvider
from axis_sync.core.provider_registry import ProviderRegistry
from axis_sync.core.source_adapter import CalendarProvider, ProviderEventInput


@pytest.fixture
def provider(engine):
    return GoogleCalendarProvider(engine)


class _BrokenProvider(CalendarProvider):
    provider_id = 'broken'

    async def get_calendars(self, account_id):
        return []

    async def get_events(self, account_id, start, end, calendar_id=None):
        return []

    async def create_event(self, account_id, calendar_id, event):
        raise NotImplementedError

    async def update_event(self, account_id, calendar_id, event_id, event):
        raise NotImplementedError

    async def delete_event(self, account_id, calendar_id, event_id):
        raise NotImplementedError

    async def is_connected(self, account_id):
        raise AuthRequired("no credentials")


@pytest.mark.asyncio
async def test_registry_lookup_and_connected_providers(provider, account, make_account):
    registry = ProviderRegistry()
    registry.register(provider)
    registry.register(_BrokenProvider())
    disconnected = await make_account(connected=False)

    assert registry.has('google')
    assert registry.get('google') is provider
    assert registry.get('outlook') is None
    assert len(registry.get_all()) == 2
    assert await registry.get_connected_providers(account.id) == [provider]
    assert await registry.get_connected_providers(disconnected.id) == []


def test_registry_rejects_provider_without_id():
    broken = _BrokenProvider()
    broken.provider_id = ''

    with pytest.raises(ValueError):
        ProviderRegistry().register(broken)


@pytest.mark.asyncio
async def test_empty_cache_is_filled_from_remote(provider, calendar, account, today):
    start = today + timedelta(days=1, hours=9)
    calendar.add_event(account.id, RemoteEvent(
        id="evt-1", calendar_id="primary", summary="Planning", start=start, end=start + timedelta(hours=1)
    ))

    events = await provider.get_events(account.id, today, today + timedelta(days=7))

    assert [event.title for event in events] == ["Planning"]
    assert calendar.calls_for('list_events')

    calendar.calls.clear()
    again = await provider.get_events(account.id, today, today + timedelta(days=7), "primary")
    assert [event.id for event in again] == ["evt-1"]
    assert calendar.calls_for('list_events') == []


@pytest.mark.asyncio
async def test_get_events_without_auth_returns_empty(provider, make_account, today):
    disconnected = await make_account(connected=False)

    assert await provider.get_events(disconnected.id, today, today + timedelta(days=1)) == []


@pytest.mark.asyncio
async def test_writes_go_through_the_cache(provider, engine, calendar, account):
    event_input = ProviderEventInput(
        title="Offsite", start=datetime(2030, 9, 1, 9, 0), end=datetime(2030, 9, 1, 17, 0), color="5"
    )

    created = await provider.create_event(account.id, "primary", event_input)
    cached = await engine.get_cached_events(account.id, datetime(2030, 9, 1), datetime(2030, 9, 2))
    assert [row.external_id for row in cached] == [created.id]
    assert created.color == "5"

    await provider.delete_event(account.id, "primary", created.id)
    await provider.delete_event(account.id, "primary", created.id)

    assert await engine.get_cached_events(account.id, datetime(2030, 9, 1), datetime(2030, 9, 2)) == []
    assert created.id not in calendar.events[(account.id, "primary")]


@pytest.mark.asyncio
async def test_calendars_are_loaded_on_first_use(provider, account):
    calendars = await provider.get_calendars(account.id)

    assert [(c.id, c.primary) for c in calendars] == [("primary", True)]
