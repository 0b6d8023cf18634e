"""Dedicated calendar provisioning and calendar management"""

import copy

import pytest
from sqlalchemy import select

from axis_sync.core.calendar_client import RemoteCalendar
from axis_sync.core.errors import AuthRequired, InvalidState, NotFound
from axis_sync.core.models import AccountDB, ProjectDB, INBOX_PROJECT_NAME
from axis_sync.core.sync_engine import SyncEngine


@pytest.mark.asyncio
async def test_initialize_creates_dedicated_calendar(engine, calendar, account):
    result = await engine.initialize_dedicated_calendar(account.id)

    assert len(calendar.calls_for('create_calendar')) == 1
    assert result.auto_sync_enabled is True
    assert result.dedicated_calendar_id in calendar.calendars[account.id]
    assert calendar.calendars[account.id][result.dedicated_calendar_id].summary == "Axis"

    async with engine.db.get_session() as session:
        row = await engine.calendars.get(session, account.id, result.dedicated_calendar_id)
        assert row.is_synced is True
        assert row.webhook_channel_id is not None
        inbox = (await session.execute(
            select(ProjectDB).where(ProjectDB.account_id == account.id, ProjectDB.name == INBOX_PROJECT_NAME)
        )).scalar_one_or_none()
        assert inbox is not None

    watched = {call[2] for call in calendar.calls_for('watch_calendar')}
    assert result.dedicated_calendar_id in watched
    assert all(call[3] == "https://axis.example.com/webhook/google-calendar" for call in calendar.calls_for('watch_calendar'))


@pytest.mark.asyncio
async def test_initialize_is_idempotent(engine, calendar, account):
    first = await engine.initialize_dedicated_calendar(account.id)
    second = await engine.initialize_dedicated_calendar(account.id)

    assert second.dedicated_calendar_id == first.dedicated_calendar_id
    assert len(calendar.calls_for('create_calendar')) == 1
    names = [c.summary for c in calendar.calendars[account.id].values()]
    assert names.count("Axis") == 1


@pytest.mark.asyncio
async def test_initialize_adopts_calendar_with_same_name(engine, calendar, account):
    calendar.add_calendar(account.id, RemoteCalendar(id="primary", summary="Me", primary=True, access_role="owner"))
    calendar.add_calendar(account.id, RemoteCalendar(id="axis-existing", summary="Axis", access_role="owner"))

    result = await engine.initialize_dedicated_calendar(account.id)

    assert result.dedicated_calendar_id == "axis-existing"
    assert calendar.calls_for('create_calendar') == []


@pytest.mark.asyncio
async def test_concurrent_claim_keeps_the_first_writer(engine, calendar, account, db):
    original_create = calendar.create_calendar

    async def racing_create(account_id, name, description=None):
        created = await original_create(account_id, name, description)
        async with db.get_session() as session:
            stored = await session.get(AccountDB, account_id)
            stored.dedicated_calendar_id = "winner-calendar"
        return created

    calendar.create_calendar = racing_create

    result = await engine.initialize_dedicated_calendar(account.id)

    assert result.dedicated_calendar_id == "winner-calendar"
    assert calendar.calls_for('watch_calendar') == []


@pytest.mark.asyncio
async def test_initialize_requires_auth(engine, calendar, make_account):
    disconnected = await make_account("nobody@example.com", connected=False)

    with pytest.raises(AuthRequired):
        await engine.initialize_dedicated_calendar(disconnected.id)

    assert calendar.calls_for('create_calendar') == []


@pytest.mark.asyncio
async def test_initialize_without_webhook_url_relies_on_polling(calendar, credentials, test_config, db, account):
    config = copy.deepcopy(test_config)
    config['sync']['webhook_base_url'] = ''
    engine = SyncEngine(calendar, credentials, config, db)

    result = await engine.initialize_dedicated_calendar(account.id)

    assert result.auto_sync_enabled is True
    assert calendar.calls_for('watch_calendar') == []


@pytest.mark.asyncio
async def test_sync_status_after_initialize(engine, account):
    account_row = await engine.initialize_dedicated_calendar(account.id)

    status = await engine.get_sync_status(account.id)

    assert status['enabled'] is True
    assert status['calendar_id'] == account_row.dedicated_calendar_id
    assert status['webhook_active'] is True
    assert account_row.dedicated_calendar_id in status['synced_calendars']
    assert status['mapped_tasks'] == 0


@pytest.mark.asyncio
async def test_toggle_calendar_sync(engine, calendar, account):
    holidays = "en.german#holiday@group.v.calendar.google.com"
    calendar.add_calendar(account.id, RemoteCalendar(id="work", summary="Work", access_role="writer"))
    calendar.add_calendar(account.id, RemoteCalendar(id=holidays, summary="Holidays", access_role="reader"))
    await engine.refresh_calendars(account.id)

    row = await engine.toggle_calendar_sync(account.id, "work", True)
    assert row.is_synced is True

    with pytest.raises(InvalidState):
        await engine.toggle_calendar_sync(account.id, holidays, True)

    with pytest.raises(NotFound):
        await engine.toggle_calendar_sync(account.id, "unknown", True)


@pytest.mark.asyncio
async def test_refresh_calendars_records_access(engine, calendar, account):
    calendar.add_calendar(account.id, RemoteCalendar(id="shared", summary="Shared", access_role="reader"))

    rows = await engine.refresh_calendars(account.id)

    assert [(row.external_id, row.is_writable) for row in rows] == [("shared", False)]
