"""Push: local tasks written to remote events"""

from datetime import datetime, timedelta

import pytest

from axis_sync.core.errors import InvalidState, RemoteError
from axis_sync.core.models import TaskDB
from axis_sync.core.sync_engine import TASK_ID_PROPERTY, PROJECT_ID_PROPERTY


async def _mapping(engine, task_id):
    async with engine.db.get_session() as session:
        return await engine.mappings.get_by_task(session, task_id)


@pytest.mark.asyncio
async def test_standup_push_creates_event_and_mapping(engine, calendar, account, make_task):
    task = await make_task(account.id, "Standup", datetime(2030, 3, 4), scheduled_time="09:00")

    synced = await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")

    creates = calendar.calls_for('create_event')
    assert len(creates) == 1
    payload = creates[0][3]
    assert payload.summary == "Standup"
    assert payload.start == datetime(2030, 3, 4, 9, 0)
    assert payload.end == datetime(2030, 3, 4, 10, 0)
    assert payload.private_properties[TASK_ID_PROPERTY] == task.id

    mapping = await _mapping(engine, task.id)
    assert mapping is not None
    assert mapping.external_calendar_id == "primary"
    assert mapping.external_event_id in calendar.events[(account.id, "primary")]
    assert mapping.sync_hash
    assert synced.last_synced_at is not None

    cached = await engine.get_cached_events(account.id, datetime(2030, 3, 4), datetime(2030, 3, 5))
    assert [row.external_id for row in cached] == [mapping.external_event_id]


@pytest.mark.asyncio
async def test_second_push_updates_the_same_event(engine, calendar, account, make_task):
    task = await make_task(account.id, "Standup", datetime(2030, 3, 4), scheduled_time="09:00")
    await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")
    first = await _mapping(engine, task.id)

    await engine.sync_task_to_remote(account.id, task.id)

    assert len(calendar.calls_for('create_event')) == 1
    updates = calendar.calls_for('update_event')
    assert len(updates) == 1
    assert updates[0][3] == first.external_event_id
    assert len(calendar.events[(account.id, "primary")]) == 1


@pytest.mark.asyncio
async def test_unmapped_task_without_target_stays_local(engine, calendar, account, make_task):
    task = await make_task(account.id, "Private errand", datetime(2030, 3, 4))

    result = await engine.sync_task_to_remote(account.id, task.id)

    assert result.id == task.id
    assert calendar.calls_for('create_event') == []
    assert await _mapping(engine, task.id) is None


@pytest.mark.asyncio
async def test_task_without_date_cannot_be_pushed(engine, account, make_task):
    task = await make_task(account.id, "Someday")

    with pytest.raises(InvalidState):
        await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")


@pytest.mark.asyncio
async def test_missing_remote_event_is_recreated(engine, calendar, account, make_task):
    task = await make_task(account.id, "Review", datetime(2030, 5, 1, 14, 0))
    await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")
    old_event_id = (await _mapping(engine, task.id)).external_event_id
    calendar.remove_event(account.id, "primary", old_event_id)

    await engine.sync_task_to_remote(account.id, task.id)

    mapping = await _mapping(engine, task.id)
    assert mapping.external_event_id != old_event_id
    assert mapping.external_event_id in calendar.events[(account.id, "primary")]
    assert len(calendar.calls_for('create_event')) == 2


@pytest.mark.asyncio
async def test_moving_calendars_deletes_the_old_event(engine, calendar, account, make_task):
    task = await make_task(account.id, "Offsite", datetime(2030, 6, 1, 8, 0))
    await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")
    old_event_id = (await _mapping(engine, task.id)).external_event_id

    await engine.sync_task_to_remote(account.id, task.id, calendar_id="work")

    assert ('delete_event', account.id, "primary", old_event_id) in calendar.calls
    mapping = await _mapping(engine, task.id)
    assert mapping.external_calendar_id == "work"
    assert mapping.external_event_id in calendar.events[(account.id, "work")]


@pytest.mark.asyncio
async def test_project_color_and_back_reference(engine, calendar, account, make_task, make_project):
    project = await make_project(account.id, "Work", color_id="5")
    task = await make_task(account.id, "Planning", datetime(2030, 3, 4, 10, 0), project="Work")

    await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")

    payload = calendar.calls_for('create_event')[0][3]
    assert payload.color_id == "5"
    assert payload.private_properties[PROJECT_ID_PROPERTY] == project.id


@pytest.mark.asyncio
async def test_end_date_wins_over_default_duration(engine, calendar, account, make_task):
    task = await make_task(
        account.id, "Workshop", datetime(2030, 3, 4), scheduled_time="13:30",
        scheduled_end_date=datetime(2030, 3, 4, 17, 0)
    )

    await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")

    payload = calendar.calls_for('create_event')[0][3]
    assert payload.start == datetime(2030, 3, 4, 13, 30)
    assert payload.end == datetime(2030, 3, 4, 17, 0)


@pytest.mark.asyncio
async def test_push_all_isolates_failures(engine, calendar, account, make_task):
    await make_task(account.id, "Good one", datetime(2030, 3, 4, 9, 0))
    broken = await make_task(account.id, "Broken", datetime(2030, 3, 5, 9, 0))
    await make_task(account.id, "Undated")
    calendar.fail_on('create_event', RemoteError("boom", 500), key="Broken")

    result = await engine.sync_all_tasks_to_remote(account.id, calendar_id="primary")

    assert result.synced == 1
    assert result.failed == 1
    assert broken.id in result.errors[0]
    assert not result.success


@pytest.mark.asyncio
async def test_push_all_without_target_only_touches_mapped_tasks(engine, calendar, account, make_task):
    mapped = await make_task(account.id, "Mapped", datetime(2030, 3, 4, 9, 0))
    await make_task(account.id, "Local only", datetime(2030, 3, 4, 11, 0))
    await engine.sync_task_to_remote(account.id, mapped.id, calendar_id="primary")

    result = await engine.sync_all_tasks_to_remote(account.id)

    assert result.synced == 1
    assert len(calendar.calls_for('create_event')) == 1
    assert len(calendar.calls_for('update_event')) == 1


@pytest.mark.asyncio
async def test_auto_sync_skips_unchanged_task(engine, calendar, account, make_task):
    task = await make_task(account.id, "Standup", datetime(2030, 3, 4, 9, 0))
    await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")

    await engine.auto_sync_task(account.id, task.id)
    assert calendar.calls_for('update_event') == []

    async with engine.db.get_session() as session:
        stored = await session.get(TaskDB, task.id)
        stored.title = "Standup (moved)"
        stored.scheduled_date = stored.scheduled_date + timedelta(hours=1)

    await engine.auto_sync_task(account.id, task.id)
    updates = calendar.calls_for('update_event')
    assert len(updates) == 1
    assert updates[0][4].summary == "Standup (moved)"


@pytest.mark.asyncio
async def test_auto_sync_never_raises(engine, calendar, make_account, make_task):
    disconnected = await make_account("nobody@example.com", connected=False)
    task = await make_task(disconnected.id, "Anything", datetime(2030, 3, 4, 9, 0))

    await engine.auto_sync_task(disconnected.id, task.id, "primary")
    await engine.auto_sync_task(disconnected.id, "missing-task")

    assert calendar.calls_for('create_event') == []


@pytest.mark.asyncio
async def test_auto_delete_tolerates_missing_event(engine, calendar, account):
    await engine.auto_delete_remote_event(account.id, "primary", "does-not-exist")

    assert calendar.calls_for('delete_event') == [('delete_event', account.id, "primary", "does-not-exist")]
