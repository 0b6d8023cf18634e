"""Pull: remote events imported into tasks, deletions reconciled"""

from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy import select

from axis_sync.core.calendar_client import RemoteCalendar, RemoteEvent
from axis_sync.core.errors import RemoteError
from axis_sync.core.models import CalendarEventDB, TaskDB, TaskStatus, INBOX_PROJECT_NAME
from axis_sync.core.sync_engine import TASK_ID_PROPERTY, PROJECT_ID_PROPERTY


async def _tasks(engine, account_id):
    async with engine.db.get_session() as session:
        result = await session.execute(
            select(TaskDB).where(TaskDB.account_id == account_id).order_by(TaskDB.created_at)
        )
        return list(result.scalars().all())


async def _mapping_for_event(engine, account_id, event_id):
    async with engine.db.get_session() as session:
        return await engine.mappings.get_by_event(session, account_id, event_id)


def _event(event_id, summary, start, hours=1, calendar_id="primary", **fields):
    return RemoteEvent(
        id=event_id,
        calendar_id=calendar_id,
        summary=summary,
        start=start,
        end=start + timedelta(hours=hours),
        **fields
    )


@pytest.mark.asyncio
async def test_new_event_is_imported_into_inbox(engine, calendar, account, today):
    start = today + timedelta(days=3, hours=15)
    calendar.add_event(account.id, _event("evt-1", "Team lunch", start, description="Pizza"))

    result = await engine.sync_remote_events_to_tasks(account.id)

    assert result.synced == 1
    assert result.failed == 0
    tasks = await _tasks(engine, account.id)
    assert len(tasks) == 1
    task = tasks[0]
    assert task.title == "Team lunch"
    assert task.description == "Pizza"
    assert task.project == INBOX_PROJECT_NAME
    assert task.status == TaskStatus.TODO.value
    assert task.scheduled_date == start
    assert task.scheduled_time == "15:00"
    assert task.scheduled_end_date == start + timedelta(hours=1)

    mapping = await _mapping_for_event(engine, account.id, "evt-1")
    assert mapping.task_id == task.id
    cached = await engine.get_cached_events(account.id, today, today + timedelta(days=7))
    assert [row.external_id for row in cached] == ["evt-1"]


@pytest.mark.asyncio
async def test_dentist_event_matches_existing_task_by_title_and_day(engine, calendar, account, make_task, today):
    day = today + timedelta(days=2)
    task = await make_task(account.id, "Dentist", day)
    calendar.add_event(account.id, _event("evt-dentist", "Dentist", day + timedelta(hours=15)))

    await engine.sync_remote_events_to_tasks(account.id)

    tasks = await _tasks(engine, account.id)
    assert [t.id for t in tasks] == [task.id]
    assert tasks[0].scheduled_time == "15:00"
    assert (await _mapping_for_event(engine, account.id, "evt-dentist")).task_id == task.id


@pytest.mark.asyncio
async def test_same_title_on_another_day_is_not_matched(engine, calendar, account, make_task, today):
    await make_task(account.id, "Dentist", today + timedelta(days=2))
    calendar.add_event(account.id, _event("evt-dentist", "Dentist", today + timedelta(days=9, hours=8)))

    await engine.sync_remote_events_to_tasks(account.id)

    assert len(await _tasks(engine, account.id)) == 2


@pytest.mark.asyncio
async def test_back_reference_links_unmapped_task(engine, calendar, account, make_task, today):
    task = await make_task(account.id, "Old title", today + timedelta(days=1))
    calendar.add_event(account.id, _event(
        "evt-ref", "New title", today + timedelta(days=1, hours=9),
        private_properties={TASK_ID_PROPERTY: task.id}
    ))

    await engine.sync_remote_events_to_tasks(account.id)

    tasks = await _tasks(engine, account.id)
    assert len(tasks) == 1
    assert tasks[0].title == "New title"
    assert (await _mapping_for_event(engine, account.id, "evt-ref")).task_id == task.id


@pytest.mark.asyncio
async def test_legacy_event_id_links_task(engine, calendar, account, make_task, today):
    task = await make_task(account.id, "Legacy", today + timedelta(days=1), google_event_id="legacy-1")
    calendar.add_event(account.id, _event("legacy-1", "Legacy", today + timedelta(days=1, hours=10)))

    await engine.sync_remote_events_to_tasks(account.id)

    assert [t.id for t in await _tasks(engine, account.id)] == [task.id]
    assert (await _mapping_for_event(engine, account.id, "legacy-1")).task_id == task.id


@pytest.mark.asyncio
async def test_project_back_reference_sets_project(engine, calendar, account, make_project, today):
    project = await make_project(account.id, "Garden")
    calendar.add_event(account.id, _event(
        "evt-garden", "Plant tomatoes", today + timedelta(days=4, hours=7),
        private_properties={PROJECT_ID_PROPERTY: project.id}
    ))

    await engine.sync_remote_events_to_tasks(account.id)

    assert (await _tasks(engine, account.id))[0].project == "Garden"


@pytest.mark.asyncio
async def test_all_day_event_has_no_time_of_day(engine, calendar, account, today):
    day = today + timedelta(days=5)
    calendar.add_event(account.id, RemoteEvent(
        id="evt-holiday", calendar_id="primary", summary="Day off",
        start=day, end=day + timedelta(days=1), all_day=True
    ))

    await engine.sync_remote_events_to_tasks(account.id)

    task = (await _tasks(engine, account.id))[0]
    assert task.scheduled_date == day
    assert task.scheduled_time is None


@pytest.mark.asyncio
async def test_pushed_task_is_not_duplicated_by_pull(engine, calendar, account, make_task, today):
    task = await make_task(account.id, "Standup", today + timedelta(days=1), scheduled_time="09:00")
    await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")

    result = await engine.sync_remote_events_to_tasks(account.id)

    assert result.synced == 1
    assert [t.id for t in await _tasks(engine, account.id)] == [task.id]
    assert len(calendar.calls_for('create_event')) == 1


@pytest.mark.asyncio
async def test_remote_edit_updates_mapped_task(engine, calendar, account, make_task, today):
    task = await make_task(account.id, "Standup", today + timedelta(days=1), scheduled_time="09:00")
    await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")
    async with engine.db.get_session() as session:
        event_id = (await engine.mappings.get_by_task(session, task.id)).external_event_id

    remote = calendar.events[(account.id, "primary")][event_id]
    moved = today + timedelta(days=1, hours=11, minutes=30)
    calendar.add_event(account.id, replace(remote, summary="Standup (late)", start=moved, end=moved + timedelta(minutes=15)))

    await engine.sync_remote_events_to_tasks(account.id)

    updated = (await _tasks(engine, account.id))[0]
    assert updated.title == "Standup (late)"
    assert updated.scheduled_time == "11:30"


@pytest.mark.asyncio
async def test_remote_deletion_completes_task(engine, calendar, account, make_task, today):
    task = await make_task(account.id, "Call plumber", today + timedelta(days=2), scheduled_time="08:00")
    await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")
    async with engine.db.get_session() as session:
        event_id = (await engine.mappings.get_by_task(session, task.id)).external_event_id
    calendar.remove_event(account.id, "primary", event_id)

    result = await engine.sync_remote_events_to_tasks(account.id)

    assert result.synced == 1
    completed = (await _tasks(engine, account.id))[0]
    assert completed.status == TaskStatus.DONE.value
    assert completed.completed is True
    assert await _mapping_for_event(engine, account.id, event_id) is None

    async with engine.db.get_session() as session:
        row = (await session.execute(
            select(CalendarEventDB).where(CalendarEventDB.external_id == event_id)
        )).scalar_one()
        assert row.status == "cancelled"
    assert await engine.get_cached_events(account.id, today, today + timedelta(days=7)) == []


@pytest.mark.asyncio
async def test_task_outside_window_is_not_completed(engine, calendar, account, make_task, today):
    far_away = today + timedelta(days=engine.settings.future_days + 30)
    task = await make_task(account.id, "Far future", far_away, scheduled_time="10:00")
    await engine.sync_task_to_remote(account.id, task.id, calendar_id="primary")

    await engine.sync_remote_events_to_tasks(account.id)

    stored = (await _tasks(engine, account.id))[0]
    assert stored.completed is False
    async with engine.db.get_session() as session:
        assert await engine.mappings.get_by_task(session, task.id) is not None


@pytest.mark.asyncio
async def test_failing_calendar_does_not_stop_the_others(engine, calendar, account, today):
    calendar.add_calendar(account.id, RemoteCalendar(id="primary", summary="Me", primary=True, access_role="owner"))
    calendar.add_calendar(account.id, RemoteCalendar(id="work", summary="Work", access_role="writer"))
    await engine.refresh_calendars(account.id)
    await engine.toggle_calendar_sync(account.id, "work", True)
    calendar.add_event(account.id, _event("evt-home", "Groceries", today + timedelta(days=1, hours=17)))
    calendar.fail_on('list_events', RemoteError("backend unavailable", 503), key="work")

    result = await engine.sync_remote_events_to_tasks(account.id)

    assert result.synced == 1
    assert result.failed == 1
    assert "work" in result.errors[0]


@pytest.mark.asyncio
async def test_read_only_calendar_is_skipped(engine, calendar, account):
    holidays = "en.usa#holiday@group.v.calendar.google.com"

    result = await engine.sync_remote_events_to_tasks(account.id, holidays)

    assert result.synced == 0
    assert calendar.calls_for('list_events') == []
