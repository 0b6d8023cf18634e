"""Task CRUD and the background sync hooks it triggers"""

from datetime import datetime

import pytest

from axis_sync.core.errors import NotFound
from axis_sync.core.models import TaskStatus
from axis_sync.core.task_queue import BackgroundTaskQueue
from axis_sync.core.task_service import TaskService


@pytest.fixture
def queue():
    return BackgroundTaskQueue()


@pytest.fixture
def tasks(engine, queue, db):
    return TaskService(engine, queue, db)


async def _mapping(engine, task_id):
    async with engine.db.get_session() as session:
        return await engine.mappings.get_by_task(session, task_id)


@pytest.mark.asyncio
async def test_create_with_calendar_pushes_in_background(tasks, queue, engine, calendar, account):
    task = await tasks.create_task(
        account.id,
        {'title': "Dentist", 'scheduled_date': "2030-06-01T00:00:00Z", 'scheduled_time': "15:30"},
        calendar_id="primary",
    )
    await queue.join()

    assert task.scheduled_date == datetime(2030, 6, 1)
    creates = calendar.calls_for('create_event')
    assert len(creates) == 1
    assert creates[0][3].start == datetime(2030, 6, 1, 15, 30)
    assert (await _mapping(engine, task.id)).external_calendar_id == "primary"


@pytest.mark.asyncio
async def test_create_without_calendar_stays_local(tasks, queue, calendar, account):
    await tasks.create_task(account.id, {'title': "Notes", 'scheduled_date': datetime(2030, 6, 1)})
    await queue.join()

    assert calendar.calls_for('create_event') == []


@pytest.mark.asyncio
async def test_create_requires_title(tasks, account):
    with pytest.raises(ValueError):
        await tasks.create_task(account.id, {'description': "no title"})


@pytest.mark.asyncio
async def test_update_pushes_mapped_task(tasks, queue, calendar, account):
    task = await tasks.create_task(
        account.id, {'title': "Review", 'scheduled_date': datetime(2030, 6, 2, 10, 0)}, calendar_id="primary"
    )
    await queue.join()

    updated = await tasks.update_task(account.id, task.id, {'title': "Review v2", 'status': TaskStatus.DONE.value})
    await queue.join()

    assert updated.completed is True
    updates = calendar.calls_for('update_event')
    assert len(updates) == 1
    assert updates[0][4].summary == "Review v2"


@pytest.mark.asyncio
async def test_update_unknown_task_is_not_found(tasks, account, make_account, make_task):
    other = await make_account()
    foreign = await make_task(other.id, "Not yours", datetime(2030, 6, 3))

    with pytest.raises(NotFound):
        await tasks.update_task(account.id, foreign.id, {'title': "Mine now"})


@pytest.mark.asyncio
async def test_delete_removes_links_and_remote_event(tasks, queue, engine, calendar, account):
    task = await tasks.create_task(
        account.id, {'title': "Call", 'scheduled_date': datetime(2030, 6, 4, 8, 0)}, calendar_id="primary"
    )
    await queue.join()
    event_id = (await _mapping(engine, task.id)).external_event_id

    await tasks.delete_task(account.id, task.id)
    await queue.join()

    assert await _mapping(engine, task.id) is None
    assert await engine.get_cached_events(account.id, datetime(2030, 6, 4), datetime(2030, 6, 5)) == []
    assert calendar.calls_for('delete_event') == [('delete_event', account.id, "primary", event_id)]
    assert event_id not in calendar.events[(account.id, "primary")]
    assert await tasks.list_tasks(account.id) == []


@pytest.mark.asyncio
async def test_list_tasks_is_scoped_to_account(tasks, account, make_account, make_task):
    other = await make_account()
    await make_task(account.id, "Mine")
    await make_task(other.id, "Theirs")

    titles = [task.title for task in await tasks.list_tasks(account.id)]

    assert titles == ["Mine"]
