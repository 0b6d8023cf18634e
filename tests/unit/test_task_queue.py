"""Unit tests for the background task queue."""

import asyncio

import pytest

from axis_sync.core.task_queue import BackgroundTaskQueue


@pytest.mark.asyncio
async def test_jobs_run_detached_when_queue_not_started():
    queue = BackgroundTaskQueue()
    calls = []

    async def job(value):
        calls.append(value)

    queue.submit("detached", job, 1)
    await queue.join()

    assert calls == [1]
    assert queue.get_status()['completed'] == 1
    assert queue.get_status()['is_running'] is False


@pytest.mark.asyncio
async def test_workers_drain_pending_jobs_on_stop():
    queue = BackgroundTaskQueue(workers=2)
    calls = []

    async def job(value, delay=0.0):
        await asyncio.sleep(delay)
        calls.append(value)

    await queue.start()
    await queue.start()
    for index in range(5):
        queue.submit(f"job {index}", job, index, delay=0.01)
    await queue.stop()

    assert sorted(calls) == [0, 1, 2, 3, 4]
    status = queue.get_status()
    assert status['submitted'] == 5
    assert status['completed'] == 5
    assert status['pending'] == 0
    assert status['is_running'] is False


@pytest.mark.asyncio
async def test_failing_job_is_counted_and_not_raised():
    queue = BackgroundTaskQueue(workers=1)

    async def broken():
        raise RuntimeError("remote unavailable")

    async def fine():
        return None

    await queue.start()
    queue.submit("broken job", broken)
    queue.submit("fine job", fine)
    await queue.join()

    status = queue.get_status()
    assert status['failed'] == 1
    assert status['completed'] == 1
    assert status['last_error'] == "broken job: remote unavailable"
    assert status['last_completed_at'] is not None

    await queue.stop()


@pytest.mark.asyncio
async def test_worker_count_is_at_least_one():
    assert BackgroundTaskQueue(workers=0).worker_count == 1
