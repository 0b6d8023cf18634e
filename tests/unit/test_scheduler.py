"""Unit tests for the sync scheduler."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from axis_sync.core.scheduler import SyncScheduler


def _engine(startup_delay=0):
    return SimpleNamespace(
        settings=SimpleNamespace(
            startup_delay_seconds=startup_delay,
            webhook_refresh_hours=6,
            periodic_pull_minutes=60,
        ),
        enable_webhooks_for_all_accounts=AsyncMock(return_value={'enabled': 2, 'failed': 0}),
        refresh_expiring_webhooks=AsyncMock(return_value={'refreshed': 1, 'failed': 0}),
        pull_all_accounts=AsyncMock(return_value={'accounts': 3, 'synced': 7, 'failed': 0}),
    )


def test_intervals_come_from_sync_settings():
    scheduler = SyncScheduler(_engine(startup_delay=5))

    status = scheduler.get_status()
    assert status['startup_delay_seconds'] == 5
    assert status['webhook_refresh_interval_seconds'] == 6 * 3600
    assert status['pull_interval_seconds'] == 3600
    assert status['is_running'] is False


@pytest.mark.asyncio
async def test_start_runs_bootstrap_once_and_stop_cancels_loops():
    engine = _engine()
    scheduler = SyncScheduler(engine)

    await scheduler.start()
    await scheduler.start()
    for _ in range(5):
        await asyncio.sleep(0)

    engine.enable_webhooks_for_all_accounts.assert_awaited_once()
    assert scheduler.get_status()['last_bootstrap']['enabled'] == 2

    await scheduler.stop()
    await scheduler.stop()

    assert scheduler.is_running is False
    assert scheduler._tasks == []
    engine.refresh_expiring_webhooks.assert_not_awaited()
    engine.pull_all_accounts.assert_not_awaited()


@pytest.mark.asyncio
async def test_bootstrap_failure_is_logged_not_raised():
    engine = _engine()
    engine.enable_webhooks_for_all_accounts.side_effect = RuntimeError("database locked")
    scheduler = SyncScheduler(engine)

    await scheduler._deferred_bootstrap(0)

    assert scheduler.last_bootstrap is None


@pytest.mark.asyncio
async def test_manual_runs_record_results():
    scheduler = SyncScheduler(_engine())

    refreshed = await scheduler.run_webhook_refresh()
    pulled = await scheduler.run_pull()

    assert refreshed == {'refreshed': 1, 'failed': 0}
    assert pulled['synced'] == 7
    status = scheduler.get_status()
    assert status['last_webhook_refresh']['refreshed'] == 1
    assert 'at' in status['last_webhook_refresh']
    assert status['last_pull']['accounts'] == 3
