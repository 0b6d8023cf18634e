"""Model helpers"""

from datetime import timedelta

from axis_sync.core.models import AccountDB, ConnectedCalendarDB, SyncResult, utcnow


def test_sync_result_merge_and_dict():
    first = SyncResult(synced=2)
    second = SyncResult(synced=1)
    second.record_failure("Event e1: boom")

    first.merge(second)

    assert first.to_dict() == {'success': False, 'synced': 3, 'failed': 1, 'errors': ["Event e1: boom"]}


def test_active_channel_requires_id_and_future_expiry():
    now = utcnow()

    assert not ConnectedCalendarDB(webhook_channel_id=None).has_active_channel(now)
    assert ConnectedCalendarDB(webhook_channel_id="c1").has_active_channel(now)
    assert ConnectedCalendarDB(
        webhook_channel_id="c1", webhook_expiration=now + timedelta(hours=1)
    ).has_active_channel(now)
    assert not ConnectedCalendarDB(
        webhook_channel_id="c1", webhook_expiration=now - timedelta(seconds=1)
    ).has_active_channel(now)


def test_account_dict_never_exposes_tokens():
    account = AccountDB(email="user@example.com", access_token="secret", refresh_token="also-secret")

    data = account.to_dict()

    assert data['connected'] is True
    assert 'secret' not in str(data)
    assert data['auto_sync_enabled'] is False
