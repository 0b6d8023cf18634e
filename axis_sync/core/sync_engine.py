"""
Synchronization Engine for Axis Sync
Dedicated-calendar provisioning, push (task -> event), pull (event -> task),
deletion reconciliation and the webhook channel lifecycle
"""

import hashlib
import json
import logging
import re
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError

from axis_sync.config.config_loader import SyncSettings
from axis_sync.core.calendar_client import EventPayload, RemoteCalendar, RemoteEvent
from axis_sync.core.database import DatabaseService, db_service
from axis_sync.core.errors import AuthRequired, ConfigError, InvalidState, NotFound
from axis_sync.core.models import (
    AccountDB, CalendarEventDB, ConnectedCalendarDB, ProjectDB, TaskDB,
    SyncResult, TaskStatus, GOOGLE_PROVIDER, utcnow
)
from axis_sync.core.stores import (
    AccountStore, ProjectStore, TaskStore, MappingStore, CalendarStore, EventCacheStore
)

TASK_ID_PROPERTY = 'axis_task_id'
PROJECT_ID_PROPERTY = 'axis_project_id'
PRIMARY_CALENDAR = 'primary'
PULL_TRIGGER_STATES = ('exists', 'update', 'not_exists')


def compute_sync_hash(payload: EventPayload) -> str:
    """Content hash of the fields push writes to the remote event"""
    content = {
        'summary': payload.summary,
        'description': payload.description or '',
        'start': payload.start.isoformat(),
        'end': payload.end.isoformat(),
        'color_id': payload.color_id,
        'properties': dict(sorted(payload.private_properties.items())),
    }
    return hashlib.sha256(json.dumps(content, sort_keys=True).encode('utf-8')).hexdigest()


def _parse_time_of_day(value: Optional[str]) -> Optional[Tuple[int, int]]:
    if not value:
        return None
    match = re.match(r'^(\d{1,2}):(\d{2})$', value.strip())
    if not match:
        raise InvalidState(f"Invalid scheduled time '{value}', expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise InvalidState(f"Invalid scheduled time '{value}', expected HH:MM")
    return hour, minute


class SyncEngine:
    """Orchestrates push, pull, provisioning and webhooks for one calendar provider"""

    def __init__(
        self,
        client,
        credentials,
        config: Dict[str, Any] = None,
        db: DatabaseService = None,
        provider: str = GOOGLE_PROVIDER,
    ):
        self.client = client
        self.credentials = credentials
        self.settings = SyncSettings.from_config(config or {})
        self.db = db or db_service
        self.provider = provider
        self.logger = logging.getLogger(__name__)

        self.accounts = AccountStore()
        self.projects = ProjectStore()
        self.tasks = TaskStore()
        self.mappings = MappingStore()
        self.calendars = CalendarStore()
        self.cache = EventCacheStore()

        self._read_only_patterns = [re.compile(p) for p in self.settings.read_only_calendar_patterns]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_auth(self, account_id: str):
        if not await self.credentials.has_valid_auth(account_id):
            raise AuthRequired("Google Calendar not connected. Please connect your Google account first.")

    async def _get_account(self, session, account_id: str) -> AccountDB:
        account = await self.accounts.get(session, account_id)
        if account is None:
            raise NotFound(f"Account {account_id} not found")
        return account

    def is_read_only_calendar(self, calendar_id: str) -> bool:
        """Holiday, contacts and week-number calendars are never synchronized"""
        return any(pattern.search(calendar_id) for pattern in self._read_only_patterns)

    def sync_window(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        now = now or utcnow()
        return now - timedelta(days=self.settings.past_days), now + timedelta(days=self.settings.future_days)

    async def _select_calendar_ids(
        self, session, account: AccountDB, calendar_id: Optional[str] = None
    ) -> List[str]:
        """Calendars a pull or webhook enable applies to"""
        if calendar_id:
            if self.is_read_only_calendar(calendar_id):
                self.logger.info(f"Skipping read-only calendar {calendar_id}")
                return []
            return [calendar_id]

        rows = await self.calendars.list_for_account(session, account.id)
        selected = [
            row.external_id for row in rows
            if (row.is_primary or row.is_synced) and not self.is_read_only_calendar(row.external_id)
        ]
        if selected:
            return selected
        return [account.dedicated_calendar_id or PRIMARY_CALENDAR]

    async def _ensure_calendar_row(self, session, account_id: str, external_id: str) -> ConnectedCalendarDB:
        row = await self.calendars.get(session, account_id, external_id)
        if row is None:
            row = ConnectedCalendarDB(
                account_id=account_id,
                provider=self.provider,
                external_id=external_id,
                name=external_id,
                is_primary=external_id == PRIMARY_CALENDAR,
                is_synced=True,
            )
            session.add(row)
            await session.flush()
        return row

    def build_event_payload(self, task: TaskDB, project: Optional[ProjectDB]) -> EventPayload:
        """Event body for a task: start from date (+time), end explicit or start + default duration"""
        if task.scheduled_date is None:
            raise InvalidState("Task must have a scheduled date to sync")

        start = task.scheduled_date
        time_of_day = _parse_time_of_day(task.scheduled_time)
        if time_of_day:
            start = start.replace(hour=time_of_day[0], minute=time_of_day[1], second=0, microsecond=0)

        end = task.scheduled_end_date
        if end is None or end <= start:
            end = start + timedelta(minutes=self.settings.default_event_minutes)

        return EventPayload(
            summary=task.title,
            description=task.description,
            start=start,
            end=end,
            color_id=project.color_id if project else None,
            private_properties={
                TASK_ID_PROPERTY: task.id,
                PROJECT_ID_PROPERTY: project.id if project else None,
            },
        )

    async def _stop_channel_quietly(self, account_id: str, channel_id: str, resource_id: Optional[str]):
        try:
            await self.client.stop_watch(account_id, channel_id, resource_id or '')
        except Exception as e:
            # Unstopped channels expire server-side
            self.logger.warning(f"Failed to stop watch channel {channel_id}: {e}")

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def initialize_dedicated_calendar(self, account_id: str) -> AccountDB:
        """Designate exactly one remote calendar as the account's sync target"""
        await self._require_auth(account_id)

        async with self.db.get_session() as session:
            account = await self._get_account(session, account_id)
            if account.dedicated_calendar_id and account.auto_sync_enabled:
                self.logger.info(f"Account {account_id} already has dedicated calendar {account.dedicated_calendar_id}")
                return account
            stored_calendar_id = account.dedicated_calendar_id

        calendar_name = self.settings.calendar_name
        existing = await self.client.find_calendar_by_name(account_id, calendar_name)
        if existing is not None:
            calendar_id = existing.id
            self.logger.info(f"Adopting existing calendar '{calendar_name}' ({calendar_id}) for account {account_id}")
        elif stored_calendar_id:
            calendar_id = stored_calendar_id
        else:
            created = await self.client.create_calendar(
                account_id, calendar_name, self.settings.calendar_description
            )
            calendar_id = created.id
            self.logger.info(f"Created dedicated calendar '{calendar_name}' ({calendar_id}) for account {account_id}")

        async with self.db.get_session() as session:
            claimed = await self.accounts.claim_dedicated_calendar(session, account_id, calendar_id)

        if not claimed:
            async with self.db.get_session() as session:
                account = await self._get_account(session, account_id)
            self.logger.warning(
                f"Dedicated calendar for account {account_id} was set concurrently to "
                f"{account.dedicated_calendar_id}; keeping it"
            )
            return account

        await self.refresh_calendars(account_id)
        async with self.db.get_session() as session:
            row = await self._ensure_calendar_row(session, account_id, calendar_id)
            row.is_synced = True
            await self.projects.get_or_create_inbox(session, account_id)

        if self.settings.webhook_url:
            await self.enable_webhook(account_id)
        else:
            self.logger.warning("Webhook base URL not configured; relying on periodic pull")

        result = await self.sync_all_tasks_to_remote(account_id)
        self.logger.info(
            f"Dedicated calendar initialized for account {account_id}: "
            f"{result.synced} tasks pushed, {result.failed} failed"
        )

        async with self.db.get_session() as session:
            return await self._get_account(session, account_id)

    async def get_sync_status(self, account_id: str) -> Dict[str, Any]:
        async with self.db.get_session() as session:
            account = await self._get_account(session, account_id)
            rows = await self.calendars.list_for_account(session, account_id)
            mapped = await self.mappings.count_for_account(session, account_id, self.provider)
            return {
                'enabled': bool(account.auto_sync_enabled),
                'calendar_id': account.dedicated_calendar_id,
                'webhook_active': any(row.has_active_channel() for row in rows),
                'synced_calendars': [row.external_id for row in rows if row.is_synced or row.is_primary],
                'mapped_tasks': mapped,
            }

    async def list_remote_calendars(self, account_id: str) -> List[RemoteCalendar]:
        await self._require_auth(account_id)
        return await self.client.list_calendars(account_id)

    async def refresh_calendars(self, account_id: str) -> List[ConnectedCalendarDB]:
        """Upsert ConnectedCalendar rows from the remote calendar list"""
        await self._require_auth(account_id)
        remote_calendars = await self.client.list_calendars(account_id)
        async with self.db.get_session() as session:
            await self._get_account(session, account_id)
            rows = [
                await self.calendars.upsert_from_remote(session, account_id, remote, self.provider)
                for remote in remote_calendars
            ]
        self.logger.info(f"Refreshed {len(rows)} calendars for account {account_id}")
        return rows

    async def toggle_calendar_sync(self, account_id: str, calendar_id: str, is_synced: bool) -> ConnectedCalendarDB:
        async with self.db.get_session() as session:
            row = await self.calendars.get(session, account_id, calendar_id)
            if row is None:
                raise NotFound(f"Calendar {calendar_id} is not connected")
            if is_synced and self.is_read_only_calendar(calendar_id):
                raise InvalidState(f"Calendar {calendar_id} is read-only and cannot be synced")
            row.is_synced = is_synced
            return row

    async def get_or_create_inbox_project(self, account_id: str) -> ProjectDB:
        async with self.db.get_session() as session:
            await self._get_account(session, account_id)
            return await self.projects.get_or_create_inbox(session, account_id)

    # ------------------------------------------------------------------
    # Push: local -> remote
    # ------------------------------------------------------------------

    async def sync_task_to_remote(
        self,
        account_id: str,
        task_id: str,
        calendar_id: Optional[str] = None,
        force: bool = True,
    ) -> TaskDB:
        """
        Write a task to its remote event.
        Tasks without a mapping stay local unless a target calendar is given.
        With force=False an unchanged task (same content hash) is not re-sent.
        """
        async with self.db.get_session() as session:
            task = await self.tasks.get_owned(session, account_id, task_id)
            if task is None:
                raise NotFound(f"Task {task_id} not found")

            mapping = await self.mappings.get_by_task(session, task_id, self.provider)
            if mapping is None and not calendar_id:
                self.logger.debug(f"Task {task_id} has no calendar link; leaving it local")
                return task

            target_calendar = calendar_id or mapping.external_calendar_id
            project = await self.projects.resolve(session, account_id, task.project)
            payload = self.build_event_payload(task, project)
            sync_hash = compute_sync_hash(payload)

            existing_event_id = None
            previous_calendar = None
            if mapping is not None:
                if mapping.external_calendar_id == target_calendar:
                    existing_event_id = mapping.external_event_id
                    if not force and mapping.sync_hash == sync_hash:
                        self.logger.debug(f"Task {task_id} unchanged since last sync; skipping push")
                        return task
                else:
                    previous_calendar = (mapping.external_calendar_id, mapping.external_event_id)

        await self._require_auth(account_id)

        if previous_calendar is not None:
            # Moving calendars: the old event goes, a new one is created below
            try:
                await self.client.delete_event(account_id, previous_calendar[0], previous_calendar[1])
            except NotFound:
                pass
            async with self.db.get_session() as session:
                await self.cache.delete_event(session, account_id, previous_calendar[1])

        remote_event = None
        if existing_event_id:
            try:
                remote_event = await self.client.update_event(account_id, target_calendar, existing_event_id, payload)
            except NotFound:
                self.logger.info(f"Remote event {existing_event_id} for task {task_id} is gone; recreating")
                async with self.db.get_session() as session:
                    await self.mappings.delete_for_task(session, task_id)
                    await self.cache.delete_event(session, account_id, existing_event_id)

        if remote_event is None:
            remote_event = await self.client.create_event(account_id, target_calendar, payload)

        async with self.db.get_session() as session:
            task = await self.tasks.get_owned(session, account_id, task_id)
            if task is None:
                raise NotFound(f"Task {task_id} was deleted during sync")
            await self.mappings.upsert(session, task, remote_event.id, target_calendar, sync_hash, self.provider)
            task.last_synced_at = utcnow()
            await self.cache.upsert(session, account_id, remote_event, self.provider)

        self.logger.info(f"Task {task_id} synced to calendar {target_calendar} as event {remote_event.id}")
        return task

    async def sync_all_tasks_to_remote(self, account_id: str, calendar_id: Optional[str] = None) -> SyncResult:
        """Push every mapped task (or, with a target calendar, every dated task)"""
        await self._require_auth(account_id)

        async with self.db.get_session() as session:
            await self._get_account(session, account_id)
            if calendar_id:
                task_ids = [task.id for task in await self.tasks.list_dated(session, account_id)]
            else:
                task_ids = [
                    task.id for task, _ in await self.tasks.list_mapped(session, account_id, self.provider)
                    if task.scheduled_date is not None
                ]

        result = SyncResult()
        for task_id in task_ids:
            try:
                await self.sync_task_to_remote(account_id, task_id, calendar_id)
                result.synced += 1
            except Exception as e:
                self.logger.error(f"Failed to push task {task_id}: {e}")
                result.record_failure(f"Task {task_id}: {e}")

        self.logger.info(f"Pushed {result.synced} tasks for account {account_id}, {result.failed} failed")
        return result

    async def auto_sync_task(self, account_id: str, task_id: str, calendar_id: Optional[str] = None):
        """Post-create/update hook; never raises"""
        try:
            if not await self.credentials.has_valid_auth(account_id):
                self.logger.warning(f"Auto-sync skipped for task {task_id}: no valid Google auth")
                return
            await self.sync_task_to_remote(account_id, task_id, calendar_id, force=False)
        except Exception as e:
            self.logger.error(f"Auto-sync failed for task {task_id}: {e}")

    async def auto_delete_remote_event(self, account_id: str, calendar_id: str, event_id: str):
        """Post-delete hook; never raises"""
        try:
            if not await self.credentials.has_valid_auth(account_id):
                self.logger.warning(f"Auto-delete skipped for event {event_id}: no valid Google auth")
                return
            await self.client.delete_event(account_id, calendar_id, event_id)
            self.logger.info(f"Deleted remote event {event_id} from calendar {calendar_id}")
        except NotFound:
            self.logger.debug(f"Remote event {event_id} already gone")
        except Exception as e:
            self.logger.error(f"Auto-delete failed for event {event_id}: {e}")

    # ------------------------------------------------------------------
    # Pull: remote -> local
    # ------------------------------------------------------------------

    async def sync_remote_events_to_tasks(self, account_id: str, calendar_id: Optional[str] = None) -> SyncResult:
        """Import remote events into tasks, refresh the cache and reconcile deletions"""
        await self._require_auth(account_id)

        async with self.db.get_session() as session:
            account = await self._get_account(session, account_id)
            calendar_ids = await self._select_calendar_ids(session, account, calendar_id)

        result = SyncResult()
        window_start, window_end = self.sync_window()
        for current_calendar in calendar_ids:
            try:
                result.merge(await self._pull_calendar(account_id, current_calendar, window_start, window_end))
            except Exception as e:
                self.logger.error(f"Pull failed for calendar {current_calendar} of account {account_id}: {e}")
                result.record_failure(f"Calendar {current_calendar}: {e}")

        self.logger.info(
            f"Pulled {len(calendar_ids)} calendars for account {account_id}: "
            f"{result.synced} synced, {result.failed} failed"
        )
        return result

    async def _pull_calendar(
        self, account_id: str, calendar_id: str, window_start: datetime, window_end: datetime
    ) -> SyncResult:
        fetched_at = utcnow()
        events = await self.client.list_events(account_id, calendar_id, window_start, window_end)
        live_events = [event for event in events if not event.is_cancelled]
        seen_ids = {event.id for event in live_events}

        result = SyncResult()
        for event in live_events:
            if event.start is None:
                continue
            try:
                await self._apply_remote_event(account_id, calendar_id, event)
                result.synced += 1
            except Exception as e:
                self.logger.error(f"Failed to apply event {event.id} from {calendar_id}: {e}")
                result.record_failure(f"Event \"{event.summary}\": {e}")

        async with self.db.get_session() as session:
            await self.cache.upsert_many(session, account_id, live_events, self.provider)
            tombstoned = await self.cache.mark_missing_cancelled(
                session, account_id, calendar_id, seen_ids, window_start, window_end
            )

        completed = await self._reconcile_deletions(
            account_id, calendar_id, seen_ids, window_start, window_end, fetched_at
        )
        result.synced += completed

        if tombstoned or completed:
            self.logger.info(
                f"Calendar {calendar_id}: {completed} tasks completed, {tombstoned} cached events cancelled"
            )
        return result

    async def _find_task_for_event(self, session, account_id: str, event: RemoteEvent):
        """Resolve the local task for a remote event; returns (task, mapping)"""
        mapping = await self.mappings.get_by_event(session, account_id, event.id, self.provider)
        if mapping is not None:
            task = await session.get(TaskDB, mapping.task_id)
            if task is not None:
                return task, mapping
            await session.delete(mapping)
            await session.flush()

        candidates = []
        back_reference = event.private_properties.get(TASK_ID_PROPERTY)
        if back_reference:
            candidates.append(await self.tasks.get_owned(session, account_id, back_reference))
        candidates.append(await self.tasks.find_by_legacy_event_id(session, account_id, event.id))

        for task in candidates:
            if task is None:
                continue
            # A task already linked to another event keeps that link
            if await self.mappings.get_by_task(session, task.id, self.provider) is None:
                return task, None

        if event.summary:
            task = await self.tasks.find_unmapped_by_title_and_day(
                session, account_id, event.summary, event.start, self.provider
            )
            if task is not None:
                self.logger.info(f"Matched event {event.id} to existing task '{task.title}' by title and date")
                return task, None

        return None, None

    def _apply_event_fields(self, task: TaskDB, event: RemoteEvent):
        task.title = event.summary or task.title
        if event.description is not None:
            task.description = event.description
        task.scheduled_date = event.start
        task.scheduled_time = None if event.all_day else event.start.strftime('%H:%M')
        if event.end is not None:
            task.scheduled_end_date = event.end
        task.last_synced_at = utcnow()

    async def _apply_remote_event(self, account_id: str, calendar_id: str, event: RemoteEvent) -> TaskDB:
        """Update or import one event; task and mapping are written in one transaction"""
        try:
            async with self.db.get_session() as session:
                task, _ = await self._find_task_for_event(session, account_id, event)

                if task is not None:
                    self._apply_event_fields(task, event)
                    imported = False
                else:
                    project = await self.projects.resolve(
                        session, account_id, event.private_properties.get(PROJECT_ID_PROPERTY)
                    )
                    if project is None:
                        project = await self.projects.get_or_create_inbox(session, account_id)
                    task = TaskDB(
                        account_id=account_id,
                        title=event.summary or 'Untitled Event',
                        description=event.description,
                        project=project.name,
                        status=TaskStatus.TODO.value,
                        completed=False,
                    )
                    self._apply_event_fields(task, event)
                    session.add(task)
                    await session.flush()
                    imported = True

                project = await self.projects.resolve(session, account_id, task.project)
                sync_hash = compute_sync_hash(self.build_event_payload(task, project))
                await self.mappings.upsert(session, task, event.id, calendar_id, sync_hash, self.provider)
        except IntegrityError:
            # A concurrent pull linked this event first; its transaction wins and ours is rolled back
            async with self.db.get_session() as session:
                mapping = await self.mappings.get_by_event(session, account_id, event.id, self.provider)
                linked = await session.get(TaskDB, mapping.task_id) if mapping is not None else None
            if linked is None:
                raise
            self.logger.info(f"Event {event.id} was imported concurrently as task {linked.id}")
            return linked

        if imported:
            self.logger.info(f"Created task '{task.title}' from event {event.id} in {calendar_id}")
        return task

    async def _reconcile_deletions(
        self,
        account_id: str,
        calendar_id: str,
        seen_ids: Set[str],
        window_start: datetime,
        window_end: datetime,
        fetched_at: datetime,
    ) -> int:
        """Complete tasks whose mapped event vanished from the scanned window"""
        completed = 0
        async with self.db.get_session() as session:
            for mapping in await self.mappings.list_for_calendar(session, account_id, calendar_id, self.provider):
                if mapping.external_event_id in seen_ids:
                    continue
                # Pushed after the listing was taken
                if mapping.last_synced_at and mapping.last_synced_at >= fetched_at:
                    continue

                task = await session.get(TaskDB, mapping.task_id)
                if task is not None and task.scheduled_date is not None and not (
                    window_start <= task.scheduled_date <= window_end
                ):
                    continue

                await session.delete(mapping)
                if task is not None:
                    task.status = TaskStatus.DONE.value
                    task.completed = True
                    task.last_synced_at = utcnow()
                    if task.google_event_id == mapping.external_event_id:
                        task.google_event_id = None
                    completed += 1
                    self.logger.info(f"Marked task '{task.title}' as done (event deleted remotely)")
        return completed

    async def get_cached_events(
        self, account_id: str, start: datetime, end: datetime, calendar_id: Optional[str] = None
    ) -> List[CalendarEventDB]:
        async with self.db.get_session() as session:
            return await self.cache.query_range(session, account_id, start, end, calendar_id)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def enable_webhook(self, account_id: str) -> Dict[str, Any]:
        """Open a fresh push-notification channel on every eligible calendar"""
        webhook_url = self.settings.webhook_url
        if not webhook_url:
            raise ConfigError("Webhook base URL is not configured")
        await self._require_auth(account_id)

        async with self.db.get_session() as session:
            account = await self._get_account(session, account_id)
            calendar_ids = await self._select_calendar_ids(session, account)
            previous = []
            for external_id in calendar_ids:
                row = await self._ensure_calendar_row(session, account_id, external_id)
                previous.append((external_id, row.webhook_channel_id, row.webhook_resource_id))

        ttl = timedelta(days=self.settings.webhook_ttl_days)
        enabled = []
        for external_id, old_channel_id, old_resource_id in previous:
            if old_channel_id:
                await self._stop_channel_quietly(account_id, old_channel_id, old_resource_id)
                async with self.db.get_session() as session:
                    self.calendars.clear_channel(await self.calendars.get(session, account_id, external_id))

            channel = await self.client.watch_calendar(account_id, external_id, webhook_url, ttl=ttl)
            async with self.db.get_session() as session:
                row = await self._ensure_calendar_row(session, account_id, external_id)
                self.calendars.set_channel(row, channel)
            enabled.append(external_id)

        self.logger.info(f"Webhook enabled for account {account_id} on {len(enabled)} calendars")
        return {'enabled': len(enabled), 'calendars': enabled}

    async def disable_webhook(self, account_id: str) -> Dict[str, Any]:
        """Stop and forget every channel of the account"""
        async with self.db.get_session() as session:
            await self._get_account(session, account_id)
            channels = [
                (row.external_id, row.webhook_channel_id, row.webhook_resource_id)
                for row in await self.calendars.list_for_account(session, account_id)
                if row.webhook_channel_id
            ]

        for _, channel_id, resource_id in channels:
            await self._stop_channel_quietly(account_id, channel_id, resource_id)

        async with self.db.get_session() as session:
            for row in await self.calendars.list_for_account(session, account_id):
                self.calendars.clear_channel(row)

        self.logger.info(f"Webhook disabled for account {account_id} ({len(channels)} channels)")
        return {'stopped': len(channels)}

    async def handle_webhook_notification(
        self, channel_id: Optional[str], resource_id: Optional[str] = None, state: Optional[str] = None
    ) -> bool:
        """Route an inbound notification to a calendar-scoped pull; never raises"""
        if state == 'sync':
            self.logger.info(f"Webhook handshake received for channel {channel_id}")
            return False
        if state is not None and state not in PULL_TRIGGER_STATES:
            self.logger.info(f"Ignoring webhook state '{state}' for channel {channel_id}")
            return False
        if not channel_id:
            self.logger.warning("Webhook notification without channel id")
            return False

        try:
            async with self.db.get_session() as session:
                row = await self.calendars.get_by_channel(session, channel_id)
                if row is None:
                    self.logger.warning(f"No calendar found for webhook channel {channel_id}")
                    return False
                if row.webhook_resource_id and resource_id and row.webhook_resource_id != resource_id:
                    self.logger.warning(f"Resource id mismatch for webhook channel {channel_id}")
                    return False
                account_id, calendar_id = row.account_id, row.external_id

            if not await self.credentials.has_valid_auth(account_id):
                self.logger.warning(f"Account {account_id} has no valid Google auth; dropping notification")
                return False

            result = await self.sync_remote_events_to_tasks(account_id, calendar_id)
            self.logger.info(
                f"Webhook sync completed for account {account_id} calendar {calendar_id}: "
                f"{result.synced} synced, {result.failed} failed"
            )
            return True
        except Exception as e:
            self.logger.error(f"Webhook sync failed for channel {channel_id}: {e}")
            return False

    async def refresh_expiring_webhooks(self) -> Dict[str, int]:
        """Renew channels that expire within the buffer, per account with sync still enabled"""
        if not self.settings.webhook_url:
            return {'refreshed': 0, 'failed': 0}

        cutoff = utcnow() + timedelta(hours=self.settings.webhook_expiry_buffer_hours)
        async with self.db.get_session() as session:
            expiring = await self.calendars.list_expiring(session, cutoff)
            account_ids = []
            for row in expiring:
                if row.account_id in account_ids:
                    continue
                account = await self.accounts.get(session, row.account_id)
                if account is not None and account.auto_sync_enabled:
                    account_ids.append(row.account_id)

        refreshed = failed = 0
        for account_id in account_ids:
            try:
                await self.enable_webhook(account_id)
                refreshed += 1
            except Exception as e:
                failed += 1
                self.logger.error(f"Failed to refresh webhook for account {account_id}: {e}")

        self.logger.info(f"Refreshed {refreshed} webhooks, {failed} failed")
        return {'refreshed': refreshed, 'failed': failed}

    async def enable_webhooks_for_all_accounts(self) -> Dict[str, int]:
        """Startup bootstrap: sync-enabled accounts missing an active channel get one"""
        if not self.settings.webhook_url:
            self.logger.info("Webhook base URL not configured; skipping webhook bootstrap")
            return {'enabled': 0, 'failed': 0}

        now = utcnow()
        async with self.db.get_session() as session:
            pending = []
            for account in await self.accounts.list_sync_enabled(session):
                for external_id in await self._select_calendar_ids(session, account):
                    row = await self.calendars.get(session, account.id, external_id)
                    if row is None or not row.has_active_channel(now):
                        pending.append(account.id)
                        break

        enabled = failed = 0
        for account_id in pending:
            try:
                await self.enable_webhook(account_id)
                enabled += 1
            except Exception as e:
                failed += 1
                self.logger.error(f"Failed to enable webhook for account {account_id}: {e}")

        self.logger.info(f"Enabled {enabled} webhooks, {failed} failed")
        return {'enabled': enabled, 'failed': failed}

    async def pull_all_accounts(self) -> Dict[str, int]:
        """Periodic pull for every sync-enabled account, independent of webhook health"""
        async with self.db.get_session() as session:
            account_ids = [account.id for account in await self.accounts.list_sync_enabled(session)]

        pulled = failed = 0
        for account_id in account_ids:
            try:
                if not await self.credentials.has_valid_auth(account_id):
                    self.logger.warning(f"Periodic pull skipped for account {account_id}: no valid Google auth")
                    continue
                await self.sync_remote_events_to_tasks(account_id)
                pulled += 1
            except Exception as e:
                failed += 1
                self.logger.error(f"Periodic pull failed for account {account_id}: {e}")

        return {'pulled': pulled, 'failed': failed}

    # ------------------------------------------------------------------
    # Disconnect
    # ------------------------------------------------------------------

    async def disconnect_sync(self, account_id: str) -> Dict[str, int]:
        """Undo provisioning: channels, calendar link, mappings, cache and legacy links"""
        async with self.db.get_session() as session:
            await self._get_account(session, account_id)
            channels = [
                (row.webhook_channel_id, row.webhook_resource_id)
                for row in await self.calendars.list_for_account(session, account_id)
                if row.webhook_channel_id
            ]

        for channel_id, resource_id in channels:
            await self._stop_channel_quietly(account_id, channel_id, resource_id)

        async with self.db.get_session() as session:
            for row in await self.calendars.list_for_account(session, account_id):
                self.calendars.clear_channel(row)
            await self.accounts.clear_sync(session, account_id)
            mappings_removed = await self.mappings.delete_for_account(session, account_id, self.provider)
            events_removed = await self.cache.delete_for_account(session, account_id, self.provider)
            legacy_cleared = await self.tasks.clear_legacy_event_ids(session, account_id)

        self.logger.info(
            f"Disconnected sync for account {account_id}: {len(channels)} channels stopped, "
            f"{mappings_removed} mappings and {events_removed} cached events removed"
        )
        return {
            'channels_stopped': len(channels),
            'mappings_removed': mappings_removed,
            'events_removed': events_removed,
            'legacy_links_cleared': legacy_cleared,
        }

    # ------------------------------------------------------------------
    # Event cache
    # ------------------------------------------------------------------

    async def refresh_event_cache(self, account_id: str, calendar_id: Optional[str] = None) -> int:
        """Rebuild the CalendarEvent cache for the sync window without touching tasks"""
        await self._require_auth(account_id)

        async with self.db.get_session() as session:
            account = await self._get_account(session, account_id)
            calendar_ids = await self._select_calendar_ids(session, account, calendar_id)

        window_start, window_end = self.sync_window()
        cached = 0
        for current_calendar in calendar_ids:
            try:
                events = await self.client.list_events(account_id, current_calendar, window_start, window_end)
            except Exception as e:
                self.logger.error(f"Cache refresh failed for calendar {current_calendar}: {e}")
                continue
            live_events = [event for event in events if not event.is_cancelled]
            async with self.db.get_session() as session:
                cached += await self.cache.upsert_many(session, account_id, live_events, self.provider)
                await self.cache.mark_missing_cancelled(
                    session, account_id, current_calendar,
                    {event.id for event in live_events}, window_start, window_end
                )

        self.logger.info(f"Cached {cached} events for account {account_id}")
        return cached
