"""
Record stores for Axis Sync
Account/project/task access plus the mapping & cache tables, all scoped by account id
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import select, update, delete, func, and_, or_
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from axis_sync.core.calendar_client import RemoteCalendar, RemoteEvent, WatchChannel
from axis_sync.core.models import (
    AccountDB, ProjectDB, TaskDB, TaskMappingDB, ConnectedCalendarDB, CalendarEventDB,
    EventStatus, GOOGLE_PROVIDER, INBOX_PROJECT_NAME, utcnow
)

logger = logging.getLogger(__name__)

INBOX_COLOR = '#808080'
INBOX_DESCRIPTION = 'Default project for tasks synced from Google Calendar'


class AccountStore:
    """Account access, including the guarded dedicated-calendar claim"""

    async def get(self, session: AsyncSession, account_id: str) -> Optional[AccountDB]:
        return await session.get(AccountDB, account_id)

    async def get_by_email(self, session: AsyncSession, email: str) -> Optional[AccountDB]:
        result = await session.execute(select(AccountDB).where(AccountDB.email == email))
        return result.scalar_one_or_none()

    async def create(self, session: AsyncSession, email: str, name: Optional[str] = None) -> AccountDB:
        account = AccountDB(email=email, name=name)
        session.add(account)
        await session.flush()
        return account

    async def claim_dedicated_calendar(self, session: AsyncSession, account_id: str, calendar_id: str) -> bool:
        """
        Conditionally store the dedicated calendar and enable sync.
        Applies only when no id is stored yet or the stored id already matches.
        Returns False when another writer claimed a different calendar first.
        """
        result = await session.execute(
            update(AccountDB)
            .where(
                AccountDB.id == account_id,
                or_(
                    AccountDB.dedicated_calendar_id.is_(None),
                    AccountDB.dedicated_calendar_id == calendar_id,
                ),
            )
            .values(dedicated_calendar_id=calendar_id, auto_sync_enabled=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def clear_sync(self, session: AsyncSession, account_id: str):
        await session.execute(
            update(AccountDB)
            .where(AccountDB.id == account_id)
            .values(dedicated_calendar_id=None, auto_sync_enabled=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def list_sync_enabled(self, session: AsyncSession) -> List[AccountDB]:
        result = await session.execute(
            select(AccountDB).where(AccountDB.auto_sync_enabled.is_(True)).order_by(AccountDB.created_at)
        )
        return list(result.scalars().all())


class ProjectStore:
    """Project lookup and lazy Inbox creation"""

    async def _get_inbox(self, session: AsyncSession, account_id: str) -> Optional[ProjectDB]:
        result = await session.execute(
            select(ProjectDB).where(ProjectDB.account_id == account_id, ProjectDB.name == INBOX_PROJECT_NAME)
        )
        return result.scalar_one_or_none()

    async def get_or_create_inbox(self, session: AsyncSession, account_id: str) -> ProjectDB:
        """Inbox project of the account; concurrent first imports end up sharing one row"""
        inbox = await self._get_inbox(session, account_id)
        if inbox is not None:
            return inbox

        result = await session.execute(
            sqlite_insert(ProjectDB)
            .values(
                account_id=account_id,
                name=INBOX_PROJECT_NAME,
                description=INBOX_DESCRIPTION,
                color=INBOX_COLOR,
            )
            .on_conflict_do_nothing(index_elements=['account_id', 'name'])
        )
        if result.rowcount:
            logger.info(f"Created Inbox project for account {account_id}")
        return await self._get_inbox(session, account_id)

    async def resolve(self, session: AsyncSession, account_id: str, reference: Optional[str]) -> Optional[ProjectDB]:
        """Find an account's project by id or by name"""
        if not reference:
            return None
        result = await session.execute(
            select(ProjectDB).where(
                ProjectDB.account_id == account_id,
                or_(ProjectDB.id == reference, ProjectDB.name == reference),
            )
        )
        return result.scalars().first()


class TaskStore:
    """Task queries used by push and pull"""

    async def get_owned(self, session: AsyncSession, account_id: str, task_id: str) -> Optional[TaskDB]:
        task = await session.get(TaskDB, task_id)
        if task is None or task.account_id != account_id:
            return None
        return task

    async def find_by_legacy_event_id(self, session: AsyncSession, account_id: str, event_id: str) -> Optional[TaskDB]:
        result = await session.execute(
            select(TaskDB).where(TaskDB.account_id == account_id, TaskDB.google_event_id == event_id)
        )
        return result.scalars().first()

    async def find_unmapped_by_title_and_day(
        self,
        session: AsyncSession,
        account_id: str,
        title: str,
        day: datetime,
        provider: str = GOOGLE_PROVIDER,
    ) -> Optional[TaskDB]:
        """Unmapped task of the account with exactly this title, scheduled on the same calendar day"""
        day_start = datetime(day.year, day.month, day.day)
        day_end = day_start + timedelta(days=1)
        mapped = select(TaskMappingDB.task_id).where(TaskMappingDB.provider == provider)
        result = await session.execute(
            select(TaskDB)
            .where(
                TaskDB.account_id == account_id,
                TaskDB.title == title,
                TaskDB.scheduled_date >= day_start,
                TaskDB.scheduled_date < day_end,
                TaskDB.id.not_in(mapped),
            )
            .order_by(TaskDB.created_at)
        )
        return result.scalars().first()

    async def list_dated(self, session: AsyncSession, account_id: str) -> List[TaskDB]:
        result = await session.execute(
            select(TaskDB)
            .where(TaskDB.account_id == account_id, TaskDB.scheduled_date.is_not(None))
            .order_by(TaskDB.scheduled_date)
        )
        return list(result.scalars().all())

    async def list_mapped(
        self, session: AsyncSession, account_id: str, provider: str = GOOGLE_PROVIDER
    ) -> List[Tuple[TaskDB, TaskMappingDB]]:
        result = await session.execute(
            select(TaskDB, TaskMappingDB)
            .join(TaskMappingDB, TaskMappingDB.task_id == TaskDB.id)
            .where(TaskDB.account_id == account_id, TaskMappingDB.provider == provider)
            .order_by(TaskDB.scheduled_date)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def clear_legacy_event_ids(self, session: AsyncSession, account_id: str) -> int:
        result = await session.execute(
            update(TaskDB)
            .where(TaskDB.account_id == account_id, TaskDB.google_event_id.is_not(None))
            .values(google_event_id=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


class MappingStore:
    """TaskMapping rows: the join table that makes push and pull idempotent"""

    async def get_by_task(
        self, session: AsyncSession, task_id: str, provider: str = GOOGLE_PROVIDER
    ) -> Optional[TaskMappingDB]:
        result = await session.execute(
            select(TaskMappingDB).where(TaskMappingDB.task_id == task_id, TaskMappingDB.provider == provider)
        )
        return result.scalar_one_or_none()

    async def get_by_event(
        self, session: AsyncSession, account_id: str, event_id: str, provider: str = GOOGLE_PROVIDER
    ) -> Optional[TaskMappingDB]:
        result = await session.execute(
            select(TaskMappingDB).where(
                TaskMappingDB.account_id == account_id,
                TaskMappingDB.provider == provider,
                TaskMappingDB.external_event_id == event_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        session: AsyncSession,
        task: TaskDB,
        event_id: str,
        calendar_id: str,
        sync_hash: Optional[str] = None,
        provider: str = GOOGLE_PROVIDER,
    ) -> TaskMappingDB:
        """Create or refresh the task's mapping; flushes so uniqueness violations surface here"""
        mapping = await self.get_by_task(session, task.id, provider)
        now = utcnow()
        if mapping is None:
            mapping = TaskMappingDB(
                task_id=task.id,
                account_id=task.account_id,
                provider=provider,
                external_event_id=event_id,
                external_calendar_id=calendar_id,
                last_synced_at=now,
                sync_hash=sync_hash,
            )
            session.add(mapping)
        else:
            mapping.external_event_id = event_id
            mapping.external_calendar_id = calendar_id
            mapping.last_synced_at = now
            if sync_hash is not None:
                mapping.sync_hash = sync_hash
        await session.flush()
        return mapping

    async def list_for_calendar(
        self, session: AsyncSession, account_id: str, calendar_id: str, provider: str = GOOGLE_PROVIDER
    ) -> List[TaskMappingDB]:
        result = await session.execute(
            select(TaskMappingDB).where(
                TaskMappingDB.account_id == account_id,
                TaskMappingDB.provider == provider,
                TaskMappingDB.external_calendar_id == calendar_id,
            )
        )
        return list(result.scalars().all())

    async def delete_for_task(self, session: AsyncSession, task_id: str) -> List[TaskMappingDB]:
        """Remove every mapping of a task and return the removed rows"""
        result = await session.execute(select(TaskMappingDB).where(TaskMappingDB.task_id == task_id))
        mappings = list(result.scalars().all())
        for mapping in mappings:
            await session.delete(mapping)
        await session.flush()
        return mappings

    async def delete_for_account(self, session: AsyncSession, account_id: str, provider: str = GOOGLE_PROVIDER) -> int:
        result = await session.execute(
            delete(TaskMappingDB).where(TaskMappingDB.account_id == account_id, TaskMappingDB.provider == provider)
        )
        return result.rowcount or 0

    async def count_for_account(self, session: AsyncSession, account_id: str, provider: str = GOOGLE_PROVIDER) -> int:
        result = await session.execute(
            select(func.count(TaskMappingDB.id)).where(
                TaskMappingDB.account_id == account_id, TaskMappingDB.provider == provider
            )
        )
        return result.scalar() or 0


class CalendarStore:
    """ConnectedCalendar rows and their webhook channel state"""

    async def upsert_from_remote(
        self, session: AsyncSession, account_id: str, remote: RemoteCalendar, provider: str = GOOGLE_PROVIDER
    ) -> ConnectedCalendarDB:
        row = await self.get(session, account_id, remote.id)
        if row is None:
            row = ConnectedCalendarDB(
                account_id=account_id,
                provider=provider,
                external_id=remote.id,
                name=remote.summary or remote.id,
                is_synced=False,
            )
            session.add(row)
        row.name = remote.summary or remote.id
        row.description = remote.description
        row.color = remote.background_color
        row.is_primary = remote.primary
        row.is_writable = remote.is_writable
        await session.flush()
        return row

    async def get(self, session: AsyncSession, account_id: str, external_id: str) -> Optional[ConnectedCalendarDB]:
        result = await session.execute(
            select(ConnectedCalendarDB).where(
                ConnectedCalendarDB.account_id == account_id,
                ConnectedCalendarDB.external_id == external_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_account(self, session: AsyncSession, account_id: str) -> List[ConnectedCalendarDB]:
        result = await session.execute(
            select(ConnectedCalendarDB)
            .where(ConnectedCalendarDB.account_id == account_id)
            .order_by(ConnectedCalendarDB.is_primary.desc(), ConnectedCalendarDB.name)
        )
        return list(result.scalars().all())

    async def get_by_channel(self, session: AsyncSession, channel_id: str) -> Optional[ConnectedCalendarDB]:
        result = await session.execute(
            select(ConnectedCalendarDB).where(ConnectedCalendarDB.webhook_channel_id == channel_id)
        )
        return result.scalars().first()

    async def list_expiring(self, session: AsyncSession, before: datetime) -> List[ConnectedCalendarDB]:
        result = await session.execute(
            select(ConnectedCalendarDB).where(
                ConnectedCalendarDB.webhook_channel_id.is_not(None),
                ConnectedCalendarDB.webhook_expiration.is_not(None),
                ConnectedCalendarDB.webhook_expiration < before,
            )
        )
        return list(result.scalars().all())

    def set_channel(self, row: ConnectedCalendarDB, channel: WatchChannel):
        row.webhook_channel_id = channel.channel_id
        row.webhook_resource_id = channel.resource_id
        row.webhook_expiration = channel.expiration

    def clear_channel(self, row: ConnectedCalendarDB):
        row.webhook_channel_id = None
        row.webhook_resource_id = None
        row.webhook_expiration = None


class EventCacheStore:
    """CalendarEvent cache: denormalized copy of remote events for range reads"""

    async def upsert(
        self, session: AsyncSession, account_id: str, event: RemoteEvent, provider: str = GOOGLE_PROVIDER
    ) -> bool:
        """Insert or refresh one cached event; a row written concurrently is updated in place"""
        if event.start is None:
            return False
        fields = {
            'calendar_id': event.calendar_id,
            'title': event.summary or 'Untitled',
            'description': event.description,
            'start': event.start,
            'end': event.end or event.start,
            'all_day': event.all_day,
            'location': event.location,
            'status': event.status or EventStatus.CONFIRMED.value,
            'color': event.color_id,
            'last_synced_at': utcnow(),
        }
        await session.execute(
            sqlite_insert(CalendarEventDB)
            .values(account_id=account_id, provider=provider, external_id=event.id, **fields)
            .on_conflict_do_update(index_elements=['account_id', 'external_id'], set_=fields)
        )
        return True

    async def upsert_many(
        self, session: AsyncSession, account_id: str, events: Iterable[RemoteEvent], provider: str = GOOGLE_PROVIDER
    ) -> int:
        count = 0
        for event in events:
            if await self.upsert(session, account_id, event, provider):
                count += 1
        await session.flush()
        return count

    async def mark_missing_cancelled(
        self,
        session: AsyncSession,
        account_id: str,
        calendar_id: str,
        seen_ids: Set[str],
        window_start: datetime,
        window_end: datetime,
    ) -> int:
        """Tombstone cached events of the scanned window that the remote no longer returns"""
        conditions = [
            CalendarEventDB.account_id == account_id,
            CalendarEventDB.calendar_id == calendar_id,
            CalendarEventDB.start <= window_end,
            CalendarEventDB.end >= window_start,
            CalendarEventDB.status != EventStatus.CANCELLED.value,
        ]
        if seen_ids:
            conditions.append(CalendarEventDB.external_id.not_in(seen_ids))
        result = await session.execute(
            update(CalendarEventDB)
            .where(and_(*conditions))
            .values(status=EventStatus.CANCELLED.value, last_synced_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def query_range(
        self,
        session: AsyncSession,
        account_id: str,
        start: datetime,
        end: datetime,
        calendar_id: Optional[str] = None,
    ) -> List[CalendarEventDB]:
        """Non-cancelled events overlapping [start, end]"""
        query = select(CalendarEventDB).where(
            CalendarEventDB.account_id == account_id,
            CalendarEventDB.start <= end,
            CalendarEventDB.end >= start,
            CalendarEventDB.status != EventStatus.CANCELLED.value,
        )
        if calendar_id:
            query = query.where(CalendarEventDB.calendar_id == calendar_id)
        result = await session.execute(query.order_by(CalendarEventDB.start))
        return list(result.scalars().all())

    async def delete_event(self, session: AsyncSession, account_id: str, external_id: str) -> int:
        result = await session.execute(
            delete(CalendarEventDB).where(
                CalendarEventDB.account_id == account_id,
                CalendarEventDB.external_id == external_id,
            )
        )
        return result.rowcount or 0

    async def delete_for_account(self, session: AsyncSession, account_id: str, provider: str = GOOGLE_PROVIDER) -> int:
        result = await session.execute(
            delete(CalendarEventDB).where(
                CalendarEventDB.account_id == account_id,
                CalendarEventDB.provider == provider,
            )
        )
        return result.rowcount or 0

    async def count_for_account(self, session: AsyncSession, account_id: str) -> int:
        result = await session.execute(
            select(func.count(CalendarEventDB.id)).where(CalendarEventDB.account_id == account_id)
        )
        return result.scalar() or 0
