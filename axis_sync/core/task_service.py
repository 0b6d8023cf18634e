"""
Task service for Axis Sync
Local task CRUD whose create/update/delete hooks schedule background calendar sync
"""

import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

from sqlalchemy import select

from axis_sync.core.database import DatabaseService, db_service
from axis_sync.core.errors import NotFound
from axis_sync.core.models import TaskDB, TaskStatus

EDITABLE_FIELDS = (
    'title', 'description', 'project', 'scheduled_date', 'scheduled_time',
    'scheduled_end_date', 'deadline', 'is_urgent', 'is_important', 'status', 'completed'
)


def _coerce_datetime(value):
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace('Z', '+00:00')).replace(tzinfo=None)
    return value


class TaskService:
    """Task CRUD plus fire-and-forget sync hooks"""

    def __init__(self, engine, queue, db: DatabaseService = None):
        self.engine = engine
        self.queue = queue
        self.db = db or db_service
        self.logger = logging.getLogger(__name__)

    def _apply(self, task: TaskDB, data: Dict[str, Any]):
        for key in EDITABLE_FIELDS:
            if key not in data:
                continue
            value = data[key]
            if key in ('scheduled_date', 'scheduled_end_date', 'deadline'):
                value = _coerce_datetime(value)
            setattr(task, key, value)
        if task.status == TaskStatus.DONE.value:
            task.completed = True

    async def create_task(
        self, account_id: str, data: Dict[str, Any], calendar_id: Optional[str] = None
    ) -> TaskDB:
        """Create a task; it only reaches a calendar when `calendar_id` is given"""
        if not data.get('title'):
            raise ValueError("Task title is required")

        async with self.db.get_session() as session:
            task = TaskDB(account_id=account_id, title=data['title'])
            self._apply(task, data)
            session.add(task)
            await session.flush()

        self.queue.submit(
            f"auto-sync task {task.id}", self.engine.auto_sync_task, account_id, task.id, calendar_id
        )
        return task

    async def update_task(self, account_id: str, task_id: str, changes: Dict[str, Any]) -> TaskDB:
        async with self.db.get_session() as session:
            task = await self.engine.tasks.get_owned(session, account_id, task_id)
            if task is None:
                raise NotFound(f"Task {task_id} not found")
            self._apply(task, changes)

        self.queue.submit(f"auto-sync task {task_id}", self.engine.auto_sync_task, account_id, task_id)
        return task

    async def delete_task(self, account_id: str, task_id: str) -> bool:
        """Delete locally, then remove the linked remote events in the background"""
        async with self.db.get_session() as session:
            task = await self.engine.tasks.get_owned(session, account_id, task_id)
            if task is None:
                raise NotFound(f"Task {task_id} not found")
            removed = await self.engine.mappings.delete_for_task(session, task_id)
            for mapping in removed:
                await self.engine.cache.delete_event(session, account_id, mapping.external_event_id)
            await session.delete(task)

        for mapping in removed:
            self.queue.submit(
                f"auto-delete event {mapping.external_event_id}",
                self.engine.auto_delete_remote_event,
                account_id,
                mapping.external_calendar_id,
                mapping.external_event_id,
            )
        self.logger.info(f"Deleted task {task_id} ({len(removed)} remote events scheduled for removal)")
        return True

    async def list_tasks(self, account_id: str) -> List[TaskDB]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(TaskDB).where(TaskDB.account_id == account_id).order_by(TaskDB.created_at)
            )
            return list(result.scalars().all())
