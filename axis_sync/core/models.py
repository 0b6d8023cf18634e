"""
Core data models for Axis Sync - SQLAlchemy Integration
Local records (accounts, projects, tasks) plus the mapping & cache tables
that make calendar synchronization idempotent
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional
import uuid

from sqlalchemy import (
    Column, String, DateTime, Text, Boolean, JSON, ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()

GOOGLE_PROVIDER = "google"
INBOX_PROJECT_NAME = "Inbox"


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class TaskStatus(Enum):
    """Task lifecycle status"""
    BACKLOG = "backlog"
    TODO = "todo"
    DONE = "done"


class ProjectStatus(Enum):
    """Project status"""
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class EventStatus(Enum):
    """Remote event status as reported by the calendar service"""
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


# SQLAlchemy Models
class AccountDB(Base):
    """Account owning tasks, projects and the remote calendar credential"""
    __tablename__ = 'accounts'

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(320), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=True)

    # Credential material, owned by the CredentialProvider
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expiry = Column(DateTime, nullable=True)

    # Legacy single-calendar model
    dedicated_calendar_id = Column(String(255), nullable=True)
    auto_sync_enabled = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<AccountDB(id={self.id}, email={self.email})>"

    def to_dict(self) -> Dict[str, Any]:
        """Public view; credential material is never included"""
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'dedicated_calendar_id': self.dedicated_calendar_id,
            'auto_sync_enabled': bool(self.auto_sync_enabled),
            'connected': bool(self.refresh_token or self.access_token),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class ProjectDB(Base):
    """SQLAlchemy model for projects"""
    __tablename__ = 'projects'
    __table_args__ = (
        UniqueConstraint('account_id', 'name', name='uq_projects_account_name'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String(20), nullable=True)
    color_id = Column(String(4), nullable=True)  # Google event colour "1".."11"
    status = Column(String(20), nullable=False, default=ProjectStatus.ACTIVE.value)
    created_at = Column(DateTime, default=utcnow)


class TaskDB(Base):
    """SQLAlchemy model for local tasks"""
    __tablename__ = 'tasks'

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    project = Column(String(200), nullable=True)  # project name or id

    scheduled_date = Column(DateTime, nullable=True, index=True)
    scheduled_time = Column(String(5), nullable=True)  # "HH:MM"
    scheduled_end_date = Column(DateTime, nullable=True)
    deadline = Column(DateTime, nullable=True)

    is_urgent = Column(Boolean, nullable=False, default=False)
    is_important = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=TaskStatus.BACKLOG.value)
    completed = Column(Boolean, nullable=False, default=False)

    # Deprecated direct link, superseded by TaskMappingDB
    google_event_id = Column(String(255), nullable=True, index=True)
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API dictionary"""
        return {
            'id': self.id,
            'account_id': self.account_id,
            'title': self.title,
            'description': self.description,
            'project': self.project,
            'scheduled_date': self.scheduled_date.isoformat() if self.scheduled_date else None,
            'scheduled_time': self.scheduled_time,
            'scheduled_end_date': self.scheduled_end_date.isoformat() if self.scheduled_end_date else None,
            'deadline': self.deadline.isoformat() if self.deadline else None,
            'is_urgent': self.is_urgent,
            'is_important': self.is_important,
            'status': self.status,
            'completed': self.completed,
            'last_synced_at': self.last_synced_at.isoformat() if self.last_synced_at else None,
        }


class ConnectedCalendarDB(Base):
    """Remote calendar known for an account, with its webhook channel state"""
    __tablename__ = 'connected_calendars'
    __table_args__ = (
        UniqueConstraint('account_id', 'external_id', name='uq_connected_calendars_account_external'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False, index=True)
    provider = Column(String(20), nullable=False, default=GOOGLE_PROVIDER)
    external_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String(20), nullable=True)
    is_primary = Column(Boolean, nullable=False, default=False)
    is_writable = Column(Boolean, nullable=False, default=True)
    is_synced = Column(Boolean, nullable=False, default=False)

    webhook_channel_id = Column(String(64), nullable=True, index=True)
    webhook_resource_id = Column(String(255), nullable=True)
    webhook_expiration = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def has_active_channel(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return bool(self.webhook_channel_id) and (
            self.webhook_expiration is None or self.webhook_expiration > now
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'external_id': self.external_id,
            'provider': self.provider,
            'name': self.name,
            'color': self.color,
            'is_primary': self.is_primary,
            'is_writable': self.is_writable,
            'is_synced': self.is_synced,
            'webhook_active': self.has_active_channel(),
            'webhook_expiration': self.webhook_expiration.isoformat() if self.webhook_expiration else None,
        }


class TaskMappingDB(Base):
    """
    Authoritative link between a local task and a remote event.
    At most one remote event per task per provider, and one task per remote event.
    """
    __tablename__ = 'task_mappings'
    __table_args__ = (
        UniqueConstraint('task_id', 'provider', name='uq_task_mappings_task_provider'),
        UniqueConstraint('account_id', 'provider', 'external_event_id', name='uq_task_mappings_account_event'),
        Index('ix_task_mappings_calendar', 'account_id', 'external_calendar_id'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    task_id = Column(String(36), ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False, index=True)
    account_id = Column(String(36), ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False)
    provider = Column(String(20), nullable=False, default=GOOGLE_PROVIDER)
    external_event_id = Column(String(255), nullable=False)
    external_calendar_id = Column(String(255), nullable=False)
    last_synced_at = Column(DateTime, nullable=False, default=utcnow)
    sync_hash = Column(String(64), nullable=True)
    metadata_json = Column('metadata', JSON, nullable=True)

    def __repr__(self):
        return f"<TaskMappingDB(task_id={self.task_id}, event={self.external_event_id})>"


class CalendarEventDB(Base):
    """Read-optimized cache of remote events, rebuilt by every pull"""
    __tablename__ = 'calendar_events'
    __table_args__ = (
        UniqueConstraint('account_id', 'external_id', name='uq_calendar_events_account_external'),
        Index('ix_calendar_events_range', 'account_id', 'start', 'end'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False)
    provider = Column(String(20), nullable=False, default=GOOGLE_PROVIDER)
    external_id = Column(String(255), nullable=False)
    calendar_id = Column(String(255), nullable=False)
    title = Column(String(500), nullable=False, default='Untitled')
    description = Column(Text, nullable=True)
    start = Column(DateTime, nullable=False)
    end = Column(DateTime, nullable=False)
    all_day = Column(Boolean, nullable=False, default=False)
    location = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default=EventStatus.CONFIRMED.value)
    color = Column(String(20), nullable=True)
    last_synced_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.external_id,
            'calendar_id': self.calendar_id,
            'provider': self.provider,
            'title': self.title,
            'description': self.description,
            'start': self.start.isoformat() if self.start else None,
            'end': self.end.isoformat() if self.end else None,
            'all_day': self.all_day,
            'location': self.location,
            'status': self.status,
            'color': self.color,
        }


@dataclass
class SyncResult:
    """Summary of a bulk sync run"""
    synced: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def record_failure(self, message: str):
        self.failed += 1
        self.errors.append(message)

    def merge(self, other: 'SyncResult'):
        self.synced += other.synced
        self.failed += other.failed
        self.errors.extend(other.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'synced': self.synced,
            'failed': self.failed,
            'errors': list(self.errors),
        }
