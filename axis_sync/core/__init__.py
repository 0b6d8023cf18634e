"""
Axis Sync Core Module
Exports the persistent models and the sync error hierarchy
"""

from .errors import (
    SyncError,
    AuthRequired,
    AuthExpired,
    PermissionDenied,
    NotFound,
    RateLimited,
    RemoteError,
    InvalidState,
    ConfigError,
)
from .models import (
    AccountDB,
    ProjectDB,
    TaskDB,
    ConnectedCalendarDB,
    TaskMappingDB,
    CalendarEventDB,
    SyncResult,
    TaskStatus,
    EventStatus,
)

__all__ = [
    'SyncError', 'AuthRequired', 'AuthExpired', 'PermissionDenied', 'NotFound',
    'RateLimited', 'RemoteError', 'InvalidState', 'ConfigError',
    'AccountDB', 'ProjectDB', 'TaskDB', 'ConnectedCalendarDB', 'TaskMappingDB',
    'CalendarEventDB', 'SyncResult', 'TaskStatus', 'EventStatus',
]
