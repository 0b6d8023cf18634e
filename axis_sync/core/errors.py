"""
Error taxonomy for calendar synchronization
Remote failures are classified once, in the calendar client, and carried as these types
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all synchronization errors"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthRequired(SyncError):
    """Account has no usable credential and must (re)authenticate"""


class AuthExpired(SyncError):
    """Remote service rejected the credential (401) or the refresh failed"""


class PermissionDenied(SyncError):
    """Remote service refused the operation (403)"""


class NotFound(SyncError):
    """Remote calendar/event or local record does not exist"""


class RateLimited(SyncError):
    """Remote service is throttling the account (429)"""


class RemoteError(SyncError):
    """Unclassified remote failure"""


class InvalidState(SyncError):
    """Local record cannot be synchronized as it is (e.g. task without a date)"""


class ConfigError(SyncError):
    """Required configuration is missing or invalid"""
