"""
CalendarProvider Interface for Calendar Backends
Uniform read/write surface so further calendar services can be added next to Google
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional
import logging


@dataclass
class ProviderCalendar:
    """Calendar exposed by a provider"""
    id: str                      # Provider calendar identifier
    name: str                    # Human-readable name
    primary: bool = False
    writable: bool = True
    synced: bool = False
    color: Optional[str] = None


@dataclass
class ProviderEvent:
    """Event exposed by a provider, naive UTC times"""
    id: str
    calendar_id: str
    title: str
    start: datetime
    end: datetime
    all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None
    status: str = 'confirmed'
    color: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderEventInput:
    """Fields accepted when creating or updating an event"""
    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    color: Optional[str] = None


class CalendarProvider(ABC):
    """
    Abstract base class for calendar providers

    Implementations are registered in the ProviderRegistry under `provider_id`.
    The SyncEngine talks to its calendar client directly and does not go through this interface.
    """

    provider_id: str = ''

    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or {}
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    async def get_calendars(self, account_id: str) -> List[ProviderCalendar]:
        """List calendars known for the account"""

    @abstractmethod
    async def get_events(
        self,
        account_id: str,
        start: datetime,
        end: datetime,
        calendar_id: Optional[str] = None,
    ) -> List[ProviderEvent]:
        """Events overlapping [start, end]"""

    @abstractmethod
    async def create_event(self, account_id: str, calendar_id: str, event: ProviderEventInput) -> ProviderEvent:
        """Create an event"""

    @abstractmethod
    async def update_event(
        self, account_id: str, calendar_id: str, event_id: str, event: ProviderEventInput
    ) -> ProviderEvent:
        """Update an event"""

    @abstractmethod
    async def delete_event(self, account_id: str, calendar_id: str, event_id: str) -> None:
        """Delete an event"""

    @abstractmethod
    async def is_connected(self, account_id: str) -> bool:
        """Whether the account holds usable credentials for this provider"""
