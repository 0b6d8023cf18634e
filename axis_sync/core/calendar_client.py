"""
Google Calendar REST client for Axis Sync
Typed calendar/event/channel operations over httpx with structured error classification
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, date, timedelta, timezone
from typing import Dict, Any, List, Optional
from urllib.parse import quote

import httpx

from axis_sync.core.errors import (
    AuthExpired, PermissionDenied, NotFound, RateLimited, RemoteError, SyncError
)
from axis_sync.core.models import utcnow

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
WRITABLE_ACCESS_ROLES = ('owner', 'writer')
RATE_LIMIT_REASONS = ('rateLimitExceeded', 'userRateLimitExceeded', 'quotaExceeded')
DEFAULT_CHANNEL_TTL = timedelta(days=7)


@dataclass
class RemoteCalendar:
    """Calendar as listed in the account's calendar list"""
    id: str
    summary: str
    description: Optional[str] = None
    primary: bool = False
    access_role: str = 'reader'
    background_color: Optional[str] = None

    @property
    def is_writable(self) -> bool:
        return self.access_role in WRITABLE_ACCESS_ROLES

    @classmethod
    def from_google(cls, item: Dict[str, Any]) -> 'RemoteCalendar':
        return cls(
            id=item.get('id', ''),
            summary=item.get('summaryOverride') or item.get('summary', ''),
            description=item.get('description'),
            primary=bool(item.get('primary', False)),
            access_role=item.get('accessRole', 'reader'),
            background_color=item.get('backgroundColor'),
        )


@dataclass
class RemoteEvent:
    """Remote event normalized to naive UTC datetimes"""
    id: str
    calendar_id: str
    summary: Optional[str] = None
    description: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    all_day: bool = False
    status: str = 'confirmed'
    location: Optional[str] = None
    color_id: Optional[str] = None
    private_properties: Dict[str, str] = field(default_factory=dict)

    @property
    def is_cancelled(self) -> bool:
        return self.status == 'cancelled'

    @classmethod
    def from_google(cls, item: Dict[str, Any], calendar_id: str) -> 'RemoteEvent':
        start_time, all_day = _parse_event_time(item.get('start') or {})
        end_time, _ = _parse_event_time(item.get('end') or {})
        extended = item.get('extendedProperties') or {}
        return cls(
            id=item.get('id', ''),
            calendar_id=calendar_id,
            summary=item.get('summary'),
            description=item.get('description'),
            start=start_time,
            end=end_time,
            all_day=all_day,
            status=item.get('status', 'confirmed'),
            location=item.get('location'),
            color_id=item.get('colorId'),
            private_properties=dict(extended.get('private') or {}),
        )


@dataclass
class EventPayload:
    """Event body written by push"""
    summary: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    color_id: Optional[str] = None
    private_properties: Dict[str, str] = field(default_factory=dict)
    time_zone: str = 'UTC'

    def to_google(self) -> Dict[str, Any]:
        body = {
            'summary': self.summary,
            'description': self.description or '',
            'start': {'dateTime': format_rfc3339(self.start), 'timeZone': self.time_zone},
            'end': {'dateTime': format_rfc3339(self.end), 'timeZone': self.time_zone},
        }
        if self.color_id:
            body['colorId'] = self.color_id
        properties = {k: v for k, v in self.private_properties.items() if v}
        if properties:
            body['extendedProperties'] = {'private': properties}
        return body


@dataclass
class WatchChannel:
    """Push-notification channel opened on a calendar"""
    channel_id: str
    resource_id: str
    expiration: datetime


def format_rfc3339(value: datetime) -> str:
    """Naive UTC (or aware) datetime to RFC3339 with a Z suffix"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat() + 'Z'


def _parse_event_time(value: Dict[str, Any]):
    """Google start/end object to (naive UTC datetime, all_day)"""
    if value.get('dateTime'):
        parsed = datetime.fromisoformat(value['dateTime'].replace('Z', '+00:00'))
        if parsed.tzinfo:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed, False
    if value.get('date'):
        day = date.fromisoformat(value['date'])
        return datetime(day.year, day.month, day.day), True
    return None, False


def new_channel_id() -> str:
    """Channel ids must match [A-Za-z0-9-_+/=]{1,64}"""
    return f"channel-{uuid.uuid4().hex}"


def _safe_google_error(response: httpx.Response):
    """Extract (message, reasons) from a Google error body"""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    reasons = []
    if isinstance(payload, dict):
        error_payload = payload.get('error')
        if isinstance(error_payload, dict):
            for item in error_payload.get('errors') or []:
                if isinstance(item, dict) and item.get('reason'):
                    reasons.append(item['reason'])
            message = error_payload.get('message')
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200], reasons
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200], reasons

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200], reasons
    return "Request failed without an error payload", reasons


def classify_error(response: httpx.Response) -> SyncError:
    """Map a failed Google response onto the sync error taxonomy"""
    message, reasons = _safe_google_error(response)
    status = response.status_code

    if status == 401:
        return AuthExpired("Google authentication expired. Please reconnect.", status)
    if status == 429 or (status == 403 and any(r in RATE_LIMIT_REASONS for r in reasons)):
        return RateLimited("Rate limit exceeded. Please try again later.", status)
    if status == 403:
        return PermissionDenied("Insufficient permissions for Google Calendar", status)
    if status in (404, 410):
        return NotFound("Calendar or event not found", status)
    return RemoteError(f"Google Calendar API error: {message}", status)


class GoogleCalendarClient:
    """Google Calendar API v3 client, one bearer token per account"""

    def __init__(
        self,
        credentials,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
        timeout: float = 30.0,
        time_zone: str = 'UTC',
    ):
        self.credentials = credentials
        self.base_url = base_url.rstrip('/')
        self.time_zone = time_zone
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self.logger = logging.getLogger(__name__)

    async def close(self):
        if self._owns_client:
            await self._http_client.aclose()

    # Transport

    async def _request_once(
        self,
        account_id: str,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]],
        json_body: Optional[Dict[str, Any]],
        force_refresh: bool,
    ) -> httpx.Response:
        access_token = await self.credentials.get_valid_access_token(account_id, force_refresh=force_refresh)
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        try:
            return await self._http_client.request(
                method, url, params=params, json=json_body, headers=headers
            )
        except httpx.HTTPError as exc:
            raise RemoteError(f"Google Calendar request failed: {exc}") from exc

    async def _request(
        self,
        account_id: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Issue a request, retrying once with a forced token refresh on 401"""
        url = f"{self.base_url}{path}"
        response = await self._request_once(account_id, method, url, params, json_body, False)

        if response.status_code == 401:
            self.logger.info(f"Access token rejected for account {account_id}, refreshing")
            response = await self._request_once(account_id, method, url, params, json_body, True)

        if response.status_code >= 400:
            raise classify_error(response)
        return response

    @staticmethod
    def _calendar_path(calendar_id: str) -> str:
        return f"/calendars/{quote(calendar_id, safe='')}"

    # Calendars

    async def list_calendars(self, account_id: str) -> List[RemoteCalendar]:
        """List every calendar in the account's calendar list"""
        calendars = []
        page_token = None
        while True:
            params = {'maxResults': 250}
            if page_token:
                params['pageToken'] = page_token
            response = await self._request(account_id, 'GET', '/users/me/calendarList', params=params)
            payload = response.json()
            calendars.extend(RemoteCalendar.from_google(item) for item in payload.get('items', []))
            page_token = payload.get('nextPageToken')
            if not page_token:
                return calendars

    async def create_calendar(self, account_id: str, name: str, description: Optional[str] = None) -> RemoteCalendar:
        body = {'summary': name, 'description': description or '', 'timeZone': self.time_zone}
        response = await self._request(account_id, 'POST', '/calendars', json_body=body)
        payload = response.json()
        self.logger.info(f"Created calendar '{name}' ({payload.get('id')}) for account {account_id}")
        return RemoteCalendar(
            id=payload.get('id', ''),
            summary=payload.get('summary', name),
            description=payload.get('description'),
            primary=False,
            access_role='owner',
        )

    async def find_calendar_by_name(self, account_id: str, name: str) -> Optional[RemoteCalendar]:
        for calendar in await self.list_calendars(account_id):
            if calendar.summary == name:
                return calendar
        return None

    async def delete_calendar(self, account_id: str, calendar_id: str) -> None:
        await self._request(account_id, 'DELETE', self._calendar_path(calendar_id))
        self.logger.info(f"Deleted calendar {calendar_id} for account {account_id}")

    # Events

    async def list_events(
        self,
        account_id: str,
        calendar_id: str,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
    ) -> List[RemoteEvent]:
        """List expanded single events in a window, following pagination"""
        events = []
        page_token = None
        path = f"{self._calendar_path(calendar_id)}/events"
        while True:
            params = {
                'singleEvents': 'true',
                'orderBy': 'startTime',
                'showDeleted': 'false',
                'maxResults': 250,
            }
            if time_min:
                params['timeMin'] = format_rfc3339(time_min)
            if time_max:
                params['timeMax'] = format_rfc3339(time_max)
            if page_token:
                params['pageToken'] = page_token

            response = await self._request(account_id, 'GET', path, params=params)
            payload = response.json()
            events.extend(RemoteEvent.from_google(item, calendar_id) for item in payload.get('items', []))
            page_token = payload.get('nextPageToken')
            if not page_token:
                return events

    async def get_event(self, account_id: str, calendar_id: str, event_id: str) -> Optional[RemoteEvent]:
        """Fetch one event; a missing event is None, not an error"""
        path = f"{self._calendar_path(calendar_id)}/events/{quote(event_id, safe='')}"
        try:
            response = await self._request(account_id, 'GET', path)
        except NotFound:
            return None
        return RemoteEvent.from_google(response.json(), calendar_id)

    async def create_event(self, account_id: str, calendar_id: str, payload: EventPayload) -> RemoteEvent:
        path = f"{self._calendar_path(calendar_id)}/events"
        response = await self._request(account_id, 'POST', path, json_body=payload.to_google())
        return RemoteEvent.from_google(response.json(), calendar_id)

    async def update_event(
        self, account_id: str, calendar_id: str, event_id: str, payload: EventPayload
    ) -> RemoteEvent:
        path = f"{self._calendar_path(calendar_id)}/events/{quote(event_id, safe='')}"
        response = await self._request(account_id, 'PATCH', path, json_body=payload.to_google())
        return RemoteEvent.from_google(response.json(), calendar_id)

    async def delete_event(self, account_id: str, calendar_id: str, event_id: str) -> None:
        path = f"{self._calendar_path(calendar_id)}/events/{quote(event_id, safe='')}"
        await self._request(account_id, 'DELETE', path)
        self.logger.info(f"Deleted event {event_id} from calendar {calendar_id}")

    # Push notifications

    async def watch_calendar(
        self, account_id: str, calendar_id: str, webhook_url: str, ttl: Optional[timedelta] = None
    ) -> WatchChannel:
        """Open a web_hook channel on the calendar's event collection"""
        channel_id = new_channel_id()
        path = f"{self._calendar_path(calendar_id)}/events/watch"
        body = {'id': channel_id, 'type': 'web_hook', 'address': webhook_url}
        if ttl:
            body['params'] = {'ttl': str(int(ttl.total_seconds()))}
        response = await self._request(account_id, 'POST', path, json_body=body)
        payload = response.json()

        expiration_ms = payload.get('expiration')
        if expiration_ms:
            expiration = datetime.fromtimestamp(int(expiration_ms) / 1000, tz=timezone.utc).replace(tzinfo=None)
        else:
            expiration = utcnow() + (ttl or DEFAULT_CHANNEL_TTL)

        self.logger.info(f"Started watching calendar {calendar_id} for account {account_id}")
        return WatchChannel(
            channel_id=payload.get('id', channel_id),
            resource_id=payload.get('resourceId', ''),
            expiration=expiration,
        )

    async def stop_watch(self, account_id: str, channel_id: str, resource_id: str) -> None:
        body = {'id': channel_id, 'resourceId': resource_id}
        await self._request(account_id, 'POST', '/channels/stop', json_body=body)
        self.logger.info(f"Stopped watching channel {channel_id}")
