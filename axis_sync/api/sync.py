"""
Sync API Router
Accounts, provisioning, push/pull triggers, calendars, webhooks and the cached event view
"""

import logging
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from axis_sync.api.dependencies import (
    verify_api_key, get_engine, get_queue, get_scheduler, get_task_service, get_registry
)
from axis_sync.api.exceptions import handle_api_errors
from axis_sync.core.errors import InvalidState, NotFound
from axis_sync.core.models import GOOGLE_PROVIDER, utcnow

router = APIRouter()
logger = logging.getLogger(__name__)


# Request schemas
class AccountCreateRequest(BaseModel):
    email: str
    name: Optional[str] = None


class TokenRequest(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


class CalendarTargetRequest(BaseModel):
    calendar_id: Optional[str] = None


class CalendarToggleRequest(BaseModel):
    is_synced: bool


class TaskCreateRequest(BaseModel):
    title: str
    description: Optional[str] = None
    project: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    scheduled_end_date: Optional[datetime] = None
    deadline: Optional[datetime] = None
    is_urgent: bool = False
    is_important: bool = False
    calendar_id: Optional[str] = None


class TaskUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    project: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    scheduled_time: Optional[str] = None
    scheduled_end_date: Optional[datetime] = None
    deadline: Optional[datetime] = None
    is_urgent: Optional[bool] = None
    is_important: Optional[bool] = None
    status: Optional[str] = None
    completed: Optional[bool] = None


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Accounts
@router.post("/accounts", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
@handle_api_errors
async def create_account(
    request: AccountCreateRequest,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    """Register a local account"""
    async with engine.db.get_session() as session:
        if await engine.accounts.get_by_email(session, request.email):
            raise InvalidState(f"Account {request.email} already exists")
        account = await engine.accounts.create(session, request.email, request.name)
        return account.to_dict()


@router.put("/accounts/{account_id}/tokens", response_model=Dict[str, Any])
@handle_api_errors
async def store_tokens(
    account_id: str,
    request: TokenRequest,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    """Store OAuth tokens obtained by the connect flow"""
    await engine.credentials.store_tokens(
        account_id, request.access_token, request.refresh_token, request.expires_in
    )
    return {'success': True, 'account_id': account_id}


# Provisioning and status
@router.post("/accounts/{account_id}/initialize", response_model=Dict[str, Any])
@handle_api_errors
async def initialize_sync(
    account_id: str,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    """Create or adopt the dedicated calendar and enable two-way sync"""
    account = await engine.initialize_dedicated_calendar(account_id)
    return {'success': True, 'account': account.to_dict()}


@router.get("/accounts/{account_id}/status", response_model=Dict[str, Any])
@handle_api_errors
async def sync_status(
    account_id: str,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    return await engine.get_sync_status(account_id)


@router.post("/accounts/{account_id}/disconnect", response_model=Dict[str, Any])
@handle_api_errors
async def disconnect_sync(
    account_id: str,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    """Stop channels and drop every sync link of the account; tasks are kept"""
    result = await engine.disconnect_sync(account_id)
    return {'success': True, **result}


# Calendars
@router.get("/accounts/{account_id}/calendars", response_model=List[Dict[str, Any]])
@handle_api_errors
async def list_calendars(
    account_id: str,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    """Remote calendar list of the account"""
    calendars = await engine.list_remote_calendars(account_id)
    return [
        {**asdict(calendar), 'writable': calendar.is_writable,
         'read_only': engine.is_read_only_calendar(calendar.id)}
        for calendar in calendars
    ]


@router.post("/accounts/{account_id}/calendars/refresh", response_model=List[Dict[str, Any]])
@handle_api_errors
async def refresh_calendars(
    account_id: str,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    rows = await engine.refresh_calendars(account_id)
    return [row.to_dict() for row in rows]


@router.patch("/accounts/{account_id}/calendars/{calendar_id}", response_model=Dict[str, Any])
@handle_api_errors
async def toggle_calendar(
    account_id: str,
    calendar_id: str,
    request: CalendarToggleRequest,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    """Include or exclude a connected calendar from pulls and webhooks"""
    row = await engine.toggle_calendar_sync(account_id, calendar_id, request.is_synced)
    return row.to_dict()


# Push and pull
@router.post("/accounts/{account_id}/tasks/{task_id}/push", response_model=Dict[str, Any])
@handle_api_errors
async def push_task(
    account_id: str,
    task_id: str,
    request: Optional[CalendarTargetRequest] = None,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    """Explicitly push one task; a calendar id links an unmapped task"""
    calendar_id = request.calendar_id if request else None
    task = await engine.sync_task_to_remote(account_id, task_id, calendar_id)
    return task.to_dict()


@router.post("/accounts/{account_id}/push-all", response_model=Dict[str, Any])
@handle_api_errors
async def push_all(
    account_id: str,
    request: Optional[CalendarTargetRequest] = None,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    result = await engine.sync_all_tasks_to_remote(account_id, request.calendar_id if request else None)
    return result.to_dict()


@router.post("/accounts/{account_id}/pull", response_model=Dict[str, Any])
@handle_api_errors
async def pull(
    account_id: str,
    request: Optional[CalendarTargetRequest] = None,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    """Import remote events into tasks and reconcile deletions"""
    result = await engine.sync_remote_events_to_tasks(account_id, request.calendar_id if request else None)
    return result.to_dict()


# Webhooks
@router.post("/accounts/{account_id}/webhook/enable", response_model=Dict[str, Any])
@handle_api_errors
async def enable_webhook(
    account_id: str,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    return await engine.enable_webhook(account_id)


@router.post("/accounts/{account_id}/webhook/disable", response_model=Dict[str, Any])
@handle_api_errors
async def disable_webhook(
    account_id: str,
    authenticated: bool = Depends(verify_api_key),
    engine=Depends(get_engine)
):
    return await engine.disable_webhook(account_id)


@router.post("/webhooks/refresh", response_model=Dict[str, Any])
@handle_api_errors
async def refresh_webhooks(
    authenticated: bool = Depends(verify_api_key),
    scheduler=Depends(get_scheduler)
):
    """Renew every channel close to expiry"""
    return await scheduler.run_webhook_refresh()


@router.post("/webhooks/bootstrap", response_model=Dict[str, Any])
@handle_api_errors
async def bootstrap_webhooks(
    authenticated: bool = Depends(verify_api_key),
    scheduler=Depends(get_scheduler)
):
    """Open channels for every sync-enabled account that has none"""
    return await scheduler.run_bootstrap()


# Cached events
@router.get("/accounts/{account_id}/events", response_model=List[Dict[str, Any]])
@handle_api_errors
async def cached_events(
    account_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    calendar_id: Optional[str] = None,
    authenticated: bool = Depends(verify_api_key),
    registry=Depends(get_registry)
):
    """Events from the local cache; an empty cache is filled from Google first"""
    provider = registry.get(GOOGLE_PROVIDER)
    if provider is None:
        raise NotFound("Google provider is not registered")

    start = _naive_utc(start) or utcnow() - timedelta(days=7)
    end = _naive_utc(end) or start + timedelta(days=30)
    if end < start:
        raise ValueError("end must not be before start")

    events = await provider.get_events(account_id, start, end, calendar_id)
    return [asdict(event) for event in events]


# Local tasks
@router.get("/accounts/{account_id}/tasks", response_model=List[Dict[str, Any]])
@handle_api_errors
async def list_tasks(
    account_id: str,
    authenticated: bool = Depends(verify_api_key),
    tasks=Depends(get_task_service)
):
    return [task.to_dict() for task in await tasks.list_tasks(account_id)]


@router.post("/accounts/{account_id}/tasks", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
@handle_api_errors
async def create_task(
    account_id: str,
    request: TaskCreateRequest,
    authenticated: bool = Depends(verify_api_key),
    tasks=Depends(get_task_service)
):
    """Create a task; a calendar id schedules its first push"""
    data = request.model_dump(exclude={'calendar_id'})
    for key in ('scheduled_date', 'scheduled_end_date', 'deadline'):
        data[key] = _naive_utc(data[key])
    task = await tasks.create_task(account_id, data, request.calendar_id)
    return task.to_dict()


@router.patch("/accounts/{account_id}/tasks/{task_id}", response_model=Dict[str, Any])
@handle_api_errors
async def update_task(
    account_id: str,
    task_id: str,
    request: TaskUpdateRequest,
    authenticated: bool = Depends(verify_api_key),
    tasks=Depends(get_task_service)
):
    changes = request.model_dump(exclude_unset=True)
    for key in ('scheduled_date', 'scheduled_end_date', 'deadline'):
        if key in changes:
            changes[key] = _naive_utc(changes[key])
    task = await tasks.update_task(account_id, task_id, changes)
    return task.to_dict()


@router.delete("/accounts/{account_id}/tasks/{task_id}", response_model=Dict[str, Any])
@handle_api_errors
async def delete_task(
    account_id: str,
    task_id: str,
    authenticated: bool = Depends(verify_api_key),
    tasks=Depends(get_task_service)
):
    await tasks.delete_task(account_id, task_id)
    return {'success': True, 'task_id': task_id}


# Health of the background machinery
@router.get("/jobs", response_model=Dict[str, Any])
@handle_api_errors
async def job_status(
    authenticated: bool = Depends(verify_api_key),
    queue=Depends(get_queue),
    scheduler=Depends(get_scheduler)
):
    return {'queue': queue.get_status(), 'scheduler': scheduler.get_status()}
