"""
Pytest configuration and fixtures for Axis Sync tests
"""

from datetime import datetime, timedelta

import httpx
import pytest
import pytest_asyncio

from axis_sync.config.config_loader import default_config
from axis_sync.core.credentials import CredentialProvider
from axis_sync.core.database import DatabaseService
from axis_sync.core.mock_calendar import InMemoryCalendarClient
from axis_sync.core.models import AccountDB, ProjectDB, TaskDB, TaskStatus, utcnow
from axis_sync.core.sync_engine import SyncEngine

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
WEBHOOK_BASE_URL = "https://axis.example.com"


def _refused_token_endpoint(request: httpx.Request) -> httpx.Response:
    return httpx.Response(400, json={'error': 'invalid_grant'})


@pytest.fixture
def test_config():
    """Default configuration with webhooks enabled and no startup delay"""
    config = default_config()
    config['database']['url'] = TEST_DATABASE_URL
    config['google']['mode'] = 'mock'
    config['sync']['webhook_base_url'] = WEBHOOK_BASE_URL
    config['sync']['startup_delay_seconds'] = 0
    config['api']['api_key'] = 'test-key'
    return config


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database per test"""
    service = DatabaseService(TEST_DATABASE_URL)
    await service.create_tables()
    yield service
    await service.close()


@pytest_asyncio.fixture
async def credentials(db, test_config):
    provider = CredentialProvider(
        test_config, db, http_client=httpx.AsyncClient(transport=httpx.MockTransport(_refused_token_endpoint))
    )
    yield provider
    await provider._http_client.aclose()


@pytest.fixture
def calendar():
    return InMemoryCalendarClient()


@pytest.fixture
def engine(calendar, credentials, test_config, db):
    return SyncEngine(calendar, credentials, test_config, db)


async def create_account(db, email: str = "user@example.com", connected: bool = True) -> AccountDB:
    async with db.get_session() as session:
        account = AccountDB(email=email, name="Test User")
        if connected:
            account.access_token = "access-token"
            account.refresh_token = "refresh-token"
            account.token_expiry = utcnow() + timedelta(hours=1)
        session.add(account)
        await session.flush()
        return account


async def create_task(db, account_id: str, title: str, scheduled_date: datetime = None, **fields) -> TaskDB:
    async with db.get_session() as session:
        task = TaskDB(
            account_id=account_id,
            title=title,
            scheduled_date=scheduled_date,
            status=fields.pop('status', TaskStatus.TODO.value),
            **fields
        )
        session.add(task)
        await session.flush()
        return task


async def create_project(db, account_id: str, name: str, color_id: str = None) -> ProjectDB:
    async with db.get_session() as session:
        project = ProjectDB(account_id=account_id, name=name, color_id=color_id)
        session.add(project)
        await session.flush()
        return project


@pytest_asyncio.fixture
async def account(db):
    """Account holding a valid, unexpired access token"""
    return await create_account(db)


@pytest.fixture
def today():
    """Start of the current UTC day; pull tests must stay inside the sync window"""
    now = utcnow()
    return datetime(now.year, now.month, now.day)


@pytest.fixture
def make_account(db):
    async def factory(email: str = "other@example.com", connected: bool = True) -> AccountDB:
        return await create_account(db, email, connected)
    return factory


@pytest.fixture
def make_task(db):
    async def factory(account_id: str, title: str, scheduled_date: datetime = None, **fields) -> TaskDB:
        return await create_task(db, account_id, title, scheduled_date, **fields)
    return factory


@pytest.fixture
def make_project(db):
    async def factory(account_id: str, name: str, color_id: str = None) -> ProjectDB:
        return await create_project(db, account_id, name, color_id)
    return factory
