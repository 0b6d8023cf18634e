"""
API Dependencies for FastAPI Router Modules
Shared dependencies for authentication and access to the sync components
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import logging

from axis_sync.core.provider_registry import ProviderRegistry
from axis_sync.core.scheduler import SyncScheduler
from axis_sync.core.sync_engine import SyncEngine
from axis_sync.core.task_queue import BackgroundTaskQueue
from axis_sync.core.task_service import TaskService

# Initialize security scheme
security = HTTPBearer(auto_error=False)
logger = logging.getLogger(__name__)


class APIAuthenticator:
    """Centralized API authentication handler"""

    def __init__(self, api_key: str):
        self.api_key = api_key

    def verify_api_key(self, credentials: Optional[HTTPAuthorizationCredentials] = None) -> bool:
        """Verify API key from authorization header"""
        if not credentials:
            return False
        return credentials.credentials == self.api_key

    def raise_unauthorized(self):
        """Raise unauthorized error"""
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


# Global instances (set during app initialization)
_authenticator: Optional[APIAuthenticator] = None
_engine: Optional[SyncEngine] = None
_queue: Optional[BackgroundTaskQueue] = None
_scheduler: Optional[SyncScheduler] = None
_task_service: Optional[TaskService] = None
_registry: Optional[ProviderRegistry] = None


def init_api_dependencies(
    api_key: str,
    engine: SyncEngine = None,
    queue: BackgroundTaskQueue = None,
    scheduler: SyncScheduler = None,
    task_service: TaskService = None,
    registry: ProviderRegistry = None,
):
    """Initialize API dependencies with configuration"""
    global _authenticator, _engine, _queue, _scheduler, _task_service, _registry
    _authenticator = APIAuthenticator(api_key)
    _engine = engine
    _queue = queue
    _scheduler = scheduler
    _task_service = task_service
    _registry = registry
    logger.info("API dependencies initialized")


def _require(instance, name: str):
    if instance is None:
        logger.error(f"{name} not initialized in dependencies - please check init_api_dependencies")
        raise RuntimeError(f"{name} not available - please check initialization")
    return instance


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Depends(security)) -> bool:
    """FastAPI dependency for API key verification"""
    if not _authenticator:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API authentication not initialized"
        )

    if not _authenticator.verify_api_key(credentials):
        _authenticator.raise_unauthorized()

    return True


async def get_engine() -> SyncEngine:
    return _require(_engine, "Sync engine")


async def get_queue() -> BackgroundTaskQueue:
    return _require(_queue, "Background task queue")


async def get_scheduler() -> SyncScheduler:
    return _require(_scheduler, "Sync scheduler")


async def get_task_service() -> TaskService:
    return _require(_task_service, "Task service")


async def get_registry() -> ProviderRegistry:
    return _require(_registry, "Provider registry")
