"""
Main entry point for Axis Sync
Wires the sync components, starts the background machinery and serves the API
"""

import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, Any

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from axis_sync import __version__
from axis_sync.config.config_loader import load_config
from axis_sync.core.calendar_client import GoogleCalendarClient
from axis_sync.core.credentials import CredentialProvider
from axis_sync.core.database import DatabaseService, db_service
from axis_sync.core.google_adapter import GoogleCalendarProvider
from axis_sync.core.logging_manager import setup_logging
from axis_sync.core.mock_calendar import InMemoryCalendarClient
from axis_sync.core.models import utcnow
from axis_sync.core.provider_registry import ProviderRegistry
from axis_sync.core.scheduler import SyncScheduler
from axis_sync.core.sync_engine import SyncEngine
from axis_sync.core.task_queue import BackgroundTaskQueue
from axis_sync.core.task_service import TaskService
from axis_sync.api import sync, webhook
from axis_sync.api.dependencies import init_api_dependencies

logger = logging.getLogger(__name__)


@dataclass
class SyncComponents:
    """Everything the API, the scheduler and the CLI share"""
    db: DatabaseService
    credentials: CredentialProvider
    client: Any
    engine: SyncEngine
    queue: BackgroundTaskQueue

    async def close(self):
        await self.client.close()
        await self.credentials.close()


def build_components(config: Dict[str, Any], db: DatabaseService = None) -> SyncComponents:
    """Create the credential provider, calendar client, engine and queue from configuration"""
    if db is None:
        db = db_service
        database_url = config.get('database', {}).get('url')
        if database_url and database_url != db.database_url:
            db.configure(database_url)

    google_config = config.get('google', {})
    credentials = CredentialProvider(config, db)

    if google_config.get('mode') == 'mock':
        logger.warning("Google mode 'mock': using the in-memory calendar client")
        client = InMemoryCalendarClient()
    else:
        client = GoogleCalendarClient(
            credentials,
            base_url=google_config.get('api_base_url', 'https://www.googleapis.com/calendar/v3'),
            timeout=google_config.get('timeout_seconds', 30),
        )

    engine = SyncEngine(client, credentials, config, db)
    queue = BackgroundTaskQueue(config.get('task_queue', {}).get('workers', 2))
    return SyncComponents(db=db, credentials=credentials, client=client, engine=engine, queue=queue)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan context manager for startup and shutdown"""
    axis_app = app.state.axis_app

    logger.info(f"Starting Axis Sync v{__version__}...")
    await axis_app.startup()

    yield

    logger.info("Shutting down Axis Sync...")
    await axis_app.shutdown()


class AxisApp:
    """Axis Sync application"""

    def __init__(self, config: Dict[str, Any], components: SyncComponents = None):
        self.config = config
        self.components = components or build_components(config)
        self.engine = self.components.engine
        self.queue = self.components.queue
        self.scheduler = SyncScheduler(self.engine, config)
        self.task_service = TaskService(self.engine, self.queue, self.components.db)

        self.registry = ProviderRegistry()
        self.registry.register(GoogleCalendarProvider(self.engine, config.get('google', {})))

        self.app = FastAPI(
            title="Axis Sync",
            description="Two-way synchronization between tasks and Google Calendar",
            version=__version__,
            lifespan=lifespan
        )
        self.app.state.axis_app = self

        # Configure CORS
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=config.get('api', {}).get('cors_origins', ["*"]),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"]
        )

        # Initialize API dependencies
        api_key = config.get('api', {}).get('api_key', 'development-key')
        init_api_dependencies(
            api_key,
            engine=self.engine,
            queue=self.queue,
            scheduler=self.scheduler,
            task_service=self.task_service,
            registry=self.registry,
        )

        self.app.include_router(sync.router, prefix="/api/v1/sync", tags=["Synchronization"])
        self.app.include_router(webhook.router, tags=["Webhooks"])

        @self.app.get("/health")
        async def health_check():
            """Health check with database and background job status"""
            database_ok = await self.components.db.health_check()
            health_status = {
                "status": "healthy" if database_ok else "degraded",
                "version": __version__,
                "timestamp": utcnow().isoformat(),
                "database": {"status": "connected" if database_ok else "error"},
                "queue": self.queue.get_status(),
                "scheduler": self.scheduler.get_status(),
            }
            if not database_ok:
                raise HTTPException(status_code=503, detail="Service degraded")
            return health_status

    async def startup(self):
        """Application startup"""
        await self.components.db.create_tables()
        logger.info("Database initialized")

        await self.queue.start()
        await self.scheduler.start()
        logger.info("Axis Sync started successfully")

    async def shutdown(self):
        """Application shutdown"""
        await self.scheduler.stop()
        await self.queue.stop()
        await self.components.close()
        await self.components.db.close()
        logger.info("Axis Sync shutdown complete")


def create_app(config: Dict[str, Any] = None, components: SyncComponents = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    if config is None:
        config = load_config()
    return AxisApp(config, components).app


def main():
    """Main entry point"""
    try:
        config = load_config()
        setup_logging(config)

        app = create_app(config)

        api_config = config.get('api', {})
        host = api_config.get('host', '0.0.0.0')
        port = int(api_config.get('port', 8080))

        logger.info(f"Starting Axis Sync on {host}:{port}")
        uvicorn.run(app, host=host, port=port, log_level="info", access_log=True)

    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    except Exception as e:
        logger.error(f"Failed to start Axis Sync: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
