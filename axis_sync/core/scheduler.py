"""
Sync Scheduler for Axis Sync
Deferred webhook bootstrap, periodic channel renewal and the safety-net pull
"""

import asyncio
import logging
from typing import Dict, Any, List, Optional

from axis_sync.core.models import utcnow


class SyncScheduler:
    """Runs the recurring sync jobs of one SyncEngine"""

    def __init__(self, engine, config: Dict[str, Any] = None):
        self.engine = engine
        self.config = config or {}
        self.logger = logging.getLogger(__name__)
        self.is_running = False

        settings = engine.settings
        self.startup_delay = settings.startup_delay_seconds
        self.refresh_interval = settings.webhook_refresh_hours * 3600
        self.pull_interval = settings.periodic_pull_minutes * 60

        self._tasks: List[asyncio.Task] = []
        self.last_bootstrap: Optional[Dict[str, Any]] = None
        self.last_refresh: Optional[Dict[str, Any]] = None
        self.last_pull: Optional[Dict[str, Any]] = None

    async def start(self):
        """Start the scheduler"""
        if self.is_running:
            return

        self.logger.info("Starting Sync Scheduler...")
        self.is_running = True

        self._tasks = [
            asyncio.create_task(self._deferred_bootstrap(self.startup_delay)),
            asyncio.create_task(self._periodic_webhook_refresh(self.refresh_interval)),
            asyncio.create_task(self._periodic_pull(self.pull_interval)),
        ]
        self.logger.info(
            f"Sync Scheduler started (webhook refresh every {self.refresh_interval}s, "
            f"pull every {self.pull_interval}s)"
        )

    async def stop(self):
        """Stop the scheduler"""
        if not self.is_running:
            return

        self.logger.info("Stopping Sync Scheduler...")
        self.is_running = False

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        self.logger.info("Sync Scheduler stopped")

    async def run_bootstrap(self) -> Dict[str, Any]:
        """Give sync-enabled accounts without an active channel a fresh one"""
        result = await self.engine.enable_webhooks_for_all_accounts()
        self.last_bootstrap = {'at': utcnow().isoformat(), **result}
        return result

    async def run_webhook_refresh(self) -> Dict[str, Any]:
        result = await self.engine.refresh_expiring_webhooks()
        self.last_refresh = {'at': utcnow().isoformat(), **result}
        return result

    async def run_pull(self) -> Dict[str, Any]:
        result = await self.engine.pull_all_accounts()
        self.last_pull = {'at': utcnow().isoformat(), **result}
        return result

    async def _deferred_bootstrap(self, delay: float):
        """Webhook bootstrap once the application has finished starting"""
        await asyncio.sleep(delay)
        try:
            await self.run_bootstrap()
        except Exception as e:
            self.logger.error(f"Error in webhook bootstrap: {e}")

    async def _periodic_webhook_refresh(self, interval: float):
        """Periodic renewal of expiring channels"""
        while self.is_running:
            await asyncio.sleep(interval)
            try:
                await self.run_webhook_refresh()
            except Exception as e:
                self.logger.error(f"Error in webhook refresh: {e}")

    async def _periodic_pull(self, interval: float):
        """Periodic pull covering missed or dropped notifications"""
        while self.is_running:
            await asyncio.sleep(interval)
            try:
                await self.run_pull()
            except Exception as e:
                self.logger.error(f"Error in periodic pull: {e}")

    def get_status(self) -> Dict[str, Any]:
        return {
            'is_running': self.is_running,
            'startup_delay_seconds': self.startup_delay,
            'webhook_refresh_interval_seconds': self.refresh_interval,
            'pull_interval_seconds': self.pull_interval,
            'last_bootstrap': self.last_bootstrap,
            'last_webhook_refresh': self.last_refresh,
            'last_pull': self.last_pull,
        }
