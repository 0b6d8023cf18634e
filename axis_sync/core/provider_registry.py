"""
Provider registry
Calendar providers keyed by provider id
"""

import logging
from typing import Dict, List, Optional

from axis_sync.core.source_adapter import CalendarProvider


class ProviderRegistry:
    """Registry of CalendarProvider implementations"""

    def __init__(self):
        self._providers: Dict[str, CalendarProvider] = {}
        self.logger = logging.getLogger(__name__)

    def register(self, provider: CalendarProvider):
        if not provider.provider_id:
            raise ValueError("Provider must define provider_id")
        self._providers[provider.provider_id] = provider
        self.logger.info(f"Registered calendar provider: {provider.provider_id}")

    def get(self, provider_id: str) -> Optional[CalendarProvider]:
        return self._providers.get(provider_id)

    def get_all(self) -> List[CalendarProvider]:
        return list(self._providers.values())

    def has(self, provider_id: str) -> bool:
        return provider_id in self._providers

    async def get_connected_providers(self, account_id: str) -> List[CalendarProvider]:
        """Providers the account currently holds valid credentials for"""
        connected = []
        for provider in self._providers.values():
            try:
                if await provider.is_connected(account_id):
                    connected.append(provider)
            except Exception as e:
                self.logger.warning(f"Connection check failed for provider {provider.provider_id}: {e}")
        return connected
