"""
Credential Provider for Axis Sync
Supplies a currently-valid Google access token per account, refreshing it from the stored refresh token
"""

import logging
from datetime import timedelta
from typing import Dict, Any, Optional

import httpx
from cryptography.fernet import Fernet, InvalidToken

from axis_sync.core.database import DatabaseService, db_service
from axis_sync.core.errors import AuthRequired, AuthExpired, RemoteError, NotFound
from axis_sync.core.models import AccountDB, utcnow

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
REFRESH_BUFFER = timedelta(minutes=5)
DEFAULT_EXPIRES_IN = 3600


class TokenCipher:
    """Fernet encryption for tokens at rest; passthrough when no key is configured"""

    def __init__(self, key: Optional[str] = None):
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key) if key else None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None or not self._fernet:
            return value
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None or not self._fernet:
            return value
        try:
            return self._fernet.decrypt(value.encode()).decode()
        except InvalidToken:
            raise AuthRequired("Stored credential cannot be decrypted. Please reconnect Google Calendar.")


class CredentialProvider:
    """Owns the credential material stored on AccountDB"""

    def __init__(
        self,
        config: Dict[str, Any] = None,
        db: DatabaseService = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        config = config or {}
        google_config = config.get('google', {})
        self.client_id = google_config.get('client_id', '')
        self.client_secret = google_config.get('client_secret', '')
        self.token_url = google_config.get('token_url', GOOGLE_OAUTH_TOKEN_URL)
        self.cipher = TokenCipher(config.get('security', {}).get('token_encryption_key') or None)
        self.db = db or db_service
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=google_config.get('timeout_seconds', 30)
        )
        self.logger = logging.getLogger(__name__)

    async def close(self):
        if self._owns_client:
            await self._http_client.aclose()

    async def store_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[int] = None,
    ):
        """Persist tokens obtained from an OAuth exchange or a refresh"""
        async with self.db.get_session() as session:
            account = await session.get(AccountDB, account_id)
            if account is None:
                raise NotFound(f"Account {account_id} not found")
            account.access_token = self.cipher.encrypt(access_token)
            if refresh_token:
                account.refresh_token = self.cipher.encrypt(refresh_token)
            account.token_expiry = utcnow() + timedelta(seconds=expires_in or DEFAULT_EXPIRES_IN)

    async def clear_tokens(self, account_id: str):
        """Forget every credential so the account must re-authenticate"""
        async with self.db.get_session() as session:
            account = await session.get(AccountDB, account_id)
            if account is not None:
                account.access_token = None
                account.refresh_token = None
                account.token_expiry = None
        self.logger.warning(f"Cleared Google credentials for account {account_id}")

    async def has_valid_auth(self, account_id: str) -> bool:
        """True when a usable token exists or can be obtained by refreshing"""
        try:
            await self.get_valid_access_token(account_id)
            return True
        except (AuthRequired, AuthExpired, NotFound):
            return False
        except RemoteError as e:
            self.logger.warning(f"Could not verify credentials for account {account_id}: {e}")
            return False

    async def get_valid_access_token(self, account_id: str, force_refresh: bool = False) -> str:
        """Return an access token valid for at least the refresh buffer"""
        async with self.db.get_session() as session:
            account = await session.get(AccountDB, account_id)
            if account is None:
                raise NotFound(f"Account {account_id} not found")
            access_token = self.cipher.decrypt(account.access_token)
            refresh_token = self.cipher.decrypt(account.refresh_token)
            token_expiry = account.token_expiry

        if not access_token and not refresh_token:
            raise AuthRequired("Google Calendar not connected")

        needs_refresh = force_refresh or not access_token or (
            token_expiry is not None and token_expiry - REFRESH_BUFFER < utcnow()
        )
        if not needs_refresh:
            return access_token

        return await self._refresh(account_id, refresh_token)

    async def refresh_access_token(self, account_id: str) -> str:
        async with self.db.get_session() as session:
            account = await session.get(AccountDB, account_id)
            if account is None:
                raise NotFound(f"Account {account_id} not found")
            refresh_token = self.cipher.decrypt(account.refresh_token)
        return await self._refresh(account_id, refresh_token)

    async def _refresh(self, account_id: str, refresh_token: Optional[str]) -> str:
        if not refresh_token:
            await self.clear_tokens(account_id)
            raise AuthExpired("No refresh token available. Please reconnect Google Calendar.")

        try:
            response = await self._http_client.post(
                self.token_url,
                data={
                    'client_id': self.client_id,
                    'client_secret': self.client_secret,
                    'refresh_token': refresh_token,
                    'grant_type': 'refresh_token',
                },
                headers={'Accept': 'application/json'},
            )
        except httpx.HTTPError as exc:
            raise RemoteError(f"Google OAuth token refresh request failed: {exc}") from exc

        if response.status_code >= 500:
            raise RemoteError(
                f"Google OAuth token endpoint unavailable (status {response.status_code})", response.status_code
            )

        if response.status_code < 200 or response.status_code >= 300:
            self.logger.error(
                f"Token refresh rejected for account {account_id} (status {response.status_code})"
            )
            await self.clear_tokens(account_id)
            raise AuthExpired("Google authentication expired. Please reconnect.", response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteError("Google OAuth token endpoint returned invalid JSON") from exc

        access_token = payload.get('access_token') if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            await self.clear_tokens(account_id)
            raise AuthExpired("Google OAuth token response is missing an access_token")

        expires_in = payload.get('expires_in')
        if not isinstance(expires_in, int) or expires_in <= 0:
            expires_in = DEFAULT_EXPIRES_IN

        await self.store_tokens(
            account_id,
            access_token.strip(),
            refresh_token=payload.get('refresh_token'),
            expires_in=expires_in,
        )
        self.logger.info(f"Refreshed Google access token for account {account_id}")
        return access_token.strip()
