"""
Client for the hosted identity provider that validates bearer credentials
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from pricewatch.core.config import settings as default_settings

logger = logging.getLogger(__name__)


class IdentityProviderError(Exception):
    """The identity provider could not be reached or answered unexpectedly."""


class IdentityClient:
    """Resolves an access token to the user it belongs to"""

    def __init__(self, settings=default_settings):
        self.base_url = settings.IDENTITY_PROVIDER_URL.rstrip("/")
        self.api_key = settings.IDENTITY_PROVIDER_API_KEY
        self.timeout = aiohttp.ClientTimeout(total=max(settings.IDENTITY_PROVIDER_TIMEOUT_SECONDS, 1))
        self._session: Optional[aiohttp.ClientSession] = None

    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get_user(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Look up the user for an access token

        Returns:
            The user record, or None when the provider rejects the token

        Raises:
            IdentityProviderError: provider unreachable or answered 5xx
        """
        if not token:
            return None

        session = await self._get_session()
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        try:
            async with session.get(f"{self.base_url}/auth/v1/user", headers=headers, timeout=self.timeout) as response:
                if response.status in (401, 403):
                    return None
                if response.status >= 400:
                    body = await response.text()
                    if response.status >= 500:
                        raise IdentityProviderError(f"Identity provider HTTP {response.status}: {body[:200]}")
                    logger.info(f"Identity provider rejected token with HTTP {response.status}")
                    return None
                user = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise IdentityProviderError(f"Identity provider unreachable: {e}") from e

        if not isinstance(user, dict) or not user.get("id"):
            return None
        return user

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session
