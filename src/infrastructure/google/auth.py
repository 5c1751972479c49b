"""
OAuth access tokens for Google REST APIs.

Video Intelligence is called over REST (so we can poll operations by name),
which needs a bearer token. google-auth handles service account keys and
application default credentials; refreshing is blocking, so it runs in a
worker thread.
"""

import asyncio
import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class TokenProvider(Protocol):
    async def get_token(self) -> str:
        ...


class GoogleAccessTokenProvider:
    """Caches credentials and refreshes the token when it expires."""

    def __init__(self, keyfile: Optional[str] = None) -> None:
        import google.auth
        from google.auth.transport.requests import Request
        from google.oauth2 import service_account

        if keyfile:
            self._credentials = service_account.Credentials.from_service_account_file(
                keyfile,
                scopes=[CLOUD_PLATFORM_SCOPE],
            )
        else:
            self._credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])

        self._request_factory = Request
        logger.info("Initialized Google access token provider", extra={"keyfile": keyfile})

    async def get_token(self) -> str:
        if not self._credentials.valid:
            await asyncio.to_thread(self._credentials.refresh, self._request_factory())
        return self._credentials.token


class StaticTokenProvider:
    """Fixed token, for mock mode and tests."""

    def __init__(self, token: str = "mock-token") -> None:
        self._token = token

    async def get_token(self) -> str:
        return self._token
