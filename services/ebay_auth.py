"""
eBay OAuth application token provider.

Gets an application (client credentials) token for the Browse API and
caches it per environment. Tries the narrow buy.browse scope first and
falls back to the base api_scope when eBay rejects the scope.
"""

import asyncio
import base64
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from config import BROWSE_SCOPE, FALLBACK_SCOPE, EbaySettings
from services.exceptions import MissingCredentialsError, TokenError, TransientUpstreamError
from services.rate_limiter import RetryPolicy, retry_async
from smart_cache import TTLCache

logger = logging.getLogger(__name__)

# A cached token is only handed out while it has at least this much life left
MIN_REMAINING_SECONDS = 60
# Cache TTL is the server-reported lifetime minus this margin
EXPIRY_SAFETY_MARGIN = 60


class TokenProvider:
    """
    Obtains and caches the bearer token used by the Browse API.

    Usage:
        provider = TokenProvider(settings.ebay, http_client, token_cache)
        token = await provider.get_token()
    """

    def __init__(
        self,
        ebay: EbaySettings,
        http_client: httpx.AsyncClient,
        cache: TTLCache,
        policy: Optional[RetryPolicy] = None,
        timeout: float = 20.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.ebay = ebay
        self.http_client = http_client
        self.cache = cache
        self.policy = policy or RetryPolicy(attempts=3, base_delay=0.8, backoff="linear")
        self.timeout = timeout
        self._clock = clock
        self._sleep = sleep

    @property
    def cache_key(self) -> str:
        return f"appToken:{self.ebay.environment}"

    @property
    def token_endpoint(self) -> str:
        return f"{self.ebay.api_base}/identity/v1/oauth2/token"

    def invalidate(self) -> None:
        """Drop the cached token (e.g. after a 401 from the Browse API)"""
        if self.cache.delete(self.cache_key):
            logger.warning("[AUTH] Cached token invalidated")

    async def get_token(self) -> str:
        cached: Optional[Dict[str, Any]] = self.cache.get(self.cache_key)
        if cached and cached["expires_at"] > self._clock() + MIN_REMAINING_SECONDS:
            return cached["access_token"]

        if not self.ebay.has_credentials:
            raise MissingCredentialsError("ebay")

        try:
            return await self._fetch_with_retry(BROWSE_SCOPE)
        except TokenError as e:
            if e.error != "invalid_scope":
                raise
            logger.warning("[AUTH] buy.browse scope rejected, retrying with base scope")
            return await self._fetch_with_retry(FALLBACK_SCOPE)

    async def _fetch_with_retry(self, scope: str) -> str:
        try:
            return await retry_async(
                lambda: self._request_token(scope),
                self.policy,
                label="oauth token",
                sleep=self._sleep,
            )
        except (TransientUpstreamError, httpx.TransportError) as e:
            raise TokenError(
                message=f"Token request failed after {self.policy.attempts} attempts",
                status_code=getattr(e, "status_code", None),
                cause=e,
            )

    async def _request_token(self, scope: str) -> str:
        credentials = f"{self.ebay.client_id}:{self.ebay.client_secret}"
        encoded_credentials = base64.b64encode(credentials.encode()).decode()

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {encoded_credentials}",
        }
        data = {
            "grant_type": "client_credentials",
            "scope": scope,
        }

        response = await self.http_client.post(
            self.token_endpoint, headers=headers, data=data, timeout=self.timeout
        )

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientUpstreamError(
                service="ebay_oauth",
                message=f"Token endpoint returned {response.status_code}",
                status_code=response.status_code,
            )

        if response.status_code != 200:
            error = _oauth_error(response)
            logger.error(f"[AUTH] Token request failed: {response.status_code} - {response.text[:200]}")
            raise TokenError(
                message=f"Failed to get eBay token: {response.status_code}",
                status_code=response.status_code,
                error=error,
            )

        token_data = response.json()
        access_token = token_data.get("access_token")
        if not access_token:
            raise TokenError(message="No access_token in token response", status_code=200)

        expires_in = int(token_data.get("expires_in", 7200))
        self.cache.set(
            self.cache_key,
            {"access_token": access_token, "expires_at": self._clock() + expires_in},
            ttl_seconds=max(expires_in - EXPIRY_SAFETY_MARGIN, 1),
        )
        logger.info(f"[AUTH] Token acquired ({scope.rsplit('/', 1)[-1]}), expires in {expires_in}s")
        return access_token


def _oauth_error(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("error")
    return None
