"""
REST API client for Pushbullet.

Provides async access to the v2 endpoints used for SMS catch-up:
    - /pushes (recent activity, polled on tickles)
    - /devices (find the SMS-capable phone)
    - /permanents/<device>_threads (SMS thread snapshot)

Security Note:
    The access token travels in the Access-Token header and is never
    included in log lines or exception messages.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)


class PushbulletAPIError(Exception):
    """Base exception for Pushbullet API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(PushbulletAPIError):
    """Rate limit exceeded."""
    pass


class PushbulletRestClient:
    """
    Async REST client for the Pushbullet API.

    Features:
        - Access-Token header authentication
        - Bounded retries with exponential backoff on 5xx, timeouts and
          connection errors
        - 4xx responses fail immediately

    Usage:
        async with PushbulletRestClient(api_token) as client:
            pushes = await client.get_pushes(limit=10)
            devices = await client.get_devices()
    """

    API_BASE = "https://api.pushbullet.com/v2"

    def __init__(
        self,
        api_token: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        api_base: Optional[str] = None,
    ):
        """
        Initialize the REST client.

        Args:
            api_token: Pushbullet access token
            session: Optional aiohttp session (created if not provided)
            timeout: Request timeout in seconds
            max_retries: Number of attempts for retryable failures
            retry_delay: Base delay between retries (exponential backoff)
            api_base: Optional API base URL override
        """
        self._api_token = api_token
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max(1, max_retries)
        self._retry_delay = retry_delay
        self._api_base = (api_base or self.API_BASE).rstrip("/")

    async def __aenter__(self) -> "PushbulletRestClient":
        """Async context manager entry."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    @property
    def _headers(self) -> dict[str, str]:
        return {"Access-Token": self._api_token}

    async def _request(
        self,
        method: str,
        path: str,
        **kwargs,
    ) -> Any:
        """
        Make an HTTP request with retries.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: Path relative to the API base (e.g. "/pushes")
            **kwargs: Additional arguments for aiohttp

        Returns:
            Parsed JSON response

        Raises:
            PushbulletAPIError: On API errors
            RateLimitError: When rate limited
            asyncio.CancelledError: When task is cancelled (re-raised)
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        url = f"{self._api_base}{path}"
        last_error: Optional[PushbulletAPIError] = None

        for attempt in range(self._max_retries):
            try:
                async with self._session.request(
                    method, url, headers=self._headers, **kwargs
                ) as response:
                    if response.status == 429:
                        raise RateLimitError(
                            "Rate limit exceeded",
                            status_code=429,
                        )

                    # 4xx client errors (except 429) - don't retry
                    if 400 <= response.status < 500:
                        raise PushbulletAPIError(
                            f"API error: {response.status} {response.reason}",
                            status_code=response.status,
                        )

                    # 5xx server errors - retry
                    if response.status >= 500:
                        raise PushbulletAPIError(
                            f"Server error: {response.status} {response.reason}",
                            status_code=response.status,
                        )

                    return await response.json()

            except RateLimitError:
                # The relay's rate limit window is long; retrying won't help
                raise

            except PushbulletAPIError as e:
                if e.status_code and e.status_code >= 500:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Server error {e.status_code} on {path}, "
                        f"retry {attempt + 1}/{self._max_retries}"
                    )
                    last_error = e
                    if attempt + 1 < self._max_retries:
                        await asyncio.sleep(delay)
                else:
                    raise

            except asyncio.TimeoutError:
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(
                    f"Request timeout on {path}, retry {attempt + 1}/{self._max_retries}"
                )
                last_error = PushbulletAPIError("Request timed out")
                if attempt + 1 < self._max_retries:
                    await asyncio.sleep(delay)

            except asyncio.CancelledError:
                logger.debug("Request cancelled")
                raise

            except aiohttp.ClientError as e:
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(
                    f"Request to {path} failed: {type(e).__name__}, "
                    f"retry {attempt + 1}/{self._max_retries}"
                )
                last_error = PushbulletAPIError(f"Request failed: {type(e).__name__}")
                if attempt + 1 < self._max_retries:
                    await asyncio.sleep(delay)

        raise last_error or PushbulletAPIError("Request failed after retries")

    # =========================================================================
    # Pushes
    # =========================================================================

    async def get_pushes(self, limit: int = 10, active: bool = True) -> list[dict]:
        """
        Fetch the most recent pushes.

        Args:
            limit: Maximum number of pushes to return
            active: Only return non-deleted pushes

        Returns:
            Raw push dicts from the ``pushes`` array
        """
        params = {"limit": str(limit)}
        if active:
            params["active"] = "true"

        data = await self._request("GET", "/pushes", params=params)
        pushes = data.get("pushes") if isinstance(data, dict) else None
        return [p for p in pushes or [] if isinstance(p, dict)]

    # =========================================================================
    # Devices and SMS threads
    # =========================================================================

    async def get_devices(self) -> list[dict]:
        """Fetch the account's devices."""
        data = await self._request("GET", "/devices")
        devices = data.get("devices") if isinstance(data, dict) else None
        return [d for d in devices or [] if isinstance(d, dict)]

    async def get_sms_device_iden(self) -> Optional[str]:
        """
        Find the first active device that can mirror SMS.

        Returns:
            The device ``iden`` or None if there is no such device
        """
        for device in await self.get_devices():
            if device.get("has_sms") and device.get("active"):
                return device.get("iden")
        return None

    async def get_sms_threads(self, device_iden: str) -> list[dict]:
        """
        Fetch the SMS thread list for a device.

        Args:
            device_iden: Device identifier from get_sms_device_iden()

        Returns:
            Raw thread dicts from the ``threads`` array
        """
        data = await self._request("GET", f"/permanents/{device_iden}_threads")
        threads = data.get("threads") if isinstance(data, dict) else None
        return [t for t in threads or [] if isinstance(t, dict)]
