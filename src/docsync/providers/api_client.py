"""
Authenticated HTTP plumbing shared by provider adapters.

Every request waits on the connector's rate limiter, absorbs 429
responses by recording a backoff and retrying, and maps provider status
codes to the engine's error taxonomy.
"""

import logging
from typing import Any

import httpx

from docsync.logic.cancellation import CancellationToken
from docsync.logic.exceptions import (
    AuthInvalidError,
    ContentFetchError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    ResumeTokenExpiredError,
)
from docsync.logic.rate_limiter import RateLimiter

logger = logging.getLogger("docsync.api_client")


def parse_retry_after(response: httpx.Response) -> int | None:
    """
    Read the Retry-After header in seconds.

    Args:
        response: Throttled response.

    Returns:
        Seconds to wait, or None if missing or not an integer.
    """
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ApiClient:
    """
    Rate-limited, bearer-authenticated HTTP client for one connector.

    Owns the underlying httpx client unless one is injected.
    """

    def __init__(
        self,
        provider: str,
        rate_limiter: RateLimiter,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
        max_rate_limit_retries: int = 3,
    ) -> None:
        """
        Initialize API client.

        Args:
            provider: Connector type used in error messages.
            rate_limiter: The connector's rate limiter.
            http_client: Optional HTTP client (for testing).
            timeout: Request timeout in seconds for an owned client.
            max_rate_limit_retries: Retries after a 429 before giving up.
        """
        self._provider = provider
        self._rate_limiter = rate_limiter
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._max_retries = max_rate_limit_retries
        self._closed = False

    @property
    def provider(self) -> str:
        return self._provider

    def _headers(
        self, access_token: str, extra: dict[str, str] | None
    ) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _status_error(self, response: httpx.Response) -> ProviderError:
        status = response.status_code
        if status == 401:
            return AuthInvalidError(self._provider)
        if status == 410:
            return ResumeTokenExpiredError(self._provider)
        return ProviderError(
            self._provider,
            f"API error {status}: {str(response.text)[:200]}",
            status,
        )

    def _throttled(self, response: httpx.Response, attempt: int) -> None:
        retry_after = parse_retry_after(response)
        self._rate_limiter.record_throttled(retry_after)
        logger.warning(
            f"⚠️ [{self._provider}] Rate limited, backing off "
            f"{retry_after or 'default'}s (attempt {attempt + 1})"
        )
        if attempt >= self._max_retries:
            raise RateLimitError(self._provider, retry_after)

    async def request(
        self,
        method: str,
        url: str,
        access_token: str,
        cancel_token: CancellationToken,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Make an authenticated request with rate limit handling.

        Args:
            method: HTTP method.
            url: Full API URL.
            access_token: Bearer token.
            cancel_token: Caller's cancellation token.
            params: Query parameters.
            json: JSON body.
            headers: Extra headers.

        Returns:
            Successful (2xx) response.

        Raises:
            AuthInvalidError: On 401.
            ResumeTokenExpiredError: On 410.
            RateLimitError: If rate limit retries are exhausted.
            ProviderUnavailableError: On transport failure.
            ProviderError: On any other non-2xx status.
            SyncCancelledError: If the token fires.
        """
        for attempt in range(self._max_retries + 1):
            await self._rate_limiter.wait(cancel_token)

            try:
                response = await cancel_token.run(
                    self._client.request(
                        method,
                        url,
                        params=params,
                        json=json,
                        headers=self._headers(access_token, headers),
                    )
                )
            except httpx.TransportError as e:
                raise ProviderUnavailableError(self._provider, str(e)) from e

            if response.status_code == 429:
                self._throttled(response, attempt)
                continue

            if 200 <= response.status_code < 300:
                return response

            raise self._status_error(response)

        raise RateLimitError(self._provider)

    async def get_json(
        self,
        url: str,
        access_token: str,
        cancel_token: CancellationToken,
        *,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """
        Make a request and decode a JSON object response.

        Raises:
            ProviderError: If the body is not a JSON object, plus
                everything request() raises.
        """
        response = await self.request(
            method,
            url,
            access_token,
            cancel_token,
            params=params,
            json=json,
            headers=headers,
        )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(self._provider, f"Invalid JSON from {url}: {e}") from e
        if not isinstance(data, dict):
            raise ProviderError(self._provider, f"Unexpected response shape from {url}")
        return data

    async def download(
        self,
        url: str,
        access_token: str,
        cancel_token: CancellationToken,
        max_bytes: int,
        *,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        item_id: str | None = None,
        follow_redirects: bool = False,
    ) -> bytes:
        """
        Stream a response body, reading at most max_bytes.

        Args:
            url: Content URL.
            access_token: Bearer token.
            cancel_token: Caller's cancellation token.
            max_bytes: Content size ceiling.
            method: HTTP method.
            params: Query parameters.
            headers: Extra headers.
            item_id: Item named in errors (defaults to the URL).
            follow_redirects: Follow redirects to a download location.

        Returns:
            Body bytes, truncated to max_bytes.

        Raises:
            AuthInvalidError: On 401.
            ResumeTokenExpiredError: On 410.
            RateLimitError: On 429.
            ContentFetchError: On any other non-2xx status.
        """
        await self._rate_limiter.wait(cancel_token)

        async def _read() -> bytes:
            async with self._client.stream(
                method,
                url,
                params=params,
                headers=self._headers(access_token, headers),
                follow_redirects=follow_redirects,
            ) as response:
                if response.status_code == 429:
                    self._throttled(response, self._max_retries)
                if not 200 <= response.status_code < 300:
                    await response.aread()
                    if response.status_code in (401, 410):
                        raise self._status_error(response)
                    raise ContentFetchError(
                        self._provider,
                        item_id or url,
                        f"HTTP {response.status_code}: {str(response.text)[:200]}",
                        response.status_code,
                    )

                chunks: list[bytes] = []
                total = 0
                async for chunk in response.aiter_bytes():
                    remaining = max_bytes - total
                    chunks.append(chunk[:remaining])
                    total += min(len(chunk), remaining)
                    if total >= max_bytes:
                        break
                return b"".join(chunks)

        try:
            return await cancel_token.run(_read())
        except httpx.TransportError as e:
            raise ProviderUnavailableError(self._provider, str(e)) from e

    async def aclose(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client and not self._closed:
            self._closed = True
            await self._client.aclose()
