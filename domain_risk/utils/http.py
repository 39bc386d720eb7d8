from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

from .network import NetworkLedger
from .rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)


class ResponseTooLargeError(RuntimeError):
    pass


# Failures an adapter records as a diagnostic rather than raising.
FETCH_ERRORS = (httpx.HTTPError, ResponseTooLargeError, ValueError)


def describe_error(exc: BaseException) -> str:
    """Render a fetch failure without the query string, which may carry an API key."""
    if isinstance(exc, httpx.HTTPStatusError):
        url = exc.request.url.copy_with(query=None)
        return f"status {exc.response.status_code} from {url}"
    return str(exc) or type(exc).__name__


class HttpClient:
    def __init__(
        self,
        timeout_seconds: float = 10.0,
        retries: int = 0,
        rate_limiter: Optional[AsyncRateLimiter] = None,
        ledger: NetworkLedger | None = None,
        max_bytes_per_response: int = 8 * 1024 * 1024,
        verify: bool = True,
        follow_redirects: bool = False,
    ) -> None:
        self.timeout = httpx.Timeout(timeout_seconds)
        self.retries = retries
        self.rate_limiter = rate_limiter
        self.ledger = ledger
        self.max_bytes_per_response = max_bytes_per_response
        self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=follow_redirects, verify=verify)

    async def close(self) -> None:
        await self._client.aclose()

    async def get(
        self,
        url: str,
        headers: Optional[dict] = None,
        params: Optional[dict] = None,
        rate_limiter: Optional[AsyncRateLimiter] = None,
    ) -> httpx.Response:
        return await self.request("GET", url, headers=headers, params=params, rate_limiter=rate_limiter)

    async def post(
        self,
        url: str,
        json: Optional[dict] = None,
        headers: Optional[dict] = None,
        rate_limiter: Optional[AsyncRateLimiter] = None,
    ) -> httpx.Response:
        return await self.request("POST", url, json=json, headers=headers, rate_limiter=rate_limiter)

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[dict] = None,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        rate_limiter: Optional[AsyncRateLimiter] = None,
    ) -> httpx.Response:
        method = method.upper()
        limiter = rate_limiter or self.rate_limiter

        last_exc: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            if limiter:
                await limiter.wait()

            start = time.monotonic()
            try:
                async with self._client.stream(method, url, headers=headers, params=params, json=json) as resp:
                    content = bytearray()
                    async for chunk in resp.aiter_bytes():
                        content.extend(chunk)
                        if len(content) > self.max_bytes_per_response:
                            raise ResponseTooLargeError(f"response from {url} exceeded {self.max_bytes_per_response} bytes")
                    response = httpx.Response(
                        status_code=resp.status_code,
                        headers=resp.headers,
                        content=bytes(content),
                        request=resp.request,
                    )
                    if self.ledger:
                        self.ledger.add(
                            type="http",
                            destination_host=resp.request.url.host or "",
                            url=str(resp.request.url.copy_with(query=None)),
                            method=method,
                            status=resp.status_code,
                            bytes_in=len(content),
                            duration_ms=int((time.monotonic() - start) * 1000),
                            success=resp.status_code < 400,
                        )
                    return response
            except ResponseTooLargeError:
                raise
            except httpx.HTTPError as exc:
                last_exc = exc
                if self.ledger:
                    self.ledger.add(
                        type="http",
                        destination_host=httpx.URL(url).host or "",
                        url=url.split("?", 1)[0],
                        method=method,
                        status=None,
                        error=str(exc),
                        duration_ms=int((time.monotonic() - start) * 1000),
                        success=False,
                    )
                logger.debug("http error", extra={"url": url.split("?", 1)[0], "error": str(exc), "attempt": attempt})
                if attempt < self.retries:
                    await asyncio.sleep(0.2 * (attempt + 1))
        if last_exc:
            raise last_exc
        raise RuntimeError("http request failed")
