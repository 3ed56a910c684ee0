from __future__ import annotations

from typing import Any, Mapping, Optional, TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from ..core.ports.rate_limiter_port import RateLimiterPort


class HttpClient:
    def __init__(
        self,
        base_headers: Optional[Mapping[str, str]] = None,
        timeout_seconds: float = 30.0,
        rate_limiter: Optional["RateLimiterPort"] = None,
        *,
        api_key: Optional[str] = None,
        bearer_token: Optional[str] = None,
        basic_auth: Optional[tuple[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = dict(base_headers or {})
        if api_key:
            headers["apiKey"] = api_key
        if bearer_token:
            headers["Authorization"] = f"Bearer {bearer_token}"
        self._client = httpx.Client(
            timeout=timeout_seconds,
            headers=headers,
            auth=basic_auth,
            follow_redirects=True,
            max_redirects=10,
            transport=transport,
        )
        self._rate_limiter = rate_limiter

    def get(self, url: str, params: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        """Raw GET; status handling is left to the caller."""
        if self._rate_limiter:
            self._rate_limiter.acquire()
        return self._client.get(url, params=params)

    def close(self) -> None:
        self._client.close()
