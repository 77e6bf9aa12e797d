"""
Proxy handler for outbound upstream requests.
"""

import json
import logging
import time
from typing import Optional

import httpx

from ..errors import UpstreamTransportFailed
from .models import OutboundRequest, UpstreamResult

logger = logging.getLogger(__name__)

# Statuses whose responses carry no body
NO_BODY_STATUSES = {204, 205, 304}


class ProxyHandler:
    """Issues exactly one upstream call per request. No retries."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def start(self):
        """Start the proxy handler."""
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
            follow_redirects=False,
            transport=self._transport,
        )
        logger.info("Proxy handler started")

    async def stop(self):
        """Stop the proxy handler."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.info("Proxy handler stopped")

    async def send(self, request: OutboundRequest) -> UpstreamResult:
        if not self._http_client:
            raise RuntimeError("HTTP client not initialized")

        start_time = time.perf_counter()
        try:
            response = await self._http_client.request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                content=request.content,
            )
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            # ValueError covers UnicodeEncodeError from non-ASCII header values
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("Upstream transport error: %s", type(e).__name__)
            raise UpstreamTransportFailed(
                f"{type(e).__name__}: upstream request failed",
                duration_ms=duration_ms,
            ) from e

        duration_ms = (time.perf_counter() - start_time) * 1000
        headers = dict(response.headers)

        data = None
        if response.content and response.status_code not in NO_BODY_STATUSES:
            try:
                data = response.json()
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise UpstreamTransportFailed(
                    "Upstream response body is not valid JSON",
                    upstream_status=response.status_code,
                    upstream_headers=headers,
                    duration_ms=duration_ms,
                ) from e

        return UpstreamResult(
            status_code=response.status_code,
            headers=headers,
            data=data,
            duration_ms=duration_ms,
        )
