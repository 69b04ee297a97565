"""Forwarding of live-data paths to the renderer's own web server."""

from __future__ import annotations

from typing import Optional

import httpx
import structlog

from .. import __version__
from ..common.metrics import GLOBAL_REGISTRY, Counter
from .errors import UpstreamUnavailable
from .paths import ClassifiedPath
from .responses import ResponseOutcome, cors_headers, iter_bytes

LOGGER = structlog.get_logger("tilegate.edge.live")

USER_AGENT = f"tilegate-live/{__version__}"
RELAYED_HEADERS = ("content-type", "etag", "last-modified")

LIVE_FAILURES_COUNTER = GLOBAL_REGISTRY.register(
    Counter("tilegate_live_proxy_failures_total", "Live origin requests that failed at the transport level")
)


class LiveProxy:
    """Relays one request to ``origin`` and rewrites caching for fast-changing data.

    The client (and its connection pool and timeout) belongs to the caller.
    Exactly one attempt is made per request.
    """

    def __init__(self, origin: str, client: httpx.AsyncClient, cache_seconds: int = 5) -> None:
        self._origin = origin.rstrip("/")
        self._client = client
        self._cache_seconds = cache_seconds

    @property
    def origin(self) -> str:
        return self._origin

    def target_url(self, classified: ClassifiedPath) -> str:
        return f"{self._origin}/{classified.normalized_key}"

    async def forward(
        self,
        method: str,
        classified: ClassifiedPath,
        accept: Optional[str] = None,
    ) -> ResponseOutcome:
        accept = accept or "*/*"
        url = self.target_url(classified)
        try:
            upstream = await self._client.request(
                method,
                url,
                headers={"Accept": accept, "User-Agent": USER_AGENT},
            )
        except httpx.HTTPError as exc:
            LIVE_FAILURES_COUNTER.inc()
            LOGGER.warning("live_proxy_failed", url=url, error=exc.__class__.__name__)
            raise UpstreamUnavailable(f"live origin unreachable: {exc.__class__.__name__}") from exc

        headers = cors_headers()
        for name in RELAYED_HEADERS:
            value = upstream.headers.get(name)
            if value is not None:
                headers[name.title()] = value
        headers["Cache-Control"] = f"public, max-age={self._cache_seconds}"

        body = upstream.content
        if method == "HEAD":
            length = upstream.headers.get("content-length")
            if length is not None:
                headers["Content-Length"] = length
        else:
            headers["Content-Length"] = str(len(body))
        LOGGER.debug("live_proxy_relayed", url=url, status=upstream.status_code, bytes=len(body))
        return ResponseOutcome(
            status=upstream.status_code,
            headers=headers,
            body=iter_bytes(body) if body else None,
        )
