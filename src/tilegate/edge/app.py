"""ASGI shell around the negotiation engine."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from ..common.http_security import require_operator_access
from ..common.metrics import GLOBAL_REGISTRY, Histogram
from ..common.observability import configure_logging, configure_tracing, instrument_fastapi_app
from ..common.settings import EdgeSettings
from .errors import StoreUnavailable
from .live import LiveProxy
from .negotiation import NegotiationEngine
from .negotiation import Request as EdgeRequest
from .responses import ResponseOutcome
from .storage import ObjectStore, build_store

SERVICE_NAME = "tilegate.edge"
OPERATIONAL_PREFIX = "/_edge"

REQUEST_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "tilegate_request_latency_seconds",
        buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
        description="Edge request latency",
    )
)


class EdgeState:
    def __init__(self, settings: EdgeSettings, store: ObjectStore, engine: NegotiationEngine):
        self.settings = settings
        self.store = store
        self.engine = engine
        self.logger = structlog.get_logger(SERVICE_NAME).bind(backend=store.status().get("backend"))


def get_state(request: Request) -> EdgeState:
    return request.app.state.edge  # type: ignore[attr-defined]


def to_response(outcome: ResponseOutcome) -> Response:
    if outcome.body is None:
        return Response(status_code=outcome.status, headers=outcome.headers)
    return StreamingResponse(outcome.body, status_code=outcome.status, headers=outcome.headers)


class EdgeEndpoint:
    """Raw ASGI endpoint, so every method reaches the engine.

    Starlette limits function endpoints to GET and HEAD and answers other
    methods itself; preflight and 405 must come from the engine instead.
    """

    async def __call__(self, scope, receive, send) -> None:
        request = Request(scope, receive)
        state = get_state(request)
        outcome = await state.engine.handle(
            EdgeRequest(method=request.method, path=scope["path"], headers=request.headers)
        )
        await to_response(outcome)(scope, receive, send)


def create_app(
    settings: Optional[EdgeSettings] = None,
    store: Optional[ObjectStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """Build the service.

    ``store`` and ``http_client`` default to the configured object store and
    a client created for the lifetime of the app; an injected client is left
    open on shutdown.
    """
    settings = settings or EdgeSettings()
    configure_logging(SERVICE_NAME, settings.log_level, settings.log_format)
    configure_tracing(
        service_name=SERVICE_NAME,
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )
    store = store or build_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client
        owns_client = False
        live_proxy = None
        if settings.live_origin:
            if client is None:
                client = httpx.AsyncClient(timeout=httpx.Timeout(settings.live_timeout_seconds))
                owns_client = True
            live_proxy = LiveProxy(settings.live_origin, client, settings.live_cache_seconds)
        state = EdgeState(settings, store, NegotiationEngine(settings, store, live_proxy))
        app.state.edge = state
        state.logger.info("edge_started", live_origin=settings.live_origin, maps_root=settings.maps_root)
        try:
            yield
        finally:
            if owns_client:
                await client.aclose()

    app = FastAPI(lifespan=lifespan)
    instrument_fastapi_app(app)

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        logger = structlog.get_logger(SERVICE_NAME)
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            REQUEST_LATENCY_HISTOGRAM.observe(duration)
            logger.exception(
                "http_request_error",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        REQUEST_LATENCY_HISTOGRAM.observe(duration)
        log_kwargs = {
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            logger.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            logger.warning("http_request", **log_kwargs)
        else:
            logger.info("http_request", **log_kwargs)
        return response

    @app.get(f"{OPERATIONAL_PREFIX}/healthz")
    async def health_check(state: EdgeState = Depends(get_state)) -> dict:
        """Liveness/readiness probe; reports the backend and whether live proxying is on."""
        backend = state.store.status()
        health = {
            "status": "healthy",
            "checks": {
                "backend": backend.get("backend", "unknown"),
                "live_proxy": state.engine.live_proxy is not None,
            },
        }
        if backend.get("circuit_open") or backend.get("readable") is False:
            health["status"] = "unhealthy"
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=health)
        return health

    @app.get(f"{OPERATIONAL_PREFIX}/keys")
    async def list_keys(
        request: Request,
        prefix: str = Query(default=""),
        limit: int = Query(default=100, ge=1),
        state: EdgeState = Depends(get_state),
    ) -> JSONResponse:
        require_operator_access(request, state.settings.operator_secret)
        bounded = min(limit, state.settings.list_max_keys)
        try:
            keys = await state.store.list_keys(prefix.lstrip("/"), bounded)
        except StoreUnavailable as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
        return JSONResponse({"prefix": prefix, "limit": bounded, "count": len(keys), "keys": keys})

    @app.get(f"{OPERATIONAL_PREFIX}/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(request: Request, state: EdgeState = Depends(get_state)) -> PlainTextResponse:
        require_operator_access(request, state.settings.operator_secret)
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    app.add_route("/{path:path}", EdgeEndpoint(), include_in_schema=False)
    return app
