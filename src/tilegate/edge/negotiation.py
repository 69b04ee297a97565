"""Per-request sequencing of classification, key probing and response building."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional

import structlog
from opentelemetry import trace

from ..common.metrics import GLOBAL_REGISTRY, Counter
from ..common.settings import EdgeSettings
from .errors import HardAbsent, MethodNotAllowed, NegotiationError, SoftAbsent
from .keys import CandidateKey, resolve_candidates
from .live import LiveProxy
from .paths import ClassifiedPath, PathKind, classify_path
from .responses import ResponseOutcome, error_response, found_response, preflight_response
from .storage import ContentEncoding, ObjectRecord, ObjectStore

LOGGER = structlog.get_logger("tilegate.edge.negotiation")
TRACER = trace.get_tracer("tilegate.edge")

READ_METHODS = frozenset({"GET", "HEAD"})
PREFLIGHT_METHOD = "OPTIONS"

OUTCOME_COUNTER = GLOBAL_REGISTRY.register(
    Counter("tilegate_requests_total", "Negotiated requests by terminal outcome")
)
PROBE_COUNTER = GLOBAL_REGISTRY.register(
    Counter("tilegate_store_probes_total", "Object store lookups by result")
)


@dataclass(frozen=True)
class Request:
    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        value = self.headers.get(name)
        if value is None:
            lowered = name.lower()
            value = next((v for k, v in self.headers.items() if k.lower() == lowered), None)
        return value


def _outcome_label(outcome: ResponseOutcome) -> str:
    return {
        200: "found",
        204: "soft_absent",
        304: "not_modified",
        404: "hard_absent",
        405: "method_not_allowed",
        502: "proxy_error",
        503: "store_unavailable",
    }.get(outcome.status, "other")


class NegotiationEngine:
    """Single entry point the transport layer calls once per request.

    Holds only its configuration and injected collaborators, so any number of
    requests may run through one instance concurrently.
    """

    def __init__(self, settings: EdgeSettings, store: ObjectStore, live_proxy: Optional[LiveProxy] = None) -> None:
        self.settings = settings
        self.store = store
        self.live_proxy = live_proxy

    async def handle(self, request: Request) -> ResponseOutcome:
        method = request.method.upper()
        with TRACER.start_as_current_span("tilegate.negotiate", attributes={"http.method": method}) as span:
            if method == PREFLIGHT_METHOD:
                outcome = preflight_response(self.settings.preflight_max_age_seconds)
            else:
                try:
                    outcome = await self._negotiate(method, request, span)
                except NegotiationError as exc:
                    if exc.status_code >= 500:
                        LOGGER.warning("negotiation_failed", path=request.path, status=exc.status_code, detail=exc.detail)
                    outcome = error_response(exc)
            if method == "HEAD" and outcome.body is not None:
                await outcome.body.aclose()
                outcome.body = None
            label = _outcome_label(outcome)
            span.set_attribute("tilegate.outcome", label)
            span.set_attribute("http.status_code", outcome.status)
            OUTCOME_COUNTER.inc(outcome=label)
            return outcome

    async def _negotiate(self, method: str, request: Request, span) -> ResponseOutcome:
        if method not in READ_METHODS:
            raise MethodNotAllowed(method)

        classified = classify_path(request.path, self.settings.maps_root, self.settings.entry_document)
        span.set_attribute("tilegate.kind", classified.kind.value)
        span.set_attribute("tilegate.key", classified.normalized_key)

        if classified.kind is PathKind.LIVE:
            if self.live_proxy is None:
                raise HardAbsent("live data not configured")
            return await self.live_proxy.forward(method, classified, request.header("Accept"))

        found = await self._probe(classified, resolve_candidates(classified), include_body=method == "GET")
        if found is None:
            if classified.kind is PathKind.TILE:
                LOGGER.debug("tile_absent", key=classified.normalized_key)
                raise SoftAbsent(classified.normalized_key)
            LOGGER.info("object_miss", key=classified.normalized_key)
            raise HardAbsent(classified.normalized_key)

        outcome = found_response(
            found,
            classified.normalized_key,
            max_age=self.settings.cache_max_age_seconds,
            if_none_match=request.header("If-None-Match"),
            include_body=method == "GET",
        )
        if outcome.body is None:
            await found.aclose()
        return outcome

    async def _probe(
        self,
        classified: ClassifiedPath,
        candidates: tuple[CandidateKey, ...],
        include_body: bool,
    ) -> Optional[ObjectRecord]:
        lookup = self.store.get if include_body else self.store.head
        for candidate in sorted(candidates, key=lambda item: item.priority):
            encoding = ContentEncoding.GZIP if candidate.expect_compressed else ContentEncoding.NONE
            record = await lookup(candidate.key, encoding)
            if record is not None:
                PROBE_COUNTER.inc(result="hit")
                LOGGER.debug(
                    "object_hit",
                    key=classified.normalized_key,
                    stored_key=candidate.key,
                    compressed=record.compressed,
                )
                return record
            PROBE_COUNTER.inc(result="miss")
        return None
