"""Turn found objects and negotiation errors into HTTP outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from .content_types import content_type_for
from .errors import HardAbsent, MethodNotAllowed, NegotiationError, SoftAbsent
from .storage import ObjectRecord

ALLOW_ORIGIN = "Access-Control-Allow-Origin"
ALLOWED_METHODS = "GET, HEAD, OPTIONS"


@dataclass
class ResponseOutcome:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[AsyncIterator[bytes]] = None


def iter_bytes(data: bytes) -> AsyncIterator[bytes]:
    async def _generator():
        yield data

    return _generator()


def cors_headers(**extra: str) -> dict[str, str]:
    headers = {ALLOW_ORIGIN: "*"}
    headers.update(extra)
    return headers


def _opaque(tag: str) -> str:
    tag = tag.strip()
    return tag[2:] if tag.startswith("W/") else tag


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """Weak comparison of an ``If-None-Match`` list against ``etag``."""
    if not if_none_match or not etag:
        return False
    target = _opaque(etag)
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*" or (candidate and _opaque(candidate) == target):
            return True
    return False


def found_response(
    record: ObjectRecord,
    logical_key: str,
    *,
    max_age: int,
    if_none_match: Optional[str] = None,
    include_body: bool = True,
) -> ResponseOutcome:
    """200 (or 304) for a stored object.

    The content type comes from ``logical_key``, the key the client asked for,
    so a ``.gz`` variant is described by the file it encodes.
    """
    headers = cors_headers(
        **{
            "Content-Type": content_type_for(logical_key),
            "ETag": record.etag,
            "Cache-Control": f"public, max-age={max_age}",
        }
    )
    if record.compressed:
        headers["Content-Encoding"] = "gzip"

    if etag_matches(if_none_match, record.etag):
        return ResponseOutcome(status=304, headers=headers)

    headers["Content-Length"] = str(record.size_bytes)
    return ResponseOutcome(status=200, headers=headers, body=record.body if include_body else None)


def error_response(error: NegotiationError) -> ResponseOutcome:
    status = error.status_code
    if isinstance(error, (SoftAbsent, HardAbsent)):
        # no body and no cache directive, so a later render is picked up
        return ResponseOutcome(status=status, headers=cors_headers())

    message = {
        405: b"Method Not Allowed",
        502: b"Live server unavailable",
        503: b"Object store unavailable",
    }.get(status, b"Internal Server Error")
    headers = cors_headers(
        **{
            "Content-Type": "text/plain; charset=utf-8",
            "Content-Length": str(len(message)),
        }
    )
    if isinstance(error, MethodNotAllowed):
        headers["Allow"] = ALLOWED_METHODS
    else:
        headers["Cache-Control"] = "no-store"
    return ResponseOutcome(status=status, headers=headers, body=iter_bytes(message))


def preflight_response(max_age: int) -> ResponseOutcome:
    return ResponseOutcome(
        status=204,
        headers=cors_headers(
            **{
                "Access-Control-Allow-Methods": ALLOWED_METHODS,
                "Access-Control-Allow-Headers": "*",
                "Access-Control-Max-Age": str(max_age),
            }
        ),
    )
