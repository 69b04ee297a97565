from __future__ import annotations

import pytest

from tilegate.edge.content_types import content_type_for
from tilegate.edge.errors import HardAbsent, MethodNotAllowed, SoftAbsent, StoreUnavailable, UpstreamUnavailable
from tilegate.edge.responses import error_response, etag_matches, found_response, iter_bytes, preflight_response
from tilegate.edge.storage import ContentEncoding, ObjectRecord


def _record(encoding: ContentEncoding = ContentEncoding.NONE) -> ObjectRecord:
    return ObjectRecord(
        key="world/textures.json.gz",
        etag='"abc123"',
        size_bytes=11,
        content_encoding=encoding,
        body=iter_bytes(b"hello world"),
    )


@pytest.mark.parametrize(
    "key, expected",
    [
        ("world/textures.json", "application/json"),
        ("index.html", "text/html; charset=utf-8"),
        ("world/tiles/0/x0/z0.prbm", "application/octet-stream"),
        ("assets/logo.PNG", "image/png"),
        ("world/textures.json.gz", "application/gzip"),
        ("README", "application/octet-stream"),
        ("v1.2/README", "application/octet-stream"),
    ],
)
def test_content_type_lookup(key: str, expected: str) -> None:
    assert content_type_for(key) == expected


def test_compressed_record_uses_logical_content_type() -> None:
    outcome = found_response(_record(ContentEncoding.GZIP), "world/textures.json", max_age=60)
    assert outcome.status == 200
    assert outcome.headers["Content-Encoding"] == "gzip"
    assert outcome.headers["Content-Type"] == "application/json"
    assert outcome.headers["ETag"] == '"abc123"'
    assert outcome.headers["Cache-Control"] == "public, max-age=60"
    assert outcome.headers["Access-Control-Allow-Origin"] == "*"
    assert outcome.headers["Content-Length"] == "11"
    assert outcome.body is not None


def test_plain_record_has_no_content_encoding() -> None:
    outcome = found_response(_record(), "world/textures.json", max_age=60)
    assert "Content-Encoding" not in outcome.headers


@pytest.mark.parametrize("encoding", [ContentEncoding.NONE, ContentEncoding.GZIP])
def test_matching_validator_yields_304(encoding: ContentEncoding) -> None:
    outcome = found_response(_record(encoding), "world/textures.json", max_age=60, if_none_match='"abc123"')
    assert outcome.status == 304
    assert outcome.body is None
    assert outcome.headers["ETag"] == '"abc123"'
    assert "Content-Length" not in outcome.headers


def test_head_lookup_omits_body() -> None:
    outcome = found_response(_record(), "index.html", max_age=60, include_body=False)
    assert outcome.status == 200
    assert outcome.body is None
    assert outcome.headers["Content-Length"] == "11"


@pytest.mark.parametrize(
    "header, expected",
    [
        ('"abc123"', True),
        ('W/"abc123"', True),
        ('"zzz", "abc123"', True),
        ("*", True),
        ('"zzz"', False),
        ("", False),
        (None, False),
    ],
)
def test_etag_matching(header, expected) -> None:
    assert etag_matches(header, '"abc123"') is expected


def test_absence_outcomes_have_no_body_or_cache_header() -> None:
    soft = error_response(SoftAbsent("world/tiles/0/x0/z0.prbm"))
    hard = error_response(HardAbsent("missing.html"))
    assert (soft.status, hard.status) == (204, 404)
    for outcome in (soft, hard):
        assert outcome.body is None
        assert outcome.headers == {"Access-Control-Allow-Origin": "*"}


def test_failure_outcomes_keep_cors() -> None:
    not_allowed = error_response(MethodNotAllowed("POST"))
    assert not_allowed.status == 405
    assert not_allowed.headers["Allow"] == "GET, HEAD, OPTIONS"

    for error, status in ((UpstreamUnavailable(), 502), (StoreUnavailable(), 503)):
        outcome = error_response(error)
        assert outcome.status == status
        assert outcome.headers["Access-Control-Allow-Origin"] == "*"
        assert outcome.headers["Cache-Control"] == "no-store"


def test_preflight_advertises_capabilities() -> None:
    outcome = preflight_response(600)
    assert outcome.status == 204
    assert outcome.headers["Access-Control-Allow-Methods"] == "GET, HEAD, OPTIONS"
    assert outcome.headers["Access-Control-Allow-Headers"] == "*"
    assert outcome.headers["Access-Control-Max-Age"] == "600"
    assert outcome.body is None
