"""Read-only object store access: a local directory tree or an S3-compatible bucket."""

from __future__ import annotations

import asyncio
import enum
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Callable, Optional

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..common.settings import EdgeSettings
from .errors import StoreUnavailable

LOGGER = structlog.get_logger("tilegate.edge.storage")

CHUNK_SIZE = 64 * 1024
S3_MISS_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class ContentEncoding(str, enum.Enum):
    NONE = "none"
    GZIP = "gzip"


@dataclass
class ObjectRecord:
    """One stored object, owned by the caller until the response is sent.

    ``body`` is absent for HEAD lookups. When a body was opened but will not
    be sent (a 304), ``aclose`` must be awaited to release the store stream.
    """

    key: str
    etag: str
    size_bytes: int
    content_encoding: ContentEncoding = ContentEncoding.NONE
    body: Optional[AsyncIterator[bytes]] = None
    closer: Optional[Callable[[], None]] = field(default=None, repr=False, compare=False)

    @property
    def compressed(self) -> bool:
        return self.content_encoding is ContentEncoding.GZIP

    async def aclose(self) -> None:
        closer, self.closer = self.closer, None
        if closer is not None:
            await asyncio.to_thread(closer)


async def _iter_stream(stream, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    try:
        while True:
            chunk = await asyncio.to_thread(stream.read, chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


class ObjectStore:
    async def get(self, key: str, encoding: ContentEncoding = ContentEncoding.NONE) -> Optional[ObjectRecord]:  # pragma: no cover - interface
        raise NotImplementedError

    async def head(self, key: str, encoding: ContentEncoding = ContentEncoding.NONE) -> Optional[ObjectRecord]:  # pragma: no cover - interface
        raise NotImplementedError

    async def list_keys(self, prefix: str = "", limit: int = 1000) -> list[str]:  # pragma: no cover - interface
        raise NotImplementedError

    def status(self) -> dict[str, object]:  # pragma: no cover - interface
        raise NotImplementedError


def sanitize_key(root: Path, key: str) -> Optional[Path]:
    """Map ``key`` below ``root``; keys escaping the root map to ``None``."""
    root = root.resolve()
    resolved = root.joinpath(*key.split("/")).resolve(strict=False)
    if resolved != root and root not in resolved.parents:
        return None
    return resolved


def _local_etag(stat: os.stat_result) -> str:
    return f'"{stat.st_mtime_ns // 1_000_000_000:x}-{stat.st_size:x}"'


class LocalObjectStore(ObjectStore):
    """Serves keys from a directory, the layout the renderer writes to disk."""

    def __init__(self, root: Path):
        self._root = Path(root)

    def _stat(self, key: str) -> tuple[Path, os.stat_result] | None:
        path = sanitize_key(self._root, key)
        if path is None:
            LOGGER.warning("key_outside_store_root", key=key)
            return None
        try:
            stat = path.stat()
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as exc:
            raise StoreUnavailable(f"stat failed for {key}") from exc
        if not path.is_file():
            return None
        return path, stat

    def _open(self, key: str) -> tuple[BinaryIO, os.stat_result] | None:
        found = self._stat(key)
        if found is None:
            return None
        path, stat = found
        try:
            return path.open("rb"), stat
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreUnavailable(f"open failed for {key}") from exc

    async def get(self, key: str, encoding: ContentEncoding = ContentEncoding.NONE) -> Optional[ObjectRecord]:
        opened = await asyncio.to_thread(self._open, key)
        if opened is None:
            return None
        handle, stat = opened
        return ObjectRecord(
            key=key,
            etag=_local_etag(stat),
            size_bytes=stat.st_size,
            content_encoding=encoding,
            body=_iter_stream(handle),
            closer=handle.close,
        )

    async def head(self, key: str, encoding: ContentEncoding = ContentEncoding.NONE) -> Optional[ObjectRecord]:
        found = await asyncio.to_thread(self._stat, key)
        if found is None:
            return None
        _, stat = found
        return ObjectRecord(key=key, etag=_local_etag(stat), size_bytes=stat.st_size, content_encoding=encoding)

    def _walk(self, prefix: str, limit: int) -> list[str]:
        root = self._root.resolve()
        if not root.is_dir():
            return []
        keys = sorted(
            item.relative_to(root).as_posix()
            for item in root.rglob("*")
            if item.is_file()
        )
        return [key for key in keys if key.startswith(prefix)][:limit]

    async def list_keys(self, prefix: str = "", limit: int = 1000) -> list[str]:
        return await asyncio.to_thread(self._walk, prefix, max(0, limit))

    def status(self) -> dict[str, object]:
        return {
            "backend": "local",
            "storage_path": str(self._root),
            "readable": self._root.is_dir() and os.access(self._root, os.R_OK),
        }


class CircuitBreaker:
    """Trips after consecutive store failures and stays open for ``reset_timeout``.

    Authoritative misses count as successes; only infrastructure errors trip it.
    """

    def __init__(self, name: str, failure_threshold: int, reset_timeout: float):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.reset_timeout = max(0.0, reset_timeout)
        self.consecutive_failures = 0
        self._opened_at: float | None = None

    def _expired(self) -> bool:
        return self._opened_at is not None and time.monotonic() - self._opened_at >= self.reset_timeout

    @property
    def is_open(self) -> bool:
        if self._expired():
            LOGGER.info("store_circuit_half_open", store=self.name)
            self._opened_at = None
            self.consecutive_failures = 0
        return self._opened_at is not None

    def record_success(self) -> None:
        if self.consecutive_failures:
            LOGGER.info("store_circuit_recovered", store=self.name, failures=self.consecutive_failures)
        self.consecutive_failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self.consecutive_failures += 1
        if self._opened_at is None and self.consecutive_failures >= self.failure_threshold:
            self._opened_at = time.monotonic()
            LOGGER.warning(
                "store_circuit_opened",
                store=self.name,
                failures=self.consecutive_failures,
                reset_seconds=self.reset_timeout,
            )


class S3ObjectStore(ObjectStore):
    """Bucket access through boto3; works against S3, R2 and MinIO endpoints."""

    def __init__(self, settings: EdgeSettings):
        self._settings = settings
        session = boto3.session.Session()
        client_args: dict[str, Optional[str]] = {
            "endpoint_url": settings.s3_endpoint_url,
            "region_name": settings.s3_region,
        }
        self._client = session.client(
            "s3",
            config=BotoConfig(retries={"max_attempts": max(1, settings.s3_max_attempts), "mode": "standard"}),
            **{k: v for k, v in client_args.items() if v},
        )
        self._bucket = settings.s3_bucket
        self._breaker = CircuitBreaker(
            f"s3://{settings.s3_bucket}",
            failure_threshold=settings.s3_circuit_breaker_failures,
            reset_timeout=settings.s3_circuit_breaker_reset_seconds,
        )

    async def _call(self, func: Callable[..., dict], key: str, **kwargs) -> Optional[dict]:
        if self._breaker.is_open:
            raise StoreUnavailable("object store circuit open")
        try:
            response = await asyncio.to_thread(func, Bucket=self._bucket, **kwargs)
        except ClientError as exc:
            error_code = str(exc.response.get("Error", {}).get("Code", ""))
            if error_code in S3_MISS_CODES:
                self._breaker.record_success()
                return None
            self._breaker.record_failure()
            LOGGER.warning("store_request_failed", key=key, error_code=error_code)
            raise StoreUnavailable(f"S3 error {error_code or 'unknown'}") from exc
        except BotoCoreError as exc:
            self._breaker.record_failure()
            LOGGER.warning("store_request_failed", key=key, error=str(exc))
            raise StoreUnavailable("S3 transport error") from exc
        self._breaker.record_success()
        return response

    async def get(self, key: str, encoding: ContentEncoding = ContentEncoding.NONE) -> Optional[ObjectRecord]:
        response = await self._call(self._client.get_object, key, Key=key)
        if response is None:
            return None
        body = response["Body"]
        return ObjectRecord(
            key=key,
            etag=response.get("ETag", ""),
            size_bytes=int(response.get("ContentLength", 0)),
            content_encoding=encoding,
            body=_iter_stream(body),
            closer=body.close,
        )

    async def head(self, key: str, encoding: ContentEncoding = ContentEncoding.NONE) -> Optional[ObjectRecord]:
        response = await self._call(self._client.head_object, key, Key=key)
        if response is None:
            return None
        return ObjectRecord(
            key=key,
            etag=response.get("ETag", ""),
            size_bytes=int(response.get("ContentLength", 0)),
            content_encoding=encoding,
        )

    async def list_keys(self, prefix: str = "", limit: int = 1000) -> list[str]:
        if limit <= 0:
            return []
        response = await self._call(self._client.list_objects_v2, prefix, Prefix=prefix, MaxKeys=limit)
        if response is None:
            return []
        return [entry["Key"] for entry in response.get("Contents", [])][:limit]

    def status(self) -> dict[str, object]:
        return {
            "backend": "s3",
            "bucket": self._bucket,
            "endpoint": self._settings.s3_endpoint_url,
            "circuit_open": self._breaker.is_open,
            "consecutive_failures": self._breaker.consecutive_failures,
        }


def build_store(settings: EdgeSettings) -> ObjectStore:
    if settings.s3_bucket:
        return S3ObjectStore(settings)
    return LocalObjectStore(settings.storage_path)
