from __future__ import annotations

import hashlib
from typing import Optional

import pytest

from tilegate.common.settings import EdgeSettings
from tilegate.edge.responses import iter_bytes
from tilegate.edge.storage import ContentEncoding, ObjectRecord, ObjectStore


class MemoryObjectStore(ObjectStore):
    """Dict-backed store that records every lookup."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.closed: list[str] = []
        self.fail_with: Optional[Exception] = None

    def _record(self, key: str, encoding: ContentEncoding, with_body: bool) -> Optional[ObjectRecord]:
        if self.fail_with is not None:
            raise self.fail_with
        data = self.objects.get(key)
        if data is None:
            return None
        return ObjectRecord(
            key=key,
            etag=f'"{hashlib.md5(data).hexdigest()}"',
            size_bytes=len(data),
            content_encoding=encoding,
            body=iter_bytes(data) if with_body else None,
            closer=(lambda: self.closed.append(key)) if with_body else None,
        )

    async def get(self, key: str, encoding: ContentEncoding = ContentEncoding.NONE) -> Optional[ObjectRecord]:
        self.calls.append(("get", key))
        return self._record(key, encoding, with_body=True)

    async def head(self, key: str, encoding: ContentEncoding = ContentEncoding.NONE) -> Optional[ObjectRecord]:
        self.calls.append(("head", key))
        return self._record(key, encoding, with_body=False)

    async def list_keys(self, prefix: str = "", limit: int = 1000) -> list[str]:
        self.calls.append(("list", prefix))
        if self.fail_with is not None:
            raise self.fail_with
        return sorted(key for key in self.objects if key.startswith(prefix))[:limit]

    def status(self) -> dict[str, object]:
        return {"backend": "memory", "objects": len(self.objects)}


@pytest.fixture
def memory_store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def edge_settings(tmp_path) -> EdgeSettings:
    return EdgeSettings(storage_path=tmp_path, _env_file=None)
