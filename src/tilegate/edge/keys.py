"""Candidate store keys for a classified path, in probe order."""

from __future__ import annotations

from dataclasses import dataclass

from .paths import ClassifiedPath, PathKind

COMPRESSED_SUFFIX = ".gz"

# The map renderer only ever writes these compressed.
COMPRESSED_ONLY_EXTENSIONS = frozenset({".prbm"})
COMPRESSED_ONLY_FILENAMES = frozenset({"textures.json", "settings.json"})


@dataclass(frozen=True)
class CandidateKey:
    key: str
    expect_compressed: bool
    priority: int


def is_compressed_only(key: str) -> bool:
    filename = key.rsplit("/", 1)[-1]
    if filename in COMPRESSED_ONLY_FILENAMES:
        return True
    return any(filename.endswith(ext) for ext in COMPRESSED_ONLY_EXTENSIONS)


def resolve_candidates(classified: ClassifiedPath) -> tuple[CandidateKey, ...]:
    if classified.kind is PathKind.LIVE:
        raise ValueError("live paths are proxied, not resolved against the store")

    key = classified.normalized_key
    if key.endswith(COMPRESSED_SUFFIX):
        return (CandidateKey(key, expect_compressed=False, priority=0),)

    plain = (key, False)
    compressed = (key + COMPRESSED_SUFFIX, True)
    order = (compressed, plain) if is_compressed_only(key) else (plain, compressed)
    return tuple(
        CandidateKey(candidate, expect_compressed=flag, priority=index)
        for index, (candidate, flag) in enumerate(order)
    )
