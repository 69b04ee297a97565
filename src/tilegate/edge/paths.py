"""Classification of decoded request paths into object-store key space."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass


class PathKind(str, enum.Enum):
    TILE = "tile"
    LIVE = "live"
    GENERIC = "generic"


@dataclass(frozen=True)
class ClassifiedPath:
    kind: PathKind
    normalized_key: str


_LIVE_RE = re.compile(r"^[^/]+/live/")
_TILE_RE = re.compile(r"^[^/]+/tiles/")


def _strip_root(path: str, maps_root: str) -> str | None:
    if not maps_root:
        return None
    prefix = maps_root + "/"
    if path.startswith(prefix):
        return path[len(prefix):]
    return None


def classify_path(path: str, maps_root: str = "maps", entry_document: str = "index.html") -> ClassifiedPath:
    """Tag ``path`` as tile, live or generic and derive its store key.

    ``path`` must already be percent-decoded; it is never decoded again here.
    Matching is case-sensitive. The ``maps_root`` prefix is optional on the
    request but never part of the store key, except for live paths, which are
    returned verbatim because the live origin mirrors the public path.
    """
    key = path.lstrip("/")
    if not key:
        return ClassifiedPath(PathKind.GENERIC, entry_document)
    if key.endswith("/"):
        key += entry_document

    stripped = _strip_root(key, maps_root)
    # with the prefix present only the remainder is classified
    candidate = stripped if stripped is not None else key
    if _LIVE_RE.match(candidate):
        return ClassifiedPath(PathKind.LIVE, key)
    if _TILE_RE.match(candidate):
        return ClassifiedPath(PathKind.TILE, candidate)
    return ClassifiedPath(PathKind.GENERIC, candidate)
