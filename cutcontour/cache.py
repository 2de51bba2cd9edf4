"""Content-addressed cache for expensive mask computations.

Keys are SHA-256 digests of the image pixels and of every setting that
affects the result, so a change to either produces a new key; nothing is
ever invalidated in place. The cache is owned by the caller and passed in
explicitly.
"""
import hashlib
import logging
from collections import OrderedDict
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Hashable, Optional

from cutcontour.types import RasterImage

logger = logging.getLogger(__name__)


def image_hash(image: RasterImage) -> str:
    """SHA-256 of the image shape and pixel bytes (64 hex chars)."""
    sha256 = hashlib.sha256()
    sha256.update(repr(image.pixels.shape).encode("ascii"))
    sha256.update(image.pixels.tobytes())
    return sha256.hexdigest()


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return sorted((str(k), _normalize(v)) for k, v in value.items())
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def settings_hash(*records: Any) -> str:
    """
    SHA-256 of one or more settings records.

    Dataclasses are hashed by their fields in sorted order; other values by
    their repr. ``None`` records are skipped.
    """
    sha256 = hashlib.sha256()
    for record in records:
        if record is None:
            continue
        if is_dataclass(record):
            payload = (type(record).__name__, _normalize(asdict(record)))
        else:
            payload = _normalize(record)
        sha256.update(repr(payload).encode("utf-8"))
        sha256.update(b"\x00")
    return sha256.hexdigest()


class MaskCache:
    """
    Least-recently-used cache with a fixed number of entries.

    Args:
        max_entries: Entries kept before the oldest is evicted
    """

    def __init__(self, max_entries: int = 8):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.max_entries = max_entries
        self._entries: "OrderedDict[Hashable, Any]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def get(self, key: Hashable) -> Optional[Any]:
        if key not in self._entries:
            self.misses += 1
            return None
        self.hits += 1
        self._entries.move_to_end(key)
        return self._entries[key]

    def put(self, key: Hashable, value: Any):
        self._entries[key] = value
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted cache entry {str(evicted)[:12]}")

    def clear(self):
        self._entries.clear()
        self.hits = 0
        self.misses = 0
