"""Read-through cache for acoustic alignment results.

WHY: Decoding and segmenting a chunk's audio is the most expensive step
that runs on the client side. Replaying the same text (or reopening the
same reading view) should reuse the previous analysis instead of running it
again. Losing the cache must never break playback.

HOW: Three pieces work together:
  cache_key()    — stable key from chunk id + chunk text
  Storage        — pluggable byte store (persistent_get / persistent_set)
  AnalysisCache  — JSON-serializes AlignmentResult lists into a Storage
MemoryStorage is the default, a plain dict that lives as long as the
process does.

RULES:
- Keys look like "audio-analysis-<chunk_id>-<16 hex chars>"
- get() on an unknown key returns None, never raises
- Storage or decode failures are logged and treated as a miss
- put() failures are logged and swallowed; playback is never aborted
- No eviction: entries live for the lifetime of the storage
"""

from __future__ import annotations

import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Dict, List, Optional, Union

from narration_sync.core.ir import AlignmentResult

logger = logging.getLogger(__name__)

KEY_PREFIX = "audio-analysis"
_HASH_CHARS = 16


def cache_key(chunk_id: str, text: str) -> str:
    """Build the cache key for one chunk's analysis.

    Hashing chunk id and text together means edited text never hits a
    stale entry even if the chunk id is reused.
    """
    digest = hashlib.sha256(f"{chunk_id}\x00{text}".encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}-{chunk_id}-{digest[:_HASH_CHARS]}"


class Storage(ABC):
    """Byte-oriented key/value store used by AnalysisCache.

    Implementations may raise from either method; the cache handles it.
    Some backends hand values back as text; get() accepts str as well.
    """

    @abstractmethod
    def persistent_get(self, key: str) -> Optional[Union[bytes, str]]:
        """Return the stored value for *key*, or None."""

    @abstractmethod
    def persistent_set(self, key: str, value: bytes) -> None:
        """Store *value* under *key*, replacing any previous value."""


class MemoryStorage(Storage):
    """Process-lifetime dict storage."""

    def __init__(self) -> None:
        self._data: Dict[str, bytes] = {}

    def persistent_get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def persistent_set(self, key: str, value: bytes) -> None:
        self._data[key] = value

    def __len__(self) -> int:
        return len(self._data)


def _encode(results: List[AlignmentResult]) -> bytes:
    return json.dumps([asdict(r) for r in results]).encode("utf-8")


def _decode(raw: Union[bytes, str]) -> List[AlignmentResult]:
    text = raw if isinstance(raw, str) else bytes(raw).decode("utf-8")
    rows = json.loads(text)
    if not isinstance(rows, list):
        raise ValueError("cached analysis is not a list")
    return [
        AlignmentResult(
            text=str(row["text"]),
            start=float(row["start"]),
            end=float(row["end"]),
            confidence=float(row["confidence"]),
        )
        for row in rows
    ]


class AnalysisCache:
    """Alignment results keyed by cache_key(), stored as JSON.

    WHY: The playback controller checks here before starting acoustic
    analysis; a hit short-circuits decode and segmentation entirely.

    HOW: put() serializes the rows with json and hands the bytes to the
    storage. get() reverses it. Every storage call is wrapped so that a
    broken or unavailable backend degrades to "miss".

    RULES:
    - get() returns None for a miss, never raises
    - put() then get() with the same key returns equal rows
    """

    def __init__(self, storage: Optional[Storage] = None) -> None:
        self._storage = storage if storage is not None else MemoryStorage()

    def get(self, key: str) -> Optional[List[AlignmentResult]]:
        try:
            raw = self._storage.persistent_get(key)
        except Exception:
            logger.warning("Analysis cache read failed for %s", key, exc_info=True)
            return None

        if raw is None:
            return None

        try:
            results = _decode(raw)
        except (ValueError, KeyError, TypeError, UnicodeDecodeError):
            logger.warning("Discarding unreadable cache entry %s", key, exc_info=True)
            return None

        logger.info("Using cached analysis for %s", key)
        return results

    def put(self, key: str, results: List[AlignmentResult]) -> None:
        try:
            self._storage.persistent_set(key, _encode(results))
        except Exception:
            logger.warning("Failed to cache analysis for %s", key, exc_info=True)
            return
        logger.info("Cached analysis for %s (%d words)", key, len(results))
