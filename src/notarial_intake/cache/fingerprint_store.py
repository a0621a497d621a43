# ============================================================================
# src/notarial_intake/cache/fingerprint_store.py
# ============================================================================
"""
Fingerprint Store for Page Extraction Results

Remembers the extraction result of a page so re-uploading the same document
within the session does not pay for extraction again.

Features:
- Keyed by (original file identity, page name, subtype)
- Only context-independent subtypes are cached (registry extracts, deeds,
  floor plans); identifications always go back to the service because
  their result depends on the case context sent along
- Error results are never stored
- TTL expiration and LRU eviction
- Thread-safe operations
- Optional JSON persistence
"""

import json
import hashlib
import threading
from pathlib import Path
from typing import Dict, Any, Optional, List, NamedTuple
from datetime import datetime
from collections import OrderedDict
from dataclasses import asdict, dataclass
import logging

from ..constants.document_types import CACHEABLE_SUBTYPES, DocumentSubtype
from ..utils.exceptions import CacheError


class FingerprintKey(NamedTuple):
    file_identity: str
    page_name: str
    subtype: str

    def digest(self) -> str:
        raw = f"{self.file_identity}|{self.page_name}|{self.subtype}"
        return hashlib.md5(raw.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    """
    Single cache entry with metadata.

    Attributes:
        key: Digest of the fingerprint key
        file_identity: Identity of the original upload (for invalidation)
        value: Cached extraction result (JSON-ready dict)
        created_at: When the entry was created
        last_accessed: When the entry was last read
        access_count: Number of times accessed
        ttl_seconds: Time-to-live (None = no expiration)
    """
    key: str
    file_identity: str
    value: Dict[str, Any]
    created_at: datetime
    last_accessed: datetime
    access_count: int = 0
    ttl_seconds: Optional[int] = None

    def is_expired(self) -> bool:
        if self.ttl_seconds is None:
            return False
        age = (datetime.now() - self.created_at).total_seconds()
        return age > self.ttl_seconds

    def mark_accessed(self):
        self.last_accessed = datetime.now()
        self.access_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "file_identity": self.file_identity,
            "value": self.value,
            "created_at": self.created_at.isoformat(),
            "last_accessed": self.last_accessed.isoformat(),
            "access_count": self.access_count,
            "ttl_seconds": self.ttl_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            file_identity=data["file_identity"],
            value=data["value"],
            created_at=datetime.fromisoformat(data["created_at"]),
            last_accessed=datetime.fromisoformat(data["last_accessed"]),
            access_count=data.get("access_count", 0),
            ttl_seconds=data.get("ttl_seconds"),
        )


@dataclass
class CacheStatistics:
    """Counters for one store's lifetime"""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    writes: int = 0
    rejected: int = 0

    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {**asdict(self), "hit_rate": self.hit_rate()}


class FingerprintStore:
    """
    Cache of successful page extraction results.

    Example:
        store = FingerprintStore(max_size=500, default_ttl=7200)

        key = FingerprintKey(page.file_identity, page.name, "deed")
        cached = store.get(key)
        if cached is None:
            result = await client.extract(request)
            store.put(key, result.to_dict())
    """

    CACHE_FILE = "page_results.json"

    def __init__(
        self,
        max_size: int = 500,
        default_ttl: Optional[int] = 7200,
        cache_dir: Optional[Path] = None,
    ):
        """
        Initialize store.

        Args:
            max_size: Maximum number of entries (LRU eviction when exceeded)
            default_ttl: Default TTL in seconds (None = no expiration)
            cache_dir: Directory for persistent storage (None = memory only)
        """
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.cache_dir = Path(cache_dir) if cache_dir else None

        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStatistics()

        self.logger = logging.getLogger(__name__)

        if self.cache_dir:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    @staticmethod
    def is_cacheable(subtype: Any) -> bool:
        try:
            return DocumentSubtype(subtype) in CACHEABLE_SUBTYPES
        except ValueError:
            return False

    def get(self, key: FingerprintKey) -> Optional[Dict[str, Any]]:
        """
        Get the cached result for a page.

        Returns:
            The stored result dict, or None on miss, expiry or a
            non-cacheable subtype
        """
        if not self.is_cacheable(key.subtype):
            return None

        with self._lock:
            digest = key.digest()

            if digest not in self._cache:
                self._stats.misses += 1
                return None

            entry = self._cache[digest]

            if entry.is_expired():
                self.logger.debug(f"Cache entry expired: {key.page_name}")
                self._remove_entry(digest)
                self._stats.misses += 1
                self._stats.expirations += 1
                return None

            entry.mark_accessed()
            self._cache.move_to_end(digest)
            self._stats.hits += 1

            return json.loads(json.dumps(entry.value))

    def put(
        self,
        key: FingerprintKey,
        result: Dict[str, Any],
        ttl: Optional[int] = None,
    ) -> bool:
        """
        Store a page result.

        Args:
            key: Fingerprint of the page
            result: JSON-ready extraction result
            ttl: TTL in seconds (overrides default_ttl)

        Returns:
            True if stored; False for non-cacheable subtypes or error results
        """
        if not self.is_cacheable(key.subtype):
            return False
        if not result or result.get("error"):
            self._stats.rejected += 1
            return False

        try:
            value = json.loads(json.dumps(result))
        except (TypeError, ValueError) as e:
            raise CacheError(f"Result for {key.page_name} is not JSON serializable: {e}")

        with self._lock:
            digest = key.digest()

            if digest not in self._cache:
                self._make_room()

            now = datetime.now()
            self._cache[digest] = CacheEntry(
                key=digest,
                file_identity=key.file_identity,
                value=value,
                created_at=now,
                last_accessed=now,
                ttl_seconds=ttl if ttl is not None else self.default_ttl,
            )
            self._cache.move_to_end(digest)

            self._stats.writes += 1

        return True

    def invalidate_file(self, file_identity: str) -> int:
        """
        Drop every page cached for one original upload (forced reprocess).

        Returns:
            Number of entries removed
        """
        with self._lock:
            doomed = [k for k, e in self._cache.items() if e.file_identity == file_identity]
            for digest in doomed:
                self._remove_entry(digest)
            if doomed:
                self.logger.info(f"Invalidated {len(doomed)} cached page(s)")
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self.logger.info("Cache cleared")

    def cleanup_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        with self._lock:
            expired = [digest for digest, entry in self._cache.items() if entry.is_expired()]
            for digest in expired:
                self._remove_entry(digest)
            self._stats.expirations += len(expired)
            if expired:
                self.logger.info(f"Dropped {len(expired)} expired page result(s)")
            return len(expired)

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self._stats.to_dict(),
                "entry_count": len(self._cache),
                "max_size": self.max_size,
                "default_ttl": self.default_ttl,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def save(self) -> None:
        """Persist entries to disk (no-op for memory-only stores)."""
        with self._lock:
            self._save_to_disk()

    def _make_room(self):
        # entries are kept in recency order; the front is least recently used
        while self._cache and len(self._cache) >= self.max_size:
            evicted, _ = self._cache.popitem(last=False)
            self._stats.evictions += 1
            self.logger.debug(f"Evicted page result {evicted}")

    def _remove_entry(self, key: str):
        self._cache.pop(key, None)

    def _save_to_disk(self):
        if not self.cache_dir:
            return

        cache_file = self.cache_dir / self.CACHE_FILE
        entries: List[Dict[str, Any]] = [
            entry.to_dict() for entry in self._cache.values() if not entry.is_expired()
        ]

        try:
            with open(cache_file, 'w', encoding='utf-8') as f:
                json.dump(entries, f, ensure_ascii=False)
            self.logger.debug(f"Cache persisted to {cache_file}")
        except OSError as e:
            self.logger.warning(f"Failed to persist cache: {e}")

    def _load_from_disk(self):
        cache_file = self.cache_dir / self.CACHE_FILE

        if not cache_file.exists():
            return

        try:
            with open(cache_file, 'r', encoding='utf-8') as f:
                loaded = json.load(f)

            valid_entries = 0
            for raw in loaded:
                entry = CacheEntry.from_dict(raw)
                if not entry.is_expired():
                    self._cache[entry.key] = entry
                    valid_entries += 1


            self.logger.info(
                f"Loaded {valid_entries} valid entries from cache "
                f"({len(loaded) - valid_entries} expired)"
            )

        except (OSError, ValueError, KeyError) as e:
            self.logger.warning(f"Failed to load cache from disk: {e}")
