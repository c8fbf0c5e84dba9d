"""
Persistent, content-validated embedding cache.

Entries live in an in-memory map guarded by a single writer lock. Every write
schedules a snapshot of the whole map to durable storage; persistence is
best-effort and never fails the operation that triggered it.
"""

import os
import json
import hashlib
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from tech_eval.config import Config
from tech_eval.embedding_service import normalize_text
from tech_eval.errors import CacheError, ValidationError
from tech_eval.models import (
    CacheMetadata,
    CacheState,
    CacheStats,
    CachedEmbedding,
    QuestionId,
    utc_now,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"


def hash_text(text: str) -> str:
    """SHA-256 of the whitespace-normalized text."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


def question_cache_key(question_id: QuestionId) -> str:
    return f"question_{question_id}"


class CacheStore(Protocol):
    """Durable key->record storage: load all, persist all."""

    location: str

    def ensure(self) -> None: ...

    def load(self) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]: ...

    def save(self, metadata: Dict[str, Any], entries: List[Dict[str, Any]]) -> None: ...

    def clear(self) -> None: ...


class JsonFileCacheStore:
    """Stores the cache as embeddings.json + metadata.json in one directory."""

    def __init__(self, cache_dir: Union[str, Path]):
        self.cache_dir = Path(cache_dir)
        self.cache_file = self.cache_dir / "embeddings.json"
        self.metadata_file = self.cache_dir / "metadata.json"

    @property
    def location(self) -> str:
        return str(self.cache_dir)

    def ensure(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheError(f"Failed to create cache directory {self.cache_dir}: {e}") from e

    def load(self) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        if not self.cache_file.exists() or not self.metadata_file.exists():
            return None, []
        try:
            metadata = json.loads(self.metadata_file.read_text(encoding="utf-8"))
            entries = json.loads(self.cache_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise CacheError(f"Failed to read cache from {self.cache_dir}: {e}") from e
        if not isinstance(entries, list):
            raise CacheError("Cache file does not contain a list of entries")
        return metadata, entries

    def save(self, metadata: Dict[str, Any], entries: List[Dict[str, Any]]) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self._write_atomic(self.cache_file, entries)
            self._write_atomic(self.metadata_file, metadata)
        except (OSError, TypeError, ValueError) as e:
            raise CacheError(f"Cache persistence failed: {e}") from e

    def clear(self) -> None:
        try:
            for path in (self.cache_file, self.metadata_file):
                if path.exists():
                    path.unlink()
        except OSError as e:
            raise CacheError(f"Failed to clear cache files: {e}") from e

    @staticmethod
    def _write_atomic(path: Path, payload: Any) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, path)


class EmbeddingCache:
    """Content-addressed memoization of embeddings, keyed by id or question id."""

    def __init__(
        self,
        model_tag: str,
        store: Optional[CacheStore] = None,
        cache_dir: Optional[str] = None,
        schema_version: str = SCHEMA_VERSION,
        async_persist: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the embedding cache.

        Args:
            model_tag: Embedding model the cached vectors must come from
            store: Durable storage; defaults to JSON files in cache_dir
            cache_dir: Directory for the default JSON store
            schema_version: Persisted layout version
            async_persist: Persist on a background thread instead of inline
            clock: Source of timestamps
        """
        self.model_tag = model_tag
        self.store = store or JsonFileCacheStore(cache_dir or Config.CACHE_DIR)
        self.schema_version = schema_version
        self._clock = clock
        self._entries: Dict[str, CachedEmbedding] = {}
        self._dimension: Optional[int] = None
        self._created_at: Optional[datetime] = None
        self._state = CacheState.UNINITIALIZED
        self._lock = threading.RLock()
        self._init_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cache-persist") if async_persist else None
        self._last_persist: Optional[Future] = None

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def is_loaded(self) -> bool:
        return self._state == CacheState.READY

    def initialize(self) -> None:
        """Load persisted entries. Safe to call repeatedly."""
        if self._state == CacheState.READY:
            return
        with self._init_lock:
            if self._state == CacheState.READY:
                return
            self._state = CacheState.LOADING
            logger.info("🗄️ Initializing embedding cache at %s...", self.store.location)
            try:
                self.store.ensure()
                self._load()
            except Exception as e:
                logger.warning("⚠️ Cache initialization failed, continuing without persisted cache: %s", e)
                with self._lock:
                    self._entries.clear()
                    self._dimension = None
            self._state = CacheState.READY
            logger.info("✅ Embedding cache initialized with %d cached embeddings", len(self._entries))

    def _ensure_ready(self) -> None:
        if self._state != CacheState.READY:
            self.initialize()

    def _load(self) -> None:
        raw_metadata, raw_entries = self.store.load()
        if raw_metadata is None:
            if raw_entries:
                logger.warning("⚠️ Cache entries found without metadata, discarding")
                self._discard_persisted()
            else:
                logger.info("📂 No existing cache found, starting fresh")
            return

        try:
            metadata = CacheMetadata.from_dict(raw_metadata)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("⚠️ Unreadable cache metadata (%s), discarding cache", e)
            self._discard_persisted()
            return

        if metadata.model != self.model_tag:
            logger.info(
                "🔄 Cache model mismatch (%s vs %s), invalidating cache", metadata.model, self.model_tag
            )
            self._discard_persisted()
            return
        if metadata.version != self.schema_version:
            logger.info(
                "🔄 Cache schema mismatch (%s vs %s), invalidating cache", metadata.version, self.schema_version
            )
            self._discard_persisted()
            return

        dropped = 0
        with self._lock:
            for raw in raw_entries:
                try:
                    entry = CachedEmbedding.from_dict(raw)
                except (KeyError, TypeError, ValueError):
                    dropped += 1
                    continue
                if entry.model != self.model_tag:
                    dropped += 1
                    continue
                if self._dimension is None:
                    self._dimension = len(entry.embedding)
                elif len(entry.embedding) != self._dimension:
                    dropped += 1
                    continue
                self._entries[entry.id] = entry
            self._created_at = metadata.created_at

        if dropped:
            logger.warning("⚠️ Dropped %d invalid cache entries", dropped)
        logger.info(
            "📚 Loaded %d embeddings from cache (%d total in file)", len(self._entries), metadata.embedding_count
        )

    def _discard_persisted(self) -> None:
        with self._lock:
            self._entries.clear()
            self._dimension = None
        try:
            self.store.clear()
        except Exception as e:
            logger.warning("⚠️ Could not remove stale cache files: %s", e)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_entry(self, id: str, text: Optional[str] = None) -> Optional[CachedEmbedding]:
        """Return the cached record, or None.

        When text is given, a record whose hash differs from hash(text) counts
        as a miss because the content changed since it was cached.
        """
        self._ensure_ready()
        with self._lock:
            entry = self._entries.get(id)
        if entry is None:
            return None
        if text is not None and entry.text_hash != hash_text(text):
            return None
        return entry

    def get_embedding(self, id: str, text: Optional[str] = None) -> Optional[List[float]]:
        entry = self.get_entry(id, text)
        return list(entry.embedding) if entry else None

    def has_embedding(self, id: str, text: Optional[str] = None) -> bool:
        return self.get_entry(id, text) is not None

    def get_batch_embeddings(self, ids: Iterable[str]) -> Dict[str, List[float]]:
        results = {}
        for id in ids:
            embedding = self.get_embedding(id)
            if embedding:
                results[id] = embedding
        return results

    def get_question_embedding(
        self, question_id: QuestionId, text: Optional[str] = None
    ) -> Optional[CachedEmbedding]:
        return self.get_entry(question_cache_key(question_id), text)

    def has_question_embedding(self, question_id: QuestionId) -> bool:
        return self.get_question_embedding(question_id) is not None

    def get_cached_question_ids(self) -> List[QuestionId]:
        self._ensure_ready()
        with self._lock:
            ids = {e.question_id for e in self._entries.values() if e.question_id is not None}
        return sorted(ids, key=str)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _build_entry(
        self, id: str, text: str, embedding: Sequence[float], question_id: Optional[QuestionId] = None
    ) -> CachedEmbedding:
        if not id or not text or not text.strip() or not embedding:
            raise ValidationError("Invalid text or embedding data")
        return CachedEmbedding(
            id=id,
            text=text,
            embedding=[float(x) for x in embedding],
            text_hash=hash_text(text),
            created_at=self._clock(),
            model=self.model_tag,
            question_id=question_id,
        )

    def _upsert(self, entries: List[CachedEmbedding]) -> None:
        # Caller holds self._lock
        dimensions = {len(entry.embedding) for entry in entries}
        if len(dimensions) > 1:
            raise ValidationError(f"Embeddings in one write must share a dimension, got {sorted(dimensions)}")
        dimension = dimensions.pop()
        if self._entries and self._dimension is not None and dimension != self._dimension:
            raise ValidationError(
                f"Embedding dimension {dimension} does not match cache dimension {self._dimension}"
            )
        for entry in entries:
            self._entries[entry.id] = entry
            self._dimension = len(entry.embedding)

    def store_embedding(
        self, id: str, text: str, embedding: Sequence[float], question_id: Optional[QuestionId] = None
    ) -> CachedEmbedding:
        """Upsert one embedding and schedule a persist."""
        self._ensure_ready()
        entry = self._build_entry(id, text, embedding, question_id)
        with self._lock:
            self._upsert([entry])
        self._schedule_persist()
        return entry

    def store_batch_embeddings(self, items: Iterable[Dict[str, Any]]) -> int:
        """Upsert several {id, text, embedding} items; invalid items are skipped.

        Returns:
            Number of stored entries
        """
        self._ensure_ready()
        entries = []
        for item in items:
            try:
                entries.append(
                    self._build_entry(
                        item.get("id"), item.get("text"), item.get("embedding"), item.get("question_id")
                    )
                )
            except (ValidationError, AttributeError, TypeError):
                continue
        if not entries:
            return 0
        with self._lock:
            self._upsert(entries)
        logger.info("💾 Stored %d embeddings in cache", len(entries))
        self._schedule_persist()
        return len(entries)

    def store_question_embedding(
        self, question_id: QuestionId, text: str, embedding: Sequence[float]
    ) -> CachedEmbedding:
        entry = self.store_embedding(question_cache_key(question_id), text, embedding, question_id)
        logger.debug("Cached embedding for question %s", question_id)
        return entry

    def store_question_embeddings(
        self, items: Iterable[Tuple[QuestionId, str, Sequence[float]]]
    ) -> int:
        """Upsert (question_id, text, embedding) triples in one write."""
        self._ensure_ready()
        entries = [
            self._build_entry(question_cache_key(qid), text, embedding, qid)
            for qid, text, embedding in items
        ]
        if not entries:
            return 0
        with self._lock:
            self._upsert(entries)
        logger.info("💾 Cached embeddings for %d questions", len(entries))
        self._schedule_persist()
        return len(entries)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def remove_embedding(self, id: str) -> bool:
        self._ensure_ready()
        with self._lock:
            removed = self._entries.pop(id, None) is not None
            if not self._entries:
                self._dimension = None
        if removed:
            self._schedule_persist()
        return removed

    def clear_cache(self) -> None:
        self._ensure_ready()
        with self._lock:
            self._entries.clear()
            self._dimension = None
        self._schedule_persist()
        logger.info("🗑️ Cache cleared")

    def cleanup(self, max_age: Optional[Union[timedelta, float]] = None) -> int:
        """Remove entries older than max_age (a timedelta or seconds).

        Without max_age nothing is deleted.

        Returns:
            Number of removed entries
        """
        if not max_age:
            return 0
        self._ensure_ready()
        if not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=float(max_age))

        cutoff = self._clock() - max_age
        with self._lock:
            stale = [id for id, entry in self._entries.items() if entry.created_at < cutoff]
            for id in stale:
                del self._entries[id]
            if not self._entries:
                self._dimension = None

        if stale:
            self._schedule_persist()
            logger.info("🧹 Cleaned up %d old cache entries", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _snapshot(self) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        # Caller holds self._lock
        now = self._clock()
        if self._created_at is None:
            self._created_at = now
        entries = list(self._entries.values())
        metadata = CacheMetadata(
            version=self.schema_version,
            model=self.model_tag,
            created_at=self._created_at,
            last_updated=now,
            embedding_count=len(entries),
            question_ids=sorted(
                {e.question_id for e in entries if e.question_id is not None}, key=str
            ),
        )
        return metadata.to_dict(), [e.to_dict() for e in entries]

    def _schedule_persist(self) -> None:
        with self._lock:
            metadata, entries = self._snapshot()
            if self._executor is None:
                self._persist(metadata, entries)
                return
            self._last_persist = self._executor.submit(self._persist, metadata, entries)

    def _persist(self, metadata: Dict[str, Any], entries: List[Dict[str, Any]]) -> None:
        try:
            self.store.save(metadata, entries)
        except Exception as e:
            logger.error("Warning: Failed to persist cache to disk: %s", e)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait until every scheduled persist has completed."""
        future = self._last_persist
        if future is not None:
            future.result(timeout=timeout)

    def close(self) -> None:
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> CacheStats:
        """Entry count, timestamp range and configured model."""
        self._ensure_ready()
        return self._stats()

    def _stats(self) -> CacheStats:
        with self._lock:
            timestamps = [e.created_at for e in self._entries.values()]
            size = len(self._entries)
            dimension = self._dimension
        return CacheStats(
            size=size,
            model=self.model_tag,
            dimension=dimension,
            oldest_entry=min(timestamps) if timestamps else None,
            newest_entry=max(timestamps) if timestamps else None,
        )

    def get_status(self) -> Dict[str, Any]:
        """Load state and statistics, without forcing a load."""
        return {
            "is_loaded": self.is_loaded,
            "state": self._state.value,
            "cache_dir": self.store.location,
            "stats": self._stats().to_dict(),
        }
