"""
Tests for tech_eval.embedding_cache

Covers:
- Store / get round trip with content validation
- Persistence across instances and invalidation on model or schema change
- Dropping malformed or inconsistent entries on load
- Storage failures never failing the caller
- Lazy initialization, cleanup, clear and stats
- Concurrent writers
"""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from conftest import BrokenDriverStore, FailingStore, unit_vector
from tech_eval.embedding_cache import EmbeddingCache, JsonFileCacheStore, hash_text, question_cache_key
from tech_eval.errors import ValidationError
from tech_eval.models import CacheState


def make_cache(cache_dir, model_tag="fake-embedding-v1", **kwargs):
    kwargs.setdefault("async_persist", False)
    return EmbeddingCache(model_tag, store=JsonFileCacheStore(cache_dir), **kwargs)


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


class TestHashText:
    def test_whitespace_insensitive(self):
        assert hash_text("hello   world") == hash_text(" hello world\n")

    def test_content_sensitive(self):
        assert hash_text("hello world") != hash_text("hello there")


class TestStoreAndGet:
    def test_round_trip(self, cache):
        cache.store_embedding("k", "text", unit_vector(0.1, 0.2, 0.3))

        entry = cache.get_entry("k")

        assert entry.embedding == unit_vector(0.1, 0.2, 0.3)
        assert entry.text_hash == hash_text("text")
        assert entry.model == "fake-embedding-v1"

    def test_changed_text_is_a_miss(self, cache):
        cache.store_embedding("k", "original text", unit_vector(1.0))

        assert cache.get_embedding("k", text="original text") == unit_vector(1.0)
        assert cache.get_embedding("k", text="edited text") is None
        assert cache.has_embedding("k") is True

    def test_unknown_id_is_a_miss(self, cache):
        assert cache.get_entry("missing") is None

    @pytest.mark.parametrize("text, embedding", [("", [1.0]), ("   ", [1.0]), ("text", [])])
    def test_invalid_input_raises(self, cache, text, embedding):
        with pytest.raises(ValidationError):
            cache.store_embedding("k", text, embedding)

    def test_batch_skips_invalid_items(self, cache):
        stored = cache.store_batch_embeddings([
            {"id": "a", "text": "alpha", "embedding": unit_vector(1.0)},
            {"id": "b", "text": "", "embedding": unit_vector(1.0)},
            {"id": "c", "text": "gamma", "embedding": unit_vector(0.0, 1.0)},
        ])

        assert stored == 2
        assert set(cache.get_batch_embeddings(["a", "b", "c"])) == {"a", "c"}

    def test_question_round_trip_keeps_vector_and_hash(self, cache):
        cache.store_question_embedding(7, "text", [0.1, 0.2])

        entry = cache.get_question_embedding(7)

        assert entry.embedding == [0.1, 0.2]
        assert entry.text_hash == hash_text("text")

    def test_question_helpers(self, cache):
        cache.store_question_embedding(7, "reference answer text", unit_vector(1.0))

        assert cache.has_question_embedding(7)
        assert cache.get_question_embedding("7", text="reference answer text") is not None
        assert cache.get_cached_question_ids() == [7]
        assert cache.get_entry(question_cache_key(7)).question_id == 7

    def test_dimension_conflict_raises(self, cache):
        cache.store_embedding("a", "alpha", [1.0, 0.0])

        with pytest.raises(ValidationError):
            cache.store_embedding("b", "beta", [1.0, 0.0, 0.0])

    def test_mixed_dimensions_in_one_write_raise(self, cache):
        with pytest.raises(ValidationError):
            cache.store_question_embeddings([(1, "alpha", [1.0]), (2, "beta", [1.0, 0.0])])

    def test_remove_embedding(self, cache):
        cache.store_embedding("a", "alpha", unit_vector(1.0))

        assert cache.remove_embedding("a") is True
        assert cache.remove_embedding("a") is False
        assert cache.get_entry("a") is None


class TestPersistence:
    def test_entries_survive_restart(self, cache_dir):
        first = make_cache(cache_dir)
        first.store_question_embedding(1, "reference", unit_vector(0.5, 0.5))
        first.close()

        second = make_cache(cache_dir)
        entry = second.get_question_embedding(1, text="reference")

        assert entry is not None
        assert entry.embedding == unit_vector(0.5, 0.5)

    def test_async_persist_lands_after_flush(self, cache_dir):
        cache = make_cache(cache_dir, async_persist=True)
        cache.store_embedding("a", "alpha", unit_vector(1.0))
        cache.flush(timeout=5)

        entries = json.loads((cache_dir / "embeddings.json").read_text(encoding="utf-8"))
        metadata = json.loads((cache_dir / "metadata.json").read_text(encoding="utf-8"))
        cache.close()

        assert [e["id"] for e in entries] == ["a"]
        assert metadata["model"] == "fake-embedding-v1"
        assert metadata["embedding_count"] == 1

    def test_model_change_invalidates_cache(self, cache_dir):
        first = make_cache(cache_dir, model_tag="model-a")
        first.store_embedding("a", "alpha", unit_vector(1.0))
        first.close()

        second = make_cache(cache_dir, model_tag="model-b")

        assert second.get_entry("a") is None
        assert second.get_stats().size == 0
        assert not (cache_dir / "embeddings.json").exists()

    def test_schema_change_invalidates_cache(self, cache_dir):
        first = make_cache(cache_dir, schema_version="1.0.0")
        first.store_embedding("a", "alpha", unit_vector(1.0))
        first.close()

        second = make_cache(cache_dir, schema_version="2.0.0")

        assert second.get_entry("a") is None

    def test_invalid_entries_are_dropped_on_load(self, cache_dir):
        first = make_cache(cache_dir)
        first.store_batch_embeddings([
            {"id": "a", "text": "alpha", "embedding": [1.0, 0.0]},
            {"id": "b", "text": "beta", "embedding": [0.0, 1.0]},
        ])
        first.close()

        path = cache_dir / "embeddings.json"
        entries = json.loads(path.read_text(encoding="utf-8"))
        entries.append({"id": "broken", "text": "x"})
        entries.append(dict(entries[0], id="wrong-dim", embedding=[1.0, 0.0, 0.0]))
        entries.append(dict(entries[0], id="wrong-model", model="other"))
        path.write_text(json.dumps(entries), encoding="utf-8")

        second = make_cache(cache_dir)

        assert second.get_stats().size == 2
        assert second.get_entry("broken") is None
        assert second.get_entry("wrong-dim") is None
        assert second.get_entry("wrong-model") is None

    @pytest.mark.parametrize("bad_question_id", [[1, 2], {"id": 1}, True, 1.5])
    def test_malformed_question_id_is_dropped_on_load(self, cache_dir, bad_question_id):
        first = make_cache(cache_dir)
        first.store_question_embedding(1, "alpha", [1.0, 0.0])
        first.close()

        path = cache_dir / "embeddings.json"
        entries = json.loads(path.read_text(encoding="utf-8"))
        entries.append(dict(entries[0], id="question_bad", question_id=bad_question_id))
        path.write_text(json.dumps(entries), encoding="utf-8")

        second = make_cache(cache_dir)
        second.store_question_embedding(2, "beta", [0.0, 1.0])

        assert second.get_entry("question_bad") is None
        assert second.get_cached_question_ids() == [1, 2]

    def test_non_finite_vector_is_dropped_on_load(self, cache_dir):
        first = make_cache(cache_dir)
        first.store_embedding("a", "alpha", [1.0, 0.0])
        first.close()

        path = cache_dir / "embeddings.json"
        entries = json.loads(path.read_text(encoding="utf-8"))
        entries.append(dict(entries[0], id="nan", embedding=[float("nan"), 1.0]))
        path.write_text(json.dumps(entries), encoding="utf-8")

        assert make_cache(cache_dir).get_entry("nan") is None

    def test_corrupt_files_start_fresh(self, cache_dir):
        cache_dir.mkdir(parents=True)
        (cache_dir / "embeddings.json").write_text("{not json", encoding="utf-8")
        (cache_dir / "metadata.json").write_text("{}", encoding="utf-8")

        cache = make_cache(cache_dir)
        cache.store_embedding("a", "alpha", unit_vector(1.0))

        assert cache.state == CacheState.READY
        assert cache.get_entry("a") is not None


class TestStorageFailures:
    def test_failed_save_does_not_fail_store(self):
        store = FailingStore()
        cache = EmbeddingCache("fake-embedding-v1", store=store, async_persist=False)

        cache.store_embedding("a", "alpha", unit_vector(1.0))

        assert store.save_attempts == 1
        assert cache.get_entry("a") is not None

    def test_failed_async_save_is_logged_not_raised(self):
        store = FailingStore()
        cache = EmbeddingCache("fake-embedding-v1", store=store, async_persist=True)

        cache.store_embedding("a", "alpha", unit_vector(1.0))
        cache.flush(timeout=5)
        cache.close()

        assert store.save_attempts == 1

    def test_failed_load_starts_empty(self):
        cache = EmbeddingCache("fake-embedding-v1", store=FailingStore(load_error=True), async_persist=False)

        cache.initialize()

        assert cache.is_loaded
        assert cache.get_stats().size == 0

    def test_unexpected_store_errors_leave_cache_usable(self):
        store = BrokenDriverStore()
        cache = EmbeddingCache("fake-embedding-v1", store=store, async_persist=False)

        cache.initialize()
        cache.store_embedding("a", "alpha", unit_vector(1.0))
        cache.clear_cache()
        cache.store_embedding("b", "beta", unit_vector(1.0))

        assert cache.state == CacheState.READY
        assert cache.get_entry("b") is not None
        assert store.calls == ["ensure", "save", "save", "save"]

    def test_unexpected_async_save_error_is_not_reraised_on_close(self):
        store = BrokenDriverStore()
        cache = EmbeddingCache("fake-embedding-v1", store=store, async_persist=True)

        cache.store_embedding("a", "alpha", unit_vector(1.0))
        cache.flush(timeout=5)
        cache.close()

        assert "save" in store.calls


class TestLifecycle:
    def test_reads_initialize_lazily(self, cache_dir):
        cache = make_cache(cache_dir)
        assert cache.state == CacheState.UNINITIALIZED

        cache.get_entry("anything")

        assert cache.state == CacheState.READY

    def test_status_does_not_force_load(self, cache_dir):
        cache = make_cache(cache_dir)

        status = cache.get_status()

        assert status["is_loaded"] is False
        assert status["cache_dir"] == str(cache_dir)
        assert cache.state == CacheState.UNINITIALIZED

    def test_clear_cache(self, cache):
        cache.store_embedding("a", "alpha", unit_vector(1.0))

        cache.clear_cache()

        assert cache.get_stats().size == 0

    def test_cleanup_removes_old_entries(self, cache_dir):
        clock = FakeClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        cache = make_cache(cache_dir, clock=clock)
        cache.store_embedding("old", "old text", unit_vector(1.0))
        clock.now = clock.now + timedelta(days=40)
        cache.store_embedding("new", "new text", unit_vector(1.0))

        removed = cache.cleanup(timedelta(days=30))

        assert removed == 1
        assert cache.get_entry("old") is None
        assert cache.get_entry("new") is not None

    def test_cleanup_without_max_age_is_a_no_op(self, cache):
        cache.store_embedding("a", "alpha", unit_vector(1.0))

        assert cache.cleanup() == 0
        assert cache.get_stats().size == 1

    def test_stats(self, cache_dir):
        clock = FakeClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        cache = make_cache(cache_dir, clock=clock)
        cache.store_embedding("a", "alpha", [1.0, 0.0, 0.0])
        clock.now = clock.now + timedelta(hours=1)
        cache.store_embedding("b", "beta", [0.0, 1.0, 0.0])

        stats = cache.get_stats()

        assert stats.size == 2
        assert stats.dimension == 3
        assert stats.oldest_entry == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert stats.newest_entry == datetime(2024, 1, 1, 1, tzinfo=timezone.utc)


class TestConcurrency:
    def test_concurrent_writers_do_not_lose_entries(self, cache_dir):
        cache = make_cache(cache_dir, async_persist=True)
        errors = []

        def writer(start):
            try:
                for i in range(start, start + 25):
                    cache.store_embedding(f"id-{i}", f"text {i}", unit_vector(float(i + 1)))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n * 25,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        cache.flush(timeout=10)
        cache.close()

        assert errors == []
        assert cache.get_stats().size == 100

        reloaded = make_cache(cache_dir)
        assert reloaded.get_stats().size == 100
