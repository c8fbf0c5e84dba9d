"""Shared fakes and fixtures: no test touches the network."""

import re
import hashlib
from typing import Dict, List, Optional, Sequence

import pytest

from tech_eval.embedding_cache import EmbeddingCache, JsonFileCacheStore
from tech_eval.embedding_service import EmbeddingService
from tech_eval.errors import CacheError
from tech_eval.evaluator import TechnicalEvaluator
from tech_eval.models import EmbeddingPurpose, RetryPolicy

DIM = 32
_TOKEN = re.compile(r"[a-z0-9()]+")


def _normalize(text: str) -> str:
    return " ".join(text.split())


def unit_vector(*weights: float) -> List[float]:
    """Pad the leading weights with zeros up to the fake dimension."""
    return list(weights) + [0.0] * (DIM - len(weights))


def bag_of_words(text: str) -> List[float]:
    vector = [0.0] * DIM
    for token in _TOKEN.findall(text.lower()):
        slot = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % DIM
        vector[slot] += 1.0
    return vector


class FakeBackend:
    """Deterministic embedding backend that records every call.

    Args:
        overrides: Fixed vectors for specific texts
        failures: Exceptions raised by the first calls, one per call
        model_tag: Tag written to cache entries
    """

    def __init__(
        self,
        overrides: Optional[Dict[str, Sequence[float]]] = None,
        failures: Optional[List[BaseException]] = None,
        model_tag: str = "fake-embedding-v1",
    ):
        self.overrides = {_normalize(k): list(v) for k, v in (overrides or {}).items()}
        self.failures = list(failures or [])
        self.model_tag = model_tag
        self.calls = []

    def embed(self, texts: List[str], purpose: EmbeddingPurpose) -> List[List[float]]:
        self.calls.append((tuple(texts), purpose))
        if self.failures:
            raise self.failures.pop(0)
        return [self.overrides.get(_normalize(t)) or bag_of_words(t) for t in texts]

    def embedded_texts(self) -> List[str]:
        """Texts sent to the backend, excluding connectivity probes."""
        return [t for texts, _ in self.calls for t in texts if t != "test connectivity"]


class FailingStore:
    """Store whose writes always fail."""

    location = "<failing>"

    def __init__(self, load_error: bool = False):
        self.load_error = load_error
        self.save_attempts = 0

    def ensure(self):
        pass

    def load(self):
        if self.load_error:
            raise CacheError("disk unreadable")
        return None, []

    def save(self, metadata, entries):
        self.save_attempts += 1
        raise CacheError("disk full")

    def clear(self):
        pass


class BrokenDriverStore:
    """Store whose driver raises something other than CacheError on every call."""

    location = "<broken-driver>"

    def __init__(self):
        self.calls = []

    def _fail(self, operation):
        self.calls.append(operation)
        raise RuntimeError("db driver exploded")

    def ensure(self):
        self._fail("ensure")

    def load(self):
        self._fail("load")

    def save(self, metadata, entries):
        self._fail("save")

    def clear(self):
        self._fail("clear")


SAMPLE_QUESTIONS = [
    {
        "id": 1,
        "role": "Software Engineer",
        "question": "What is an array and what is the cost of accessing an element?",
        "reference_answer": "An array stores elements in contiguous memory and gives O(1) access by index.",
        "keywords": ["array", "index", "O(1)"],
    },
    {
        "id": 2,
        "role": "Software Engineer",
        "question": "Explain the difference between a process and a thread.",
        "reference_answer": "A process has its own address space while threads share the memory of their process.",
        "keywords": ["process", "thread", "memory"],
    },
    {
        "id": "sql-1",
        "role": "Backend Developer",
        "question": "What is the difference between SQL and NoSQL databases?",
        "reference_answer": "SQL databases use fixed schemas and ACID transactions; NoSQL stores use flexible schemas.",
        "keywords": ["schema", "ACID", "transactions"],
    },
]

ARRAY_REFERENCE = SAMPLE_QUESTIONS[0]["reference_answer"]


def no_sleep(_seconds):
    pass


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def service(backend):
    return EmbeddingService(backend, retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0), sleep=no_sleep)


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def cache(cache_dir, backend):
    cache = EmbeddingCache(backend.model_tag, store=JsonFileCacheStore(cache_dir), async_persist=False)
    yield cache
    cache.close()


def make_evaluator(backend, cache_dir, questions=None, **kwargs):
    service = EmbeddingService(backend, retry_policy=RetryPolicy(max_attempts=3, base_delay=0.0), sleep=no_sleep)
    cache = EmbeddingCache(backend.model_tag, store=JsonFileCacheStore(cache_dir), async_persist=False)
    return TechnicalEvaluator(
        service, cache, question_source=questions if questions is not None else SAMPLE_QUESTIONS, **kwargs
    )


@pytest.fixture
def evaluator(backend, cache_dir):
    engine = make_evaluator(backend, cache_dir)
    engine.initialize()
    yield engine
    engine.embedding_cache.close()
