import math

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import List, Dict, Any, Optional, Union
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum

from tech_eval.config import AppConstants, Config

QuestionId = Union[int, str]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EmbeddingPurpose(str, Enum):
    """What an embedding is used for; providers may optimize per purpose."""
    DOCUMENT = "document"
    QUERY = "query"


class Band(str, Enum):
    """Ordered qualitative classification of a combined score."""
    EXCELLENT = "excellent"
    GOOD = "good"
    PARTIAL = "partial"
    POOR = "poor"


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class CacheState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


class RetryPolicy(BaseModel):
    """Bounded retry with exponential backoff for provider calls."""
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=10.0, ge=0.0)


class EmbeddingConfig(BaseModel):
    """Configuration for embeddings."""
    model: str = "text-embedding-3-small"
    chunk_size: int = 1000
    request_timeout: int = 60
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


class CacheConfig(BaseModel):
    """Configuration for the persistent embedding cache."""
    cache_dir: str = Config.CACHE_DIR
    schema_version: str = Config.CACHE_SCHEMA_VERSION
    async_persist: bool = Config.CACHE_ASYNC_PERSIST


class EvaluationConfig(BaseModel):
    """Thresholds and weights for answer scoring."""
    model_config = ConfigDict(extra="forbid")

    excellent_threshold: float = Field(default=0.85, ge=0.0, le=1.0)
    good_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    partial_threshold: float = Field(default=0.50, ge=0.0, le=1.0)
    semantic_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    display_scale: float = Field(default=10.0, gt=0.0)

    @model_validator(mode="after")
    def _check_threshold_order(self):
        if not (self.excellent_threshold >= self.good_threshold >= self.partial_threshold):
            raise ValueError(
                "thresholds must satisfy excellent >= good >= partial "
                f"(got {self.excellent_threshold}, {self.good_threshold}, {self.partial_threshold})"
            )
        return self


class QuestionRecord(BaseModel):
    """Schema for one raw question-bank record."""
    id: Union[int, str]
    role: str = AppConstants.DEFAULT_ROLE
    question: str
    reference_answer: str
    keywords: List[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _check_id(cls, v):
        if isinstance(v, bool):
            raise ValueError("id must be an integer or string")
        if isinstance(v, str):
            v = v.strip()
            if not v:
                raise ValueError("id must not be blank")
        return v

    @field_validator("role", mode="before")
    @classmethod
    def _default_role(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return AppConstants.DEFAULT_ROLE
        return v

    @field_validator("question")
    @classmethod
    def _check_question(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("question must not be blank")
        return v

    @field_validator("reference_answer")
    @classmethod
    def _check_reference_answer(cls, v: str) -> str:
        if len(v.strip()) < AppConstants.MIN_REFERENCE_ANSWER_CHARS:
            raise ValueError(
                f"reference answer must be at least {AppConstants.MIN_REFERENCE_ANSWER_CHARS} characters"
            )
        return v

    @field_validator("keywords", mode="before")
    @classmethod
    def _clean_keywords(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            return []
        return [k.strip() for k in v if isinstance(k, str) and k.strip()]


@dataclass(frozen=True)
class Question:
    """A validated question-bank entry."""
    id: QuestionId
    role: str
    question_text: str
    reference_answer: str
    keywords: List[str] = field(default_factory=list)
    reference_embedding: Optional[List[float]] = None

    @property
    def key(self) -> str:
        return question_key(self.id)

    def to_public_dict(self) -> Dict[str, Any]:
        """Question fields without the embedding vector."""
        return {
            "id": self.id,
            "role": self.role,
            "question": self.question_text,
            "reference_answer": self.reference_answer,
            "keywords": list(self.keywords),
        }


def question_key(question_id: QuestionId) -> str:
    """Normalized lookup key so that 7 and "7" address the same question."""
    return str(question_id).strip()


@dataclass
class RecordFailure:
    """Why a raw question record was dropped."""
    index: int
    record_id: Optional[str]
    reason: str


@dataclass
class CachedEmbedding:
    """One cache entry."""
    id: str
    text: str
    embedding: List[float]
    text_hash: str
    created_at: datetime
    model: str
    question_id: Optional[QuestionId] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question_id": self.question_id,
            "text": self.text,
            "embedding": list(self.embedding),
            "text_hash": self.text_hash,
            "created_at": self.created_at.isoformat(),
            "model": self.model,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedEmbedding":
        """Rebuild an entry from its persisted form.

        Raises:
            ValueError: if the record is malformed
        """
        if not isinstance(data, dict):
            raise ValueError("cache record is not an object")
        embedding = data.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise ValueError("cache record has no embedding")
        for key in ("id", "text", "text_hash", "model", "created_at"):
            if not isinstance(data.get(key), str):
                raise ValueError(f"cache record field '{key}' missing or not a string")
        vector = [float(x) for x in embedding]
        if not all(math.isfinite(x) for x in vector):
            raise ValueError("cache record embedding has non-finite values")
        question_id = data.get("question_id")
        if question_id is not None and (isinstance(question_id, bool) or not isinstance(question_id, (int, str))):
            raise ValueError("cache record question_id must be an integer, string or null")
        return cls(
            id=data["id"],
            text=data["text"],
            embedding=vector,
            text_hash=data["text_hash"],
            created_at=datetime.fromisoformat(data["created_at"]),
            model=data["model"],
            question_id=question_id,
        )


@dataclass
class CacheMetadata:
    """Persisted cache header, used only to decide whether the cache is still valid."""
    version: str
    model: str
    created_at: datetime
    last_updated: datetime
    embedding_count: int
    question_ids: List[QuestionId] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "model": self.model,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
            "embedding_count": self.embedding_count,
            "question_ids": list(self.question_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheMetadata":
        if not isinstance(data, dict):
            raise ValueError("cache metadata is not an object")
        return cls(
            version=str(data.get("version", "")),
            model=str(data.get("model", "")),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_updated=datetime.fromisoformat(data["last_updated"]),
            embedding_count=int(data.get("embedding_count", 0)),
            question_ids=list(data.get("question_ids") or []),
        )


@dataclass
class CacheStats:
    """Statistics about the in-memory cache."""
    size: int
    model: str
    dimension: Optional[int] = None
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("oldest_entry", "newest_entry"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class SimilarityMatch:
    """Best candidate found by a similarity scan."""
    index: int
    similarity: float
    skipped: List[int] = field(default_factory=list)


@dataclass
class EvaluationResult:
    """Result of evaluating one candidate answer."""
    question_id: QuestionId
    semantic_similarity: float
    keyword_coverage: float
    combined_score: float
    display_score: float
    band: Band
    is_correct: bool
    matched_keywords: List[str] = field(default_factory=list)
    missing_keywords: List[str] = field(default_factory=list)
    feedback: str = ""
    suggestions: List[str] = field(default_factory=list)
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: utc_now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["band"] = self.band.value
        return data
