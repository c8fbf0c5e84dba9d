"""
Question bank loading utilities.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Sequence, Union

import pydantic

from tech_eval.errors import ValidationError
from tech_eval.models import Question, QuestionRecord, RecordFailure, question_key

logger = logging.getLogger(__name__)

QuestionSource = Union[str, Path, Sequence[Mapping[str, Any]]]


@dataclass
class QuestionBankLoad:
    """Outcome of loading a question bank: the valid questions and every dropped record."""
    questions: List[Question] = field(default_factory=list)
    failures: List[RecordFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.questions)


def read_question_records(source: QuestionSource) -> List[Any]:
    """Read raw records from a JSON file path or an in-memory sequence.

    A file may contain a list of records or an object with a "questions" list.

    Raises:
        ValidationError: if the file cannot be read or has the wrong shape
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ValidationError(f"Failed to read question bank {path}: {e}") from e
    else:
        data = source

    if isinstance(data, Mapping) and "questions" in data:
        data = data["questions"]
    if not isinstance(data, (list, tuple)):
        raise ValidationError("Technical questions data is not a list")
    return list(data)


def validate_question_records(records: Sequence[Any]) -> QuestionBankLoad:
    """Validate raw records against the question schema.

    Invalid records and duplicate ids are collected as failures, not raised.
    """
    result = QuestionBankLoad()
    seen = set()

    for index, raw in enumerate(records):
        record_id = None
        if isinstance(raw, Mapping) and raw.get("id") is not None:
            record_id = str(raw.get("id"))
        try:
            record = QuestionRecord.model_validate(raw)
        except pydantic.ValidationError as e:
            reasons = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}" for err in e.errors()
            )
            result.failures.append(RecordFailure(index=index, record_id=record_id, reason=reasons))
            continue

        key = question_key(record.id)
        if key in seen:
            result.failures.append(
                RecordFailure(index=index, record_id=record_id, reason=f"duplicate question id {record.id}")
            )
            continue
        seen.add(key)

        result.questions.append(Question(
            id=record.id,
            role=record.role,
            question_text=record.question,
            reference_answer=record.reference_answer,
            keywords=list(record.keywords),
        ))

    return result


def load_question_bank(source: QuestionSource) -> QuestionBankLoad:
    """Load and validate a question bank, logging each dropped record."""
    records = read_question_records(source)
    result = validate_question_records(records)

    for failure in result.failures:
        logger.warning(
            "Skipping invalid question (index %d, id %s): %s",
            failure.index, failure.record_id, failure.reason,
        )
    logger.info("📚 Loaded %d technical questions (%d dropped)", len(result.questions), len(result.failures))
    return result
