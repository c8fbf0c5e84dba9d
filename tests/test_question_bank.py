"""Tests for tech_eval.question_bank"""

import json

import pytest

from conftest import SAMPLE_QUESTIONS
from tech_eval.config import Config
from tech_eval.errors import ValidationError
from tech_eval.question_bank import load_question_bank, read_question_records, validate_question_records


class TestReadQuestionRecords:
    def test_reads_list_file(self, tmp_path):
        path = tmp_path / "questions.json"
        path.write_text(json.dumps(SAMPLE_QUESTIONS), encoding="utf-8")

        assert len(read_question_records(path)) == 3

    def test_reads_wrapped_object(self, tmp_path):
        path = tmp_path / "questions.json"
        path.write_text(json.dumps({"questions": SAMPLE_QUESTIONS}), encoding="utf-8")

        assert len(read_question_records(str(path))) == 3

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(ValidationError):
            read_question_records(tmp_path / "nope.json")

    def test_non_list_raises(self):
        with pytest.raises(ValidationError):
            read_question_records({"not": "questions"})


class TestValidateQuestionRecords:
    def test_valid_records_become_questions(self):
        result = validate_question_records(SAMPLE_QUESTIONS)

        assert result.ok
        assert [q.id for q in result.questions] == [1, 2, "sql-1"]
        assert result.failures == []

    def test_invalid_records_are_reported_not_raised(self):
        records = [
            SAMPLE_QUESTIONS[0],
            {"id": 5, "question": "Too short?", "reference_answer": "tiny"},
            {"id": 6, "reference_answer": "A perfectly long reference answer."},
            "not a record",
            {"id": True, "question": "Bool id?", "reference_answer": "A perfectly long reference answer."},
        ]

        result = validate_question_records(records)

        assert [q.id for q in result.questions] == [1]
        assert [f.index for f in result.failures] == [1, 2, 3, 4]
        assert "reference_answer" in result.failures[0].reason

    def test_duplicate_ids_are_rejected(self):
        duplicate = dict(SAMPLE_QUESTIONS[1], id="1")

        result = validate_question_records([SAMPLE_QUESTIONS[0], duplicate])

        assert len(result.questions) == 1
        assert "duplicate" in result.failures[0].reason

    def test_defaults_role_and_cleans_keywords(self):
        record = {
            "id": "q",
            "role": "  ",
            "question": "What is a queue?",
            "reference_answer": "A queue is a first-in first-out collection.",
            "keywords": [" FIFO ", "", 3, "enqueue"],
        }

        question = validate_question_records([record]).questions[0]

        assert question.role == "Software Engineer"
        assert question.keywords == ["FIFO", "enqueue"]
        assert question.reference_embedding is None

    def test_all_invalid_is_not_ok(self):
        result = validate_question_records([{"id": 1}])

        assert not result.ok


def test_packaged_question_bank_loads_cleanly():
    result = load_question_bank(Config.QUESTION_BANK_PATH)

    assert result.ok
    assert result.failures == []
    arrays = next(q for q in result.questions if q.id == 1)
    assert arrays.keywords == ["array", "index", "O(1)"]
