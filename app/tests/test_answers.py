"""
Tests for answer validation per question type.
"""
import pytest

from app.db.models import Question, QuestionType
from app.services.answers import (
    AnswerValidationError, is_answered, missing_required, validate_answer,
)


def _question(qtype, required=True, options=None, table_columns=None, id=1):
    return Question(id=id, text="Q", type=qtype, required=required,
                    options=options, table_columns=table_columns)


class TestIsAnswered:

    @pytest.mark.parametrize("value", [False, 0, "x", ["a"], {"url": "f"}])
    def test_answered(self, value):
        assert is_answered(value)

    @pytest.mark.parametrize("value", [None, "", "   ", [], {}])
    def test_not_answered(self, value):
        assert not is_answered(value)


class TestValidateAnswer:

    def test_number_from_string(self):
        q = _question(QuestionType.NUMBER)
        assert validate_answer(q, "42") == 42
        assert validate_answer(q, "2.5") == 2.5

    def test_number_rejects_text_and_bools(self):
        q = _question(QuestionType.NUMBER)
        with pytest.raises(AnswerValidationError):
            validate_answer(q, "many")
        with pytest.raises(AnswerValidationError):
            validate_answer(q, True)

    def test_boolean(self):
        q = _question(QuestionType.BOOLEAN)
        assert validate_answer(q, False) is False
        with pytest.raises(AnswerValidationError):
            validate_answer(q, "yes")

    def test_single_choice_must_be_an_option(self):
        q = _question(QuestionType.SINGLE_CHOICE, options=["Yes", "No"])
        assert validate_answer(q, "Yes") == "Yes"
        with pytest.raises(AnswerValidationError) as exc:
            validate_answer(q, "Maybe")
        assert exc.value.question_id == 1

    def test_multiple_choice(self):
        q = _question(QuestionType.MULTIPLE_CHOICE, options=["EU", "US", "UK"])
        assert validate_answer(q, ["EU", "UK"]) == ["EU", "UK"]
        with pytest.raises(AnswerValidationError):
            validate_answer(q, ["EU", "Mars"])
        with pytest.raises(AnswerValidationError):
            validate_answer(q, "EU")

    def test_file_reference(self):
        q = _question(QuestionType.FILE)
        assert validate_answer(q, {"url": "https://files.example/cert.pdf"})
        with pytest.raises(AnswerValidationError):
            validate_answer(q, {"name": "cert.pdf"})

    def test_table_columns_are_enforced(self):
        q = _question(QuestionType.TABLE, table_columns=[{"name": "substance"}, {"name": "ppm"}])
        rows = [{"substance": "Lead", "ppm": 0.1}]
        assert validate_answer(q, rows) == rows
        with pytest.raises(AnswerValidationError):
            validate_answer(q, [{"substance": "Lead", "color": "grey"}])

    def test_empty_values_pass_through(self):
        q = _question(QuestionType.NUMBER)
        assert validate_answer(q, "") == ""
        assert validate_answer(q, None) is None


class TestMissingRequired:

    def test_lists_unanswered_required_questions(self):
        questions = [
            _question(QuestionType.TEXT, id=1),
            _question(QuestionType.BOOLEAN, id=2),
            _question(QuestionType.TEXT, required=False, id=3),
        ]

        assert missing_required(questions, {1: "  ", 2: False}) == [1]
        assert missing_required(questions, {1: "ok", 2: False}) == []
