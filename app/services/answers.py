"""
Answer payload validation per question type.
"""
from typing import Any, Iterable, List

from app.db.models import Question, QuestionType


class AnswerValidationError(ValueError):
    def __init__(self, question_id: int, message: str):
        super().__init__(f"Question {question_id}: {message}")
        self.question_id = question_id


def is_answered(value: Any) -> bool:
    """False and 0 are answers; None, blank strings and empty collections are not."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, dict, tuple)):
        return len(value) > 0
    return True


def _type_of(question: Question) -> QuestionType:
    qtype = question.type
    return qtype if isinstance(qtype, QuestionType) else QuestionType(qtype)


def _table_column_names(question: Question) -> List[str]:
    names = []
    for column in question.table_columns or []:
        if isinstance(column, dict):
            names.append(column.get("name") or column.get("key"))
        else:
            names.append(str(column))
    return [n for n in names if n]


def validate_answer(question: Question, value: Any) -> Any:
    """
    Check that `value` fits the question type and return the value to store.

    Empty values are accepted here (drafts may be incomplete); completeness
    is enforced at submission.
    """
    if not is_answered(value):
        return value

    qtype = _type_of(question)
    options = list(question.options or [])

    if qtype == QuestionType.TEXT:
        if not isinstance(value, str):
            raise AnswerValidationError(question.id, "expected a text answer")
        return value

    if qtype == QuestionType.NUMBER:
        if isinstance(value, bool):
            raise AnswerValidationError(question.id, "expected a number")
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                raise AnswerValidationError(question.id, f"{value!r} is not a number")
            return int(number) if number.is_integer() else number
        raise AnswerValidationError(question.id, "expected a number")

    if qtype == QuestionType.BOOLEAN:
        if not isinstance(value, bool):
            raise AnswerValidationError(question.id, "expected true or false")
        return value

    if qtype == QuestionType.SINGLE_CHOICE:
        if not isinstance(value, str):
            raise AnswerValidationError(question.id, "expected one option")
        if options and value not in options:
            raise AnswerValidationError(question.id, f"{value!r} is not one of the options")
        return value

    if qtype == QuestionType.MULTIPLE_CHOICE:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise AnswerValidationError(question.id, "expected a list of options")
        unknown = [v for v in value if options and v not in options]
        if unknown:
            raise AnswerValidationError(question.id, f"unknown options: {', '.join(unknown)}")
        return value

    if qtype == QuestionType.FILE:
        if isinstance(value, str):
            return value
        if isinstance(value, dict) and (value.get("url") or value.get("path")):
            return value
        raise AnswerValidationError(question.id, "expected a file reference")

    if qtype == QuestionType.TABLE:
        if not isinstance(value, list) or not all(isinstance(row, dict) for row in value):
            raise AnswerValidationError(question.id, "expected a list of table rows")
        columns = _table_column_names(question)
        if columns:
            for row in value:
                extra = set(row) - set(columns)
                if extra:
                    raise AnswerValidationError(
                        question.id, f"unknown table columns: {', '.join(sorted(extra))}"
                    )
        return value

    return value


def missing_required(questions: Iterable[Question], answers: dict) -> List[int]:
    """Ids of required questions without a usable answer in `answers`."""
    return [
        q.id for q in questions
        if q.required and not is_answered(answers.get(q.id))
    ]
