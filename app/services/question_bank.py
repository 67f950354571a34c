"""
Question bank: sections, subsections, tags and questions.
"""
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db.models import (
    PIRResponse, Question, QuestionTag, QuestionType, Section, Subsection, Tag,
)

logger = get_logger(__name__)


class QuestionBankError(ValueError):
    pass


# Free-text type names seen in imported sheets and older clients.
QUESTION_TYPE_SYNONYMS = {
    "text": QuestionType.TEXT,
    "string": QuestionType.TEXT,
    "number": QuestionType.NUMBER,
    "numeric": QuestionType.NUMBER,
    "boolean": QuestionType.BOOLEAN,
    "yes/no": QuestionType.BOOLEAN,
    "single choice": QuestionType.SINGLE_CHOICE,
    "single_choice": QuestionType.SINGLE_CHOICE,
    "single": QuestionType.SINGLE_CHOICE,
    "select": QuestionType.SINGLE_CHOICE,
    "dropdown": QuestionType.SINGLE_CHOICE,
    "multiple": QuestionType.MULTIPLE_CHOICE,
    "multiple choice": QuestionType.MULTIPLE_CHOICE,
    "multiple_choice": QuestionType.MULTIPLE_CHOICE,
    "multi-select": QuestionType.MULTIPLE_CHOICE,
    "file": QuestionType.FILE,
    "file upload": QuestionType.FILE,
    "table": QuestionType.TABLE,
}

CHOICE_TYPES = (QuestionType.SINGLE_CHOICE, QuestionType.MULTIPLE_CHOICE)


def parse_question_type(value, default: Optional[QuestionType] = None) -> QuestionType:
    if isinstance(value, QuestionType):
        return value
    key = str(value or "").strip().lower()
    if key in QUESTION_TYPE_SYNONYMS:
        return QUESTION_TYPE_SYNONYMS[key]
    if default is not None:
        return default
    raise QuestionBankError(f"Unknown question type: {value!r}")


def _clean_options(options: Optional[Iterable]) -> List[str]:
    return [str(o).strip() for o in (options or []) if str(o).strip()]


def _load_tags(db: Session, tag_ids: Iterable[int]) -> List[Tag]:
    tag_ids = list(dict.fromkeys(tag_ids or []))
    if not tag_ids:
        return []
    tags = db.query(Tag).filter(Tag.id.in_(tag_ids)).all()
    found = {t.id for t in tags}
    missing = [t for t in tag_ids if t not in found]
    if missing:
        raise QuestionBankError(f"Unknown tags: {missing}")
    return tags


# ============= SECTIONS & TAGS =============

def create_section(db: Session, name: str, description: Optional[str] = None,
                   order_index: Optional[int] = None) -> Section:
    if order_index is None:
        order_index = db.query(Section).count()
    section = Section(name=name.strip(), description=description, order_index=order_index)
    db.add(section)
    db.flush()
    return section


def create_subsection(db: Session, section_id: int, name: str, description: Optional[str] = None,
                      order_index: Optional[int] = None) -> Subsection:
    if not db.query(Section).filter(Section.id == section_id).first():
        raise QuestionBankError(f"Section {section_id} not found")
    if order_index is None:
        order_index = db.query(Subsection).filter(Subsection.section_id == section_id).count()
    subsection = Subsection(section_id=section_id, name=name.strip(),
                            description=description, order_index=order_index)
    db.add(subsection)
    db.flush()
    return subsection


def find_section(db: Session, name: str) -> Optional[Section]:
    return db.query(Section).filter(Section.name.ilike(name.strip())).first()


def get_or_create_tag(db: Session, name: str, description: Optional[str] = None) -> Tag:
    name = name.strip()
    tag = db.query(Tag).filter(Tag.name.ilike(name)).first()
    if tag:
        return tag
    tag = Tag(name=name, description=description)
    db.add(tag)
    db.flush()
    return tag


# ============= QUESTIONS =============

def create_question_with_tags(
    db: Session,
    subsection_id: Optional[int],
    text: str,
    description: Optional[str],
    type,
    required: bool,
    options: Optional[List[str]],
    tag_ids: Iterable[int],
    section_id: Optional[int] = None,
    table_columns: Optional[list] = None,
) -> Question:
    """
    Create a question and attach its tags in one unit of work.

    The section is taken from the subsection when one is given. Choice
    questions need at least one option.
    """
    if not (text or "").strip():
        raise QuestionBankError("Question text is required")

    qtype = parse_question_type(type)
    options = _clean_options(options)
    if qtype in CHOICE_TYPES and not options:
        raise QuestionBankError(f"{qtype.value} questions need at least one option")

    if subsection_id is not None:
        subsection = db.query(Subsection).filter(Subsection.id == subsection_id).first()
        if not subsection:
            raise QuestionBankError(f"Subsection {subsection_id} not found")
        section_id = subsection.section_id
    elif section_id is not None and not db.query(Section).filter(Section.id == section_id).first():
        raise QuestionBankError(f"Section {section_id} not found")

    tags = _load_tags(db, tag_ids)

    order_index = db.query(Question).filter(
        Question.section_id == section_id,
        Question.subsection_id == subsection_id,
    ).count()

    question = Question(
        section_id=section_id,
        subsection_id=subsection_id,
        text=text.strip(),
        description=description,
        type=qtype,
        required=bool(required),
        options=options if qtype in CHOICE_TYPES else None,
        table_columns=table_columns if qtype == QuestionType.TABLE else None,
        order_index=order_index,
    )
    question.tags = tags
    db.add(question)
    db.flush()

    logger.info(f"Created question {question.id} with {len(tags)} tags")
    return question


def is_answered_against(db: Session, question_id: int) -> bool:
    return db.query(PIRResponse).filter(PIRResponse.question_id == question_id).first() is not None


def update_question(db: Session, question: Question, **changes) -> Question:
    """Update a question. The type of a question that already has answers is fixed."""
    if "type" in changes and changes["type"] is not None:
        new_type = parse_question_type(changes.pop("type"))
        if new_type != question.type and is_answered_against(db, question.id):
            raise QuestionBankError("Cannot change the type of a question that has answers")
        question.type = new_type

    if "tag_ids" in changes:
        tag_ids = changes.pop("tag_ids")
        if tag_ids is not None:
            question.tags = _load_tags(db, tag_ids)

    if "options" in changes and changes["options"] is not None:
        changes["options"] = _clean_options(changes["options"])

    for field, value in changes.items():
        if value is not None:
            setattr(question, field, value)

    if question.type in CHOICE_TYPES and not question.options:
        raise QuestionBankError(f"{question.type.value} questions need at least one option")

    db.flush()
    return question


def delete_question(db: Session, question: Question):
    if is_answered_against(db, question.id):
        raise QuestionBankError("Cannot delete a question that has answers")
    question.tags = []
    db.delete(question)
    db.flush()


def list_questions(db: Session, tag_ids: Optional[List[int]] = None,
                   section_id: Optional[int] = None) -> List[Question]:
    query = db.query(Question)
    if tag_ids:
        tagged = db.query(QuestionTag.question_id).filter(QuestionTag.tag_id.in_(tag_ids))
        query = query.filter(Question.id.in_(tagged))
    if section_id is not None:
        query = query.filter(Question.section_id == section_id)
    return query.order_by(Question.section_id, Question.order_index, Question.id).all()
