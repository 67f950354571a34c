"""
Question-bank import from Excel workbooks.

Columns are mapped to question fields by keywords in the header row; the
caller may override the mapping per column. Rows without question text are
skipped, rows that fail are counted and reported, never fatal to the import.
"""
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, List, Optional

import openpyxl
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db.models import QuestionType
from app.services.question_bank import (
    QuestionBankError, create_question_with_tags, find_section, get_or_create_tag,
    parse_question_type,
)

logger = get_logger(__name__)

IMPORT_FIELDS = ("text", "description", "type", "required", "options",
                 "category", "subcategory", "tags", "ignore")

# Checked in order; the first keyword found in a header wins.
HEADER_KEYWORDS = [
    ("text", ("question", "text")),
    ("description", ("description",)),
    ("type", ("type",)),
    ("required", ("required", "mandatory")),
    ("options", ("option", "choices")),
    ("subcategory", ("subcategory", "subsection")),
    ("category", ("category", "section")),
    ("tags", ("tag",)),
]

TRUTHY = {"yes", "true", "1", "y"}


class ExcelImportError(ValueError):
    pass


@dataclass
class ImportResult:
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    question_ids: List[int] = field(default_factory=list)


def guess_mapping(headers: List[Optional[str]]) -> Dict[int, str]:
    mapping = {}
    for index, header in enumerate(headers):
        lower = str(header or "").lower()
        mapping[index] = "ignore"
        for field_name, keywords in HEADER_KEYWORDS:
            if any(k in lower for k in keywords):
                mapping[index] = field_name
                break
    return mapping


def read_sheet(content: bytes, sheet_name: Optional[str] = None) -> List[list]:
    """All rows of one sheet as lists of cell values (header row first)."""
    try:
        wb = openpyxl.load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        raise ExcelImportError(f"Could not read workbook: {e}")

    try:
        if sheet_name is not None and sheet_name not in wb.sheetnames:
            raise ExcelImportError(f"Sheet {sheet_name!r} not found")
        sheet = wb[sheet_name] if sheet_name else wb[wb.sheetnames[0]]
        return [list(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        wb.close()


def parse_required(value) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY


def parse_options(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [o.strip() for o in value.split(",") if o.strip()]
    return [str(value)]


def row_to_question(row: list, mapping: Dict[int, str]) -> Optional[dict]:
    data = {}
    for index, field_name in mapping.items():
        if field_name == "ignore" or index >= len(row):
            continue
        if row[index] is not None:
            data[field_name] = row[index]

    text = str(data.get("text") or "").strip()
    if not text:
        return None

    description = data.get("description")
    return {
        "text": text,
        "description": str(description) if description is not None else None,
        "type": parse_question_type(data.get("type"), default=QuestionType.TEXT),
        "required": parse_required(data.get("required")),
        "options": parse_options(data.get("options")),
        "category": str(data["category"]).strip() if data.get("category") else None,
        "tags": parse_options(data.get("tags")),
    }


def import_questions(
    db: Session,
    content: bytes,
    sheet_name: Optional[str] = None,
    mapping: Optional[Dict[int, str]] = None,
    tag_ids: Optional[List[int]] = None,
) -> ImportResult:
    rows = read_sheet(content, sheet_name)
    if len(rows) < 2:
        raise ExcelImportError("The selected sheet has no data or headers")

    headers, data_rows = rows[0], rows[1:]
    mapping = mapping or guess_mapping(headers)
    unknown = {v for v in mapping.values() if v not in IMPORT_FIELDS}
    if unknown:
        raise ExcelImportError(f"Unknown mapping fields: {sorted(unknown)}")
    if "text" not in mapping.values():
        raise ExcelImportError("Question Text field must be mapped to at least one column")

    result = ImportResult()
    for row_number, row in enumerate(data_rows, start=2):
        parsed = row_to_question(row, mapping)
        if parsed is None:
            result.skipped += 1
            continue

        try:
            section = find_section(db, parsed["category"]) if parsed["category"] else None
            row_tag_ids = list(tag_ids or []) + [get_or_create_tag(db, name).id for name in parsed["tags"]]
            question = create_question_with_tags(
                db,
                subsection_id=None,
                section_id=section.id if section else None,
                text=parsed["text"],
                description=parsed["description"],
                type=parsed["type"],
                required=parsed["required"],
                options=parsed["options"],
                tag_ids=row_tag_ids,
            )
            db.commit()
            result.imported += 1
            result.question_ids.append(question.id)
        except (QuestionBankError, SQLAlchemyError) as e:
            db.rollback()
            result.failed += 1
            result.errors.append(f"Row {row_number}: {e}")
            logger.warning(f"Question import failed on row {row_number}: {e}")

    logger.info(
        f"Question import finished: {result.imported} imported, "
        f"{result.skipped} skipped, {result.failed} failed"
    )
    return result
