"""
Question bank API routes: sections, tags, questions and Excel import.
"""
import json
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import AuditLog, Question, Section, Tag
from app.core.config import settings
from app.core.rbac import CompanyContext, get_company_context, require_admin
from app.services import question_bank
from app.services.excel_import import ExcelImportError, guess_mapping, import_questions, read_sheet

router = APIRouter(prefix="/api/questions", tags=["Question Bank"])


# ============= SCHEMAS =============

class TagCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    color: Optional[str] = Field(None, max_length=20)


class TagResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    color: Optional[str]

    model_config = {"from_attributes": True}


class SubsectionResponse(BaseModel):
    id: int
    section_id: int
    name: str
    description: Optional[str]
    order_index: int

    model_config = {"from_attributes": True}


class SectionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    order_index: Optional[int] = None


class SectionResponse(BaseModel):
    id: int
    name: str
    description: Optional[str]
    order_index: int
    subsections: List[SubsectionResponse] = []

    model_config = {"from_attributes": True}


class QuestionWithTags(BaseModel):
    """Argument shape of create_question_with_tags."""
    subsection_id: Optional[int] = None
    section_id: Optional[int] = None
    text: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: str = "text"
    required: bool = True
    options: Optional[List[str]] = None
    table_columns: Optional[list] = None
    tag_ids: List[int] = []


class QuestionUpdate(BaseModel):
    text: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    type: Optional[str] = None
    required: Optional[bool] = None
    options: Optional[List[str]] = None
    table_columns: Optional[list] = None
    order_index: Optional[int] = None
    tag_ids: Optional[List[int]] = None


class QuestionResponse(BaseModel):
    id: int
    section_id: Optional[int]
    subsection_id: Optional[int]
    text: str
    description: Optional[str]
    type: str
    required: bool
    options: Optional[list]
    table_columns: Optional[list]
    order_index: Optional[int]
    tags: List[TagResponse]


class ImportResponse(BaseModel):
    imported: int
    skipped: int
    failed: int
    errors: List[str]
    question_ids: List[int]


# ============= HELPERS =============

def _question_out(q: Question) -> QuestionResponse:
    return QuestionResponse(
        id=q.id,
        section_id=q.section_id,
        subsection_id=q.subsection_id,
        text=q.text,
        description=q.description,
        type=q.type.value,
        required=q.required,
        options=q.options,
        table_columns=q.table_columns,
        order_index=q.order_index,
        tags=[TagResponse.model_validate(t) for t in q.tags],
    )


def _audit(db: Session, request: Request, ctx: CompanyContext, action: str, entity_type: str,
           entity_id: Optional[int], details: Optional[dict] = None):
    db.add(AuditLog(
        user_id=ctx.user_id,
        company_id=ctx.company_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=request.client.host if request.client else None,
    ))


def _get_question(db: Session, question_id: int) -> Question:
    question = db.query(Question).filter(Question.id == question_id).first()
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")
    return question


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the {settings.MAX_UPLOAD_SIZE} byte upload limit",
        )
    return content


# ============= TAGS & SECTIONS =============

@router.get("/tags", response_model=List[TagResponse])
async def list_tags(
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    return db.query(Tag).order_by(Tag.name).all()


@router.post("/tags", response_model=TagResponse, status_code=status.HTTP_201_CREATED)
async def create_tag(
    request: Request,
    data: TagCreate,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    if db.query(Tag).filter(Tag.name.ilike(data.name.strip())).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Tag already exists")

    tag = question_bank.get_or_create_tag(db, data.name, data.description)
    if data.color:
        tag.color = data.color
    _audit(db, request, ctx, "create_tag", "tag", tag.id, {"name": tag.name})
    db.commit()
    db.refresh(tag)
    return tag


@router.get("/sections", response_model=List[SectionResponse])
async def list_sections(
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    return db.query(Section).order_by(Section.order_index, Section.id).all()


@router.post("/sections", response_model=SectionResponse, status_code=status.HTTP_201_CREATED)
async def create_section(
    request: Request,
    data: SectionCreate,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    section = question_bank.create_section(db, data.name, data.description, data.order_index)
    _audit(db, request, ctx, "create_section", "section", section.id, {"name": section.name})
    db.commit()
    db.refresh(section)
    return section


@router.post("/sections/{section_id}/subsections", response_model=SubsectionResponse,
             status_code=status.HTTP_201_CREATED)
async def create_subsection(
    section_id: int,
    request: Request,
    data: SectionCreate,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        subsection = question_bank.create_subsection(db, section_id, data.name, data.description, data.order_index)
    except question_bank.QuestionBankError as e:
        raise HTTPException(status_code=404, detail=str(e))
    _audit(db, request, ctx, "create_subsection", "subsection", subsection.id, {"name": subsection.name})
    db.commit()
    db.refresh(subsection)
    return subsection


# ============= QUESTIONS =============

@router.get("", response_model=List[QuestionResponse])
async def list_questions(
    tag_ids: Optional[List[int]] = Query(None),
    section_id: Optional[int] = Query(None),
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """List questions, optionally only those carrying any of the given tags."""
    return [_question_out(q) for q in question_bank.list_questions(db, tag_ids, section_id)]


@router.post("/with-tags", response_model=QuestionResponse, status_code=status.HTTP_201_CREATED)
async def create_question_with_tags(
    request: Request,
    data: QuestionWithTags,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create a question and attach its tags in one step."""
    try:
        question = question_bank.create_question_with_tags(
            db,
            subsection_id=data.subsection_id,
            section_id=data.section_id,
            text=data.text,
            description=data.description,
            type=data.type,
            required=data.required,
            options=data.options,
            tag_ids=data.tag_ids,
            table_columns=data.table_columns,
        )
    except question_bank.QuestionBankError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    _audit(db, request, ctx, "create_question", "question", question.id,
           {"type": question.type.value, "tag_ids": data.tag_ids})
    db.commit()
    db.refresh(question)
    return _question_out(question)


@router.get("/{question_id}", response_model=QuestionResponse)
async def get_question(
    question_id: int,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    return _question_out(_get_question(db, question_id))


@router.put("/{question_id}", response_model=QuestionResponse)
async def update_question(
    question_id: int,
    request: Request,
    data: QuestionUpdate,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    question = _get_question(db, question_id)
    changes = data.model_dump(exclude_unset=True)
    try:
        question_bank.update_question(db, question, **changes)
    except question_bank.QuestionBankError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    _audit(db, request, ctx, "update_question", "question", question.id, {"fields": sorted(changes)})
    db.commit()
    db.refresh(question)
    return _question_out(question)


@router.delete("/{question_id}")
async def delete_question(
    question_id: int,
    request: Request,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    question = _get_question(db, question_id)
    try:
        question_bank.delete_question(db, question)
    except question_bank.QuestionBankError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    _audit(db, request, ctx, "delete_question", "question", question_id)
    db.commit()
    return {"message": "Question deleted"}


# ============= EXCEL IMPORT =============

@router.post("/import/preview")
async def preview_import(
    file: UploadFile = File(...),
    sheet_name: Optional[str] = Form(None),
    ctx: CompanyContext = Depends(require_admin),
):
    """Headers, guessed column mapping and the first rows of a workbook."""
    content = await _read_upload(file)
    try:
        rows = read_sheet(content, sheet_name)
    except ExcelImportError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if len(rows) < 2:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="The selected sheet has no data or headers")

    headers = [str(h) if h is not None else "" for h in rows[0]]
    return {
        "headers": headers,
        "mapping": guess_mapping(headers),
        "preview": [[c if c is None or isinstance(c, (int, float, bool)) else str(c) for c in row]
                    for row in rows[1:6]],
    }


@router.post("/import", response_model=ImportResponse)
async def import_from_excel(
    request: Request,
    file: UploadFile = File(...),
    sheet_name: Optional[str] = Form(None),
    mapping: Optional[str] = Form(None, description="JSON object: column index -> field"),
    tag_ids: Optional[str] = Form(None, description="Comma separated tag ids for every row"),
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Import questions from an .xlsx workbook."""
    content = await _read_upload(file)

    try:
        column_mapping = {int(k): v for k, v in json.loads(mapping).items()} if mapping else None
        extra_tags = [int(t) for t in tag_ids.split(",") if t.strip()] if tag_ids else None
    except (ValueError, AttributeError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid form field: {e}")

    try:
        result = import_questions(db, content, sheet_name, column_mapping, extra_tags)
    except ExcelImportError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    _audit(db, request, ctx, "import_questions", "question", None,
           {"filename": file.filename, "imported": result.imported, "failed": result.failed})
    db.commit()

    return ImportResponse(
        imported=result.imported,
        skipped=result.skipped,
        failed=result.failed,
        errors=result.errors,
        question_ids=result.question_ids,
    )
