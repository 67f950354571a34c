"""
Product Information Request (PIR) API routes.

Customers create, send, review and close PIRs; suppliers answer and submit
them. Status changes go through the lifecycle service, which validates the
move, writes the audit row and fires the notification.
"""
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import (
    AuditLog, PIRRequest, PIRResponse, PIRStatus, Profile, ResponseComment, ResponseStatus,
)
from app.core.rbac import CompanyContext, get_company_context
from app.services import pir_lifecycle as lifecycle
from app.services.answers import AnswerValidationError
from app.services.notifications import Notifier, get_notifier

router = APIRouter(prefix="/api/pirs", tags=["PIRs"])


# ============= SCHEMAS =============

class PIRCreate(BaseModel):
    supplier_company_id: int
    product_id: Optional[int] = None
    product_name: Optional[str] = Field(None, max_length=255)
    tag_ids: List[int] = []
    title: Optional[str] = Field(None, max_length=500)
    description: Optional[str] = None
    due_date: Optional[datetime] = None


class TagRef(BaseModel):
    id: int
    name: str


class PIRSummary(BaseModel):
    id: int
    customer_id: int
    customer_name: Optional[str]
    supplier_company_id: int
    supplier_name: Optional[str]
    product_id: Optional[int]
    product_name: str
    title: Optional[str]
    status: PIRStatus
    status_label: str
    next_actor: Optional[str]
    tags: List[TagRef]
    due_date: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class FlagOut(BaseModel):
    id: int
    description: str
    status: str
    created_at: Optional[datetime]
    resolved_at: Optional[datetime]


class CommentOut(BaseModel):
    id: int
    user_id: Optional[int]
    author_name: Optional[str]
    text: str
    created_at: Optional[datetime]


class AnswerOut(BaseModel):
    id: int
    question_id: int
    answer: Any
    status: ResponseStatus
    submitted_at: Optional[datetime]
    flags: List[FlagOut]
    comments: List[CommentOut]


class QuestionOut(BaseModel):
    id: int
    section_id: Optional[int]
    subsection_id: Optional[int]
    text: str
    description: Optional[str]
    type: str
    required: bool
    options: Optional[list]
    table_columns: Optional[list]


class PIRDetail(PIRSummary):
    description: Optional[str]
    role: str
    allowed_transitions: List[PIRStatus]
    questions: List[QuestionOut]
    answers: List[AnswerOut]


class AnswersUpdate(BaseModel):
    answers: Dict[int, Any]


class ReviewItem(BaseModel):
    response_id: int
    status: ResponseStatus
    note: Optional[str] = None


class ReviewRequest(BaseModel):
    decisions: List[ReviewItem]


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class CommentCreate(BaseModel):
    text: str = Field(..., min_length=1)


# ============= HELPERS =============

def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, lifecycle.MissingRequiredAnswersError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Required questions are unanswered", "question_ids": e.question_ids},
        )
    if isinstance(e, lifecycle.InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, lifecycle.ActorNotAllowedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _get_pir(db: Session, pir_id: int, ctx: CompanyContext) -> PIRRequest:
    pir = db.query(PIRRequest).filter(PIRRequest.id == pir_id).first()
    if not pir or ctx.company_id not in (pir.customer_id, pir.supplier_company_id):
        raise HTTPException(status_code=404, detail="PIR not found")
    return pir


def _ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _summary_fields(pir: PIRRequest) -> dict:
    actor = lifecycle.next_actor(pir.status)
    return dict(
        id=pir.id,
        customer_id=pir.customer_id,
        customer_name=pir.customer.name if pir.customer else None,
        supplier_company_id=pir.supplier_company_id,
        supplier_name=pir.supplier.name if pir.supplier else None,
        product_id=pir.product_id,
        product_name=pir.product_name,
        title=pir.title,
        status=pir.status,
        status_label=lifecycle.STATUS_DISPLAY[lifecycle.parse_status(pir.status)],
        next_actor=actor.value if actor else None,
        tags=[TagRef(id=t.id, name=t.name) for t in pir.tags],
        due_date=pir.due_date,
        created_at=pir.created_at,
        updated_at=pir.updated_at,
    )


def _answer_out(response: PIRResponse) -> AnswerOut:
    return AnswerOut(
        id=response.id,
        question_id=response.question_id,
        answer=response.answer,
        status=response.status,
        submitted_at=response.submitted_at,
        flags=[
            FlagOut(id=f.id, description=f.description, status=f.status.value,
                    created_at=f.created_at, resolved_at=f.resolved_at)
            for f in response.flags
        ],
        comments=[_comment_out(c) for c in response.comments],
    )


def _comment_out(comment: ResponseComment) -> CommentOut:
    return CommentOut(id=comment.id, user_id=comment.user_id, author_name=comment.author_name,
                      text=comment.text, created_at=comment.created_at)


def _detail(db: Session, pir: PIRRequest, ctx: CompanyContext) -> PIRDetail:
    actor = lifecycle.actor_for_company(pir, ctx.company_id)
    questions = lifecycle.applicable_questions(db, pir)
    return PIRDetail(
        **_summary_fields(pir),
        description=pir.description,
        role=actor.value,
        allowed_transitions=lifecycle.allowed_transitions(pir.status, actor),
        questions=[
            QuestionOut(
                id=q.id, section_id=q.section_id, subsection_id=q.subsection_id, text=q.text,
                description=q.description, type=q.type.value, required=q.required,
                options=q.options, table_columns=q.table_columns,
            )
            for q in questions
        ],
        answers=[_answer_out(r) for r in sorted(pir.responses, key=lambda r: r.id)],
    )


def _list(db: Session, column, company_id: int, status_filter: Optional[str]) -> List[PIRSummary]:
    query = db.query(PIRRequest).filter(column == company_id)
    if status_filter:
        try:
            query = query.filter(PIRRequest.status == lifecycle.parse_status(status_filter))
        except lifecycle.PIRValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
    pirs = query.order_by(PIRRequest.updated_at.desc(), PIRRequest.id.desc()).all()
    return [PIRSummary(**_summary_fields(p)) for p in pirs]


# ============= ROUTES =============

@router.post("", response_model=PIRDetail, status_code=status.HTTP_201_CREATED)
async def create_pir(
    request: Request,
    data: PIRCreate,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Create a draft PIR from the current company to a supplier."""
    try:
        pir = lifecycle.create_pir(
            db, ctx,
            supplier_company_id=data.supplier_company_id,
            product_id=data.product_id,
            suggested_product_name=data.product_name,
            tag_ids=data.tag_ids,
            title=data.title,
            description=data.description,
            due_date=data.due_date,
            ip_address=_ip(request),
        )
    except lifecycle.LifecycleError as e:
        raise _http_error(e)
    return _detail(db, pir, ctx)


@router.get("/outgoing", response_model=List[PIRSummary])
async def list_outgoing(
    status_filter: Optional[str] = Query(None, alias="status"),
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """PIRs the current company sent as customer."""
    return _list(db, PIRRequest.customer_id, ctx.company_id, status_filter)


@router.get("/incoming", response_model=List[PIRSummary])
async def list_incoming(
    status_filter: Optional[str] = Query(None, alias="status"),
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """PIRs the current company received as supplier. Drafts are not visible to suppliers."""
    pirs = _list(db, PIRRequest.supplier_company_id, ctx.company_id, status_filter)
    return [p for p in pirs if p.status != PIRStatus.DRAFT]


@router.get("/summary")
async def status_summary(
    direction: str = Query("outgoing", pattern="^(outgoing|incoming)$"),
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Dashboard counts per display bucket."""
    column = PIRRequest.customer_id if direction == "outgoing" else PIRRequest.supplier_company_id
    statuses = [s for (s,) in db.query(PIRRequest.status).filter(column == ctx.company_id).all()]
    if direction == "incoming":
        statuses = [s for s in statuses if s != PIRStatus.DRAFT]
    counts = Counter(lifecycle.display_bucket(s) for s in statuses)
    return {"direction": direction, "total": len(statuses), "buckets": dict(counts)}


@router.get("/{pir_id}", response_model=PIRDetail)
async def get_pir(
    pir_id: int,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """PIR with its applicable questions and the supplier's answers."""
    pir = _get_pir(db, pir_id, ctx)
    if pir.supplier_company_id == ctx.company_id and pir.status == PIRStatus.DRAFT:
        raise HTTPException(status_code=404, detail="PIR not found")
    return _detail(db, pir, ctx)


@router.post("/{pir_id}/send", response_model=PIRDetail)
async def send_pir(
    pir_id: int,
    request: Request,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """Send a draft PIR to the supplier."""
    pir = _get_pir(db, pir_id, ctx)
    try:
        lifecycle.send_pir(db, pir, ctx, notifier, _ip(request))
    except lifecycle.LifecycleError as e:
        raise _http_error(e)
    return _detail(db, pir, ctx)


@router.post("/{pir_id}/start", response_model=PIRDetail)
async def start_pir(
    pir_id: int,
    request: Request,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Supplier starts working on a sent PIR."""
    pir = _get_pir(db, pir_id, ctx)
    try:
        lifecycle.start_pir(db, pir, ctx, _ip(request))
    except lifecycle.LifecycleError as e:
        raise _http_error(e)
    return _detail(db, pir, ctx)


@router.put("/{pir_id}/answers", response_model=PIRDetail)
async def save_answers(
    pir_id: int,
    request: Request,
    data: AnswersUpdate,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Save draft answers, keyed by question id."""
    pir = _get_pir(db, pir_id, ctx)
    try:
        lifecycle.save_answers(db, pir, ctx, data.answers, _ip(request))
    except (lifecycle.LifecycleError, AnswerValidationError) as e:
        db.rollback()
        raise _http_error(e)
    return _detail(db, pir, ctx)


@router.post("/{pir_id}/submit", response_model=PIRDetail)
async def submit_pir(
    pir_id: int,
    request: Request,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """Submit all answers to the customer."""
    pir = _get_pir(db, pir_id, ctx)
    try:
        lifecycle.submit_pir(db, pir, ctx, notifier, _ip(request))
    except lifecycle.LifecycleError as e:
        db.rollback()
        raise _http_error(e)
    return _detail(db, pir, ctx)


@router.post("/{pir_id}/review", response_model=PIRDetail)
async def review_pir(
    pir_id: int,
    request: Request,
    data: ReviewRequest,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """Approve or flag individual answers."""
    pir = _get_pir(db, pir_id, ctx)
    decisions = {
        item.response_id: lifecycle.ReviewDecision(status=item.status, note=item.note)
        for item in data.decisions
    }
    try:
        lifecycle.review_pir(db, pir, ctx, decisions, notifier, _ip(request))
    except lifecycle.LifecycleError as e:
        db.rollback()
        raise _http_error(e)
    return _detail(db, pir, ctx)


@router.post("/{pir_id}/approve", response_model=PIRDetail)
async def approve_pir(
    pir_id: int,
    request: Request,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """Approve every answer and close the PIR as approved."""
    pir = _get_pir(db, pir_id, ctx)
    try:
        lifecycle.approve_pir(db, pir, ctx, notifier, _ip(request))
    except lifecycle.LifecycleError as e:
        db.rollback()
        raise _http_error(e)
    return _detail(db, pir, ctx)


@router.post("/{pir_id}/resubmit", response_model=PIRDetail)
async def resubmit_pir(
    pir_id: int,
    request: Request,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """Resubmit after addressing flagged answers."""
    pir = _get_pir(db, pir_id, ctx)
    try:
        lifecycle.resubmit_pir(db, pir, ctx, notifier, _ip(request))
    except lifecycle.LifecycleError as e:
        db.rollback()
        raise _http_error(e)
    return _detail(db, pir, ctx)


@router.post("/{pir_id}/reject", response_model=PIRDetail)
async def reject_pir(
    pir_id: int,
    request: Request,
    data: RejectRequest,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """Reject the whole request."""
    pir = _get_pir(db, pir_id, ctx)
    try:
        lifecycle.reject_pir(db, pir, ctx, data.reason, notifier, _ip(request))
    except lifecycle.LifecycleError as e:
        raise _http_error(e)
    return _detail(db, pir, ctx)


@router.post("/{pir_id}/cancel", response_model=PIRDetail)
async def cancel_pir(
    pir_id: int,
    request: Request,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Cancel a PIR that has not reached a final status."""
    pir = _get_pir(db, pir_id, ctx)
    try:
        lifecycle.cancel_pir(db, pir, ctx, _ip(request))
    except lifecycle.LifecycleError as e:
        raise _http_error(e)
    return _detail(db, pir, ctx)


# ============= COMMENTS =============

def _get_response(db: Session, pir: PIRRequest, response_id: int) -> PIRResponse:
    response = db.query(PIRResponse).filter(
        PIRResponse.id == response_id,
        PIRResponse.pir_id == pir.id,
    ).first()
    if not response:
        raise HTTPException(status_code=404, detail="Answer not found")
    return response


@router.get("/{pir_id}/answers/{response_id}/comments", response_model=List[CommentOut])
async def list_comments(
    pir_id: int,
    response_id: int,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    pir = _get_pir(db, pir_id, ctx)
    response = _get_response(db, pir, response_id)
    return [_comment_out(c) for c in response.comments]


@router.post("/{pir_id}/answers/{response_id}/comments", response_model=CommentOut,
             status_code=status.HTTP_201_CREATED)
async def add_comment(
    pir_id: int,
    response_id: int,
    request: Request,
    data: CommentCreate,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Append a comment to an answer's discussion thread."""
    pir = _get_pir(db, pir_id, ctx)
    response = _get_response(db, pir, response_id)

    profile = db.query(Profile).filter(Profile.id == ctx.user_id).first()
    author = (profile.full_name if profile else "") or ctx.email

    comment = ResponseComment(
        response_id=response.id,
        user_id=ctx.user_id,
        author_name=author,
        text=data.text.strip(),
    )
    db.add(comment)
    db.flush()
    db.add(AuditLog(
        user_id=ctx.user_id,
        company_id=ctx.company_id,
        action="add_comment",
        entity_type="pir_response",
        entity_id=response.id,
        details={"pir_id": pir.id},
        ip_address=_ip(request),
    ))
    db.commit()
    db.refresh(comment)
    return _comment_out(comment)
