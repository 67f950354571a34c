"""
PIR lifecycle: allowed status transitions, who may act next, and the
operations that move a request through its lifecycle.

Every transition is validated before anything is written. A transition is
committed together with its audit row; the notification for it is dispatched
afterwards and its failure never rolls the status back.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.core.rbac import CompanyContext
from app.db.models import (
    AuditLog, Company, FlagStatus, PIRRequest, PIRResponse, PIRStatus, Product,
    Question, QuestionTag, ResponseFlag, ResponseStatus, Tag,
)
from app.services.answers import missing_required, validate_answer
from app.services.notifications import NotificationType, Notifier

logger = get_logger(__name__)


class Actor(str, Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


TERMINAL_STATUSES = frozenset({PIRStatus.APPROVED, PIRStatus.REJECTED, PIRStatus.CANCELED})

# Names used for the same states by older clients and stored rows.
STATUS_ALIASES = {
    "pending_supplier": PIRStatus.SENT,
    "pending_review": PIRStatus.SUBMITTED,
    "accepted": PIRStatus.APPROVED,
    "reviewed": PIRStatus.APPROVED,
}

STATUS_DISPLAY = {
    PIRStatus.DRAFT: "Draft",
    PIRStatus.SENT: "Sent",
    PIRStatus.IN_PROGRESS: "In Progress",
    PIRStatus.SUBMITTED: "Submitted",
    PIRStatus.RESUBMITTED: "Resubmitted",
    PIRStatus.IN_REVIEW: "In Review",
    PIRStatus.FLAGGED: "Changes Requested",
    PIRStatus.APPROVED: "Approved",
    PIRStatus.REJECTED: "Rejected",
    PIRStatus.CANCELED: "Canceled",
}

DISPLAY_BUCKETS = {
    PIRStatus.DRAFT: "draft",
    PIRStatus.SENT: "awaiting_supplier",
    PIRStatus.IN_PROGRESS: "awaiting_supplier",
    PIRStatus.SUBMITTED: "awaiting_review",
    PIRStatus.RESUBMITTED: "awaiting_review",
    PIRStatus.IN_REVIEW: "awaiting_review",
    PIRStatus.FLAGGED: "revision_requested",
    PIRStatus.APPROVED: "approved",
    PIRStatus.REJECTED: "rejected",
    PIRStatus.CANCELED: "canceled",
}

RESPONSE_STATUS_TRANSITIONS = {
    ResponseStatus.DRAFT: {ResponseStatus.SUBMITTED},
    ResponseStatus.SUBMITTED: {ResponseStatus.APPROVED, ResponseStatus.FLAGGED},
    ResponseStatus.FLAGGED: {ResponseStatus.SUBMITTED},
    ResponseStatus.APPROVED: set(),
}


@dataclass(frozen=True)
class Transition:
    source: PIRStatus
    target: PIRStatus
    actor: Actor
    event: Optional[NotificationType] = None


_RULES = [
    Transition(PIRStatus.DRAFT, PIRStatus.SENT, Actor.CUSTOMER, NotificationType.PIR_STATUS_UPDATE),
    Transition(PIRStatus.SENT, PIRStatus.IN_PROGRESS, Actor.SUPPLIER),
    Transition(PIRStatus.SENT, PIRStatus.SUBMITTED, Actor.SUPPLIER, NotificationType.PIR_RESPONSE_SUBMITTED),
    Transition(PIRStatus.IN_PROGRESS, PIRStatus.SUBMITTED, Actor.SUPPLIER, NotificationType.PIR_RESPONSE_SUBMITTED),
    Transition(PIRStatus.SUBMITTED, PIRStatus.IN_REVIEW, Actor.CUSTOMER),
    Transition(PIRStatus.RESUBMITTED, PIRStatus.IN_REVIEW, Actor.CUSTOMER),
    Transition(PIRStatus.IN_REVIEW, PIRStatus.FLAGGED, Actor.CUSTOMER, NotificationType.REVIEW_COMPLETED),
    Transition(PIRStatus.FLAGGED, PIRStatus.RESUBMITTED, Actor.SUPPLIER, NotificationType.PIR_RESPONSE_SUBMITTED),
    Transition(PIRStatus.IN_REVIEW, PIRStatus.APPROVED, Actor.CUSTOMER, NotificationType.REVIEW_COMPLETED),
    Transition(PIRStatus.RESUBMITTED, PIRStatus.APPROVED, Actor.CUSTOMER, NotificationType.REVIEW_COMPLETED),
    Transition(PIRStatus.IN_REVIEW, PIRStatus.REJECTED, Actor.CUSTOMER, NotificationType.REVIEW_COMPLETED),
] + [
    Transition(status, PIRStatus.CANCELED, Actor.CUSTOMER)
    for status in PIRStatus if status not in TERMINAL_STATUSES
]

TRANSITIONS: Dict[tuple, Transition] = {(t.source, t.target): t for t in _RULES}


# ============= ERRORS =============

class LifecycleError(Exception):
    """Base class for rejected lifecycle operations."""


class InvalidTransitionError(LifecycleError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        if current in TERMINAL_STATUSES:
            message = f"PIR is {current.value} and can no longer change status"
        else:
            message = f"Cannot move PIR from {current.value} to {target.value}"
        super().__init__(message)


class ActorNotAllowedError(LifecycleError):
    pass


class MissingRequiredAnswersError(LifecycleError):
    def __init__(self, question_ids: List[int]):
        self.question_ids = question_ids
        super().__init__(f"Required questions unanswered: {question_ids}")


class PIRValidationError(LifecycleError):
    pass


# ============= STATE MACHINE QUERIES =============

def parse_status(value) -> PIRStatus:
    """Map a stored or client-supplied status (including legacy names) to PIRStatus."""
    if isinstance(value, PIRStatus):
        return value
    key = str(value).strip().lower()
    if key in STATUS_ALIASES:
        return STATUS_ALIASES[key]
    try:
        return PIRStatus(key)
    except ValueError:
        raise PIRValidationError(f"Unknown PIR status: {value!r}")


def is_terminal(status) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def allowed_transitions(status, actor: Optional[Actor] = None) -> List[PIRStatus]:
    current = parse_status(status)
    return [
        t.target for t in _RULES
        if t.source == current and (actor is None or t.actor == actor)
    ]


def find_transition(current, target) -> Transition:
    current, target = parse_status(current), parse_status(target)
    transition = TRANSITIONS.get((current, target))
    if transition is None:
        raise InvalidTransitionError(current, target)
    return transition


def next_actor(status) -> Optional[Actor]:
    """The party expected to act next; None once the PIR is terminal."""
    current = parse_status(status)
    if current in TERMINAL_STATUSES:
        return None
    if current in (PIRStatus.SENT, PIRStatus.IN_PROGRESS, PIRStatus.FLAGGED):
        return Actor.SUPPLIER
    return Actor.CUSTOMER


def display_bucket(status) -> str:
    return DISPLAY_BUCKETS[parse_status(status)]


def actor_for_company(pir: PIRRequest, company_id: int) -> Actor:
    if company_id == pir.customer_id:
        return Actor.CUSTOMER
    if company_id == pir.supplier_company_id:
        return Actor.SUPPLIER
    raise ActorNotAllowedError("Your company is not a party to this PIR")


def _require_actor(pir: PIRRequest, ctx: CompanyContext, actor: Actor):
    if actor_for_company(pir, ctx.company_id) != actor:
        raise ActorNotAllowedError(f"Only the {actor.value} can perform this action")


def check_transition(pir: PIRRequest, target: PIRStatus, actor: Actor) -> Transition:
    transition = find_transition(pir.status, target)
    if transition.actor != actor:
        raise ActorNotAllowedError(
            f"Only the {transition.actor.value} can move a PIR to {target.value}"
        )
    return transition


def _audit(db: Session, pir: PIRRequest, ctx: Optional[CompanyContext], action: str,
           details: Optional[dict] = None, ip_address: Optional[str] = None):
    db.add(AuditLog(
        user_id=ctx.user_id if ctx else None,
        company_id=ctx.company_id if ctx else None,
        action=action,
        entity_type="pir_request",
        entity_id=pir.id,
        details=details,
        ip_address=ip_address,
    ))


def apply_transition(
    db: Session,
    pir: PIRRequest,
    target,
    actor: Actor,
    ctx: Optional[CompanyContext] = None,
    notifier: Optional[Notifier] = None,
    details: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> PIRRequest:
    """
    Validate and commit one status change, then fire its notification.

    Raises:
        InvalidTransitionError: the move is not in the transition table
            (including any move out of a terminal state)
        ActorNotAllowedError: the move belongs to the other party
    """
    target = parse_status(target)
    transition = check_transition(pir, target, actor)
    previous = parse_status(pir.status)

    pir.status = target
    pir.updated_at = datetime.now(timezone.utc)
    audit_details = {"from": previous.value, "to": target.value}
    if details:
        audit_details.update(details)
    _audit(db, pir, ctx, "pir_status_change", audit_details, ip_address)
    db.commit()
    db.refresh(pir)

    logger.info(
        f"PIR {pir.id} moved {previous.value} -> {target.value} by {actor.value}",
        extra={"pir_id": pir.id, "action": "pir_status_change"},
    )

    if transition.event is not None and notifier is not None:
        notifier.notify(db, transition.event, pir)

    return pir


def _set_response_status(response: PIRResponse, target: ResponseStatus):
    current = response.status
    if current == target:
        return
    if target not in RESPONSE_STATUS_TRANSITIONS[current]:
        raise PIRValidationError(
            f"Answer {response.id} cannot move from {current.value} to {target.value}"
        )
    response.status = target


# ============= QUESTION SCOPE =============

def applicable_questions(db: Session, pir: PIRRequest) -> List[Question]:
    """Questions carrying at least one of the PIR's tags."""
    tag_ids = [t.id for t in pir.tags]
    if not tag_ids:
        return []
    question_ids = db.query(QuestionTag.question_id).filter(QuestionTag.tag_id.in_(tag_ids))
    return db.query(Question).filter(
        Question.id.in_(question_ids)
    ).order_by(Question.section_id, Question.order_index, Question.id).all()


def _answers_by_question(pir: PIRRequest) -> Dict[int, PIRResponse]:
    return {r.question_id: r for r in pir.responses}


def _ensure_required_answered(db: Session, pir: PIRRequest):
    questions = applicable_questions(db, pir)
    answers = {qid: r.answer for qid, r in _answers_by_question(pir).items()}
    missing = missing_required(questions, answers)
    if missing:
        raise MissingRequiredAnswersError(missing)


# ============= OPERATIONS =============

def create_pir(
    db: Session,
    ctx: CompanyContext,
    supplier_company_id: int,
    product_id: Optional[int] = None,
    suggested_product_name: Optional[str] = None,
    tag_ids: Iterable[int] = (),
    title: Optional[str] = None,
    description: Optional[str] = None,
    due_date: Optional[datetime] = None,
    ip_address: Optional[str] = None,
) -> PIRRequest:
    """Create a PIR owned by the caller's company. New PIRs always start as draft."""
    if supplier_company_id == ctx.company_id:
        raise PIRValidationError("Customer and supplier must be different companies")

    supplier = db.query(Company).filter(Company.id == supplier_company_id).first()
    if not supplier:
        raise PIRValidationError(f"Supplier company {supplier_company_id} not found")

    product = None
    if product_id is not None:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product or product.supplier_id != supplier_company_id:
            raise PIRValidationError("Product does not belong to the selected supplier")
    if product is None and not (suggested_product_name or "").strip():
        raise PIRValidationError("A product or a product name is required")

    tag_ids = list(dict.fromkeys(tag_ids))
    tags = db.query(Tag).filter(Tag.id.in_(tag_ids)).all() if tag_ids else []
    if len(tags) != len(tag_ids):
        found = {t.id for t in tags}
        raise PIRValidationError(f"Unknown tags: {[t for t in tag_ids if t not in found]}")

    product_name = product.name if product else suggested_product_name.strip()
    pir = PIRRequest(
        customer_id=ctx.company_id,
        supplier_company_id=supplier_company_id,
        product_id=product.id if product else None,
        suggested_product_name=None if product else product_name,
        title=title or f"PIR Request for {product_name}",
        description=description or (
            f"Compliance information request for {product_name} from {supplier.name}."
        ),
        status=PIRStatus.DRAFT,
        due_date=due_date,
        created_by=ctx.user_id,
    )
    pir.tags = tags
    db.add(pir)
    db.flush()
    _audit(db, pir, ctx, "create_pir", {
        "supplier_company_id": supplier_company_id,
        "product": product_name,
        "tags": [t.name for t in tags],
    }, ip_address)
    db.commit()
    db.refresh(pir)

    logger.info(f"PIR {pir.id} created for supplier {supplier_company_id}", extra={"pir_id": pir.id})
    return pir


def send_pir(db: Session, pir: PIRRequest, ctx: CompanyContext,
             notifier: Optional[Notifier] = None, ip_address: Optional[str] = None) -> PIRRequest:
    _require_actor(pir, ctx, Actor.CUSTOMER)
    return apply_transition(db, pir, PIRStatus.SENT, Actor.CUSTOMER, ctx, notifier, ip_address=ip_address)


def start_pir(db: Session, pir: PIRRequest, ctx: CompanyContext,
              ip_address: Optional[str] = None) -> PIRRequest:
    _require_actor(pir, ctx, Actor.SUPPLIER)
    return apply_transition(db, pir, PIRStatus.IN_PROGRESS, Actor.SUPPLIER, ctx, ip_address=ip_address)


EDITABLE_STATUSES = (PIRStatus.SENT, PIRStatus.IN_PROGRESS, PIRStatus.FLAGGED)


def save_answers(
    db: Session,
    pir: PIRRequest,
    ctx: CompanyContext,
    answers: Dict[int, object],
    ip_address: Optional[str] = None,
) -> List[PIRResponse]:
    """
    Store draft answers. The first save on a sent PIR moves it to in_progress.

    While a PIR is flagged only the flagged answers (and unanswered
    questions) may change.
    """
    _require_actor(pir, ctx, Actor.SUPPLIER)
    status = parse_status(pir.status)
    if status not in EDITABLE_STATUSES:
        raise PIRValidationError(f"Answers cannot be edited while the PIR is {status.value}")

    questions = {q.id: q for q in applicable_questions(db, pir)}
    existing = _answers_by_question(pir)

    validated = {}
    for question_id, value in answers.items():
        question = questions.get(int(question_id))
        if question is None:
            raise PIRValidationError(f"Question {question_id} is not part of this PIR")
        response = existing.get(question.id)
        if response is not None and response.status not in (ResponseStatus.DRAFT, ResponseStatus.FLAGGED):
            raise PIRValidationError(
                f"Answer to question {question.id} is {response.status.value} and cannot be edited"
            )
        validated[question.id] = validate_answer(question, value)

    saved = []
    for question_id, value in validated.items():
        response = existing.get(question_id)
        if response is None:
            response = PIRResponse(pir_id=pir.id, question_id=question_id, status=ResponseStatus.DRAFT)
            db.add(response)
            pir.responses.append(response)
        response.answer = value
        saved.append(response)

    if status == PIRStatus.SENT:
        apply_transition(db, pir, PIRStatus.IN_PROGRESS, Actor.SUPPLIER, ctx,
                         details={"answers_saved": len(saved)}, ip_address=ip_address)
    else:
        _audit(db, pir, ctx, "save_answers", {"answers_saved": len(saved)}, ip_address)
        db.commit()

    for response in saved:
        db.refresh(response)
    return saved


def submit_pir(db: Session, pir: PIRRequest, ctx: CompanyContext,
               notifier: Optional[Notifier] = None, ip_address: Optional[str] = None) -> PIRRequest:
    """
    Supplier submits all answers.

    Raises:
        MissingRequiredAnswersError: before any write, when a required
            question in scope has no answer
    """
    _require_actor(pir, ctx, Actor.SUPPLIER)
    check_transition(pir, PIRStatus.SUBMITTED, Actor.SUPPLIER)
    _ensure_required_answered(db, pir)

    now = datetime.now(timezone.utc)
    for response in pir.responses:
        if response.status == ResponseStatus.DRAFT:
            _set_response_status(response, ResponseStatus.SUBMITTED)
            response.submitted_at = now

    return apply_transition(db, pir, PIRStatus.SUBMITTED, Actor.SUPPLIER, ctx, notifier, ip_address=ip_address)


def resubmit_pir(db: Session, pir: PIRRequest, ctx: CompanyContext,
                 notifier: Optional[Notifier] = None, ip_address: Optional[str] = None) -> PIRRequest:
    """Supplier resubmits after addressing flagged answers."""
    _require_actor(pir, ctx, Actor.SUPPLIER)
    check_transition(pir, PIRStatus.RESUBMITTED, Actor.SUPPLIER)
    _ensure_required_answered(db, pir)

    now = datetime.now(timezone.utc)
    for response in pir.responses:
        if response.status in (ResponseStatus.DRAFT, ResponseStatus.FLAGGED):
            _set_response_status(response, ResponseStatus.SUBMITTED)
            response.submitted_at = now

    return apply_transition(db, pir, PIRStatus.RESUBMITTED, Actor.SUPPLIER, ctx, notifier, ip_address=ip_address)


def begin_review(db: Session, pir: PIRRequest, ctx: CompanyContext,
                 ip_address: Optional[str] = None) -> PIRRequest:
    _require_actor(pir, ctx, Actor.CUSTOMER)
    if parse_status(pir.status) == PIRStatus.IN_REVIEW:
        return pir
    return apply_transition(db, pir, PIRStatus.IN_REVIEW, Actor.CUSTOMER, ctx, ip_address=ip_address)


def _resolve_open_flags(response: PIRResponse, now: datetime):
    for flag in response.flags:
        if flag.status == FlagStatus.OPEN:
            flag.status = FlagStatus.RESOLVED
            flag.resolved_at = now


@dataclass
class ReviewDecision:
    status: ResponseStatus  # approved or flagged
    note: Optional[str] = None


def review_pir(
    db: Session,
    pir: PIRRequest,
    ctx: CompanyContext,
    decisions: Dict[int, ReviewDecision],
    notifier: Optional[Notifier] = None,
    ip_address: Optional[str] = None,
) -> PIRRequest:
    """
    Apply per-answer review decisions.

    A submitted or resubmitted PIR enters in_review first. Any flagged answer
    moves the PIR to flagged; once every answer is approved it moves to
    approved; otherwise it stays in_review.
    """
    _require_actor(pir, ctx, Actor.CUSTOMER)
    status = parse_status(pir.status)
    if status not in (PIRStatus.SUBMITTED, PIRStatus.RESUBMITTED, PIRStatus.IN_REVIEW):
        raise InvalidTransitionError(status, PIRStatus.IN_REVIEW)

    responses = {r.id: r for r in pir.responses}
    for response_id, decision in decisions.items():
        response = responses.get(int(response_id))
        if response is None:
            raise PIRValidationError(f"Answer {response_id} does not belong to this PIR")
        if decision.status not in (ResponseStatus.APPROVED, ResponseStatus.FLAGGED):
            raise PIRValidationError("Review decisions must be approved or flagged")
        if decision.status == ResponseStatus.FLAGGED and not (decision.note or "").strip():
            raise PIRValidationError(f"A note is required to flag answer {response_id}")
        if response.status != decision.status and decision.status not in RESPONSE_STATUS_TRANSITIONS[response.status]:
            raise PIRValidationError(
                f"Answer {response_id} is {response.status.value} and cannot be {decision.status.value}"
            )

    if status != PIRStatus.IN_REVIEW:
        apply_transition(db, pir, PIRStatus.IN_REVIEW, Actor.CUSTOMER, ctx, ip_address=ip_address)

    now = datetime.now(timezone.utc)
    for response_id, decision in decisions.items():
        response = responses[int(response_id)]
        _set_response_status(response, decision.status)
        if decision.status == ResponseStatus.APPROVED:
            _resolve_open_flags(response, now)
        else:
            db.add(ResponseFlag(
                response_id=response.id,
                description=decision.note.strip(),
                status=FlagStatus.OPEN,
                created_by=ctx.user_id,
            ))

    flagged = [r.id for r in pir.responses if r.status == ResponseStatus.FLAGGED]
    details = {
        "approved": [rid for rid, d in decisions.items() if d.status == ResponseStatus.APPROVED],
        "flagged": [rid for rid, d in decisions.items() if d.status == ResponseStatus.FLAGGED],
    }
    if flagged:
        return apply_transition(db, pir, PIRStatus.FLAGGED, Actor.CUSTOMER, ctx, notifier, details, ip_address)
    if all(r.status == ResponseStatus.APPROVED for r in pir.responses):
        return apply_transition(db, pir, PIRStatus.APPROVED, Actor.CUSTOMER, ctx, notifier, details, ip_address)

    _audit(db, pir, ctx, "review_progress", details, ip_address)
    db.commit()
    db.refresh(pir)
    return pir


def approve_pir(db: Session, pir: PIRRequest, ctx: CompanyContext,
                notifier: Optional[Notifier] = None, ip_address: Optional[str] = None) -> PIRRequest:
    """Customer accepts every submitted answer at once."""
    _require_actor(pir, ctx, Actor.CUSTOMER)
    status = parse_status(pir.status)
    if status == PIRStatus.SUBMITTED:
        check_transition(pir, PIRStatus.IN_REVIEW, Actor.CUSTOMER)
    else:
        check_transition(pir, PIRStatus.APPROVED, Actor.CUSTOMER)

    if any(r.status in (ResponseStatus.DRAFT, ResponseStatus.FLAGGED) for r in pir.responses):
        raise PIRValidationError("Every answer must be submitted before the PIR can be approved")

    if status == PIRStatus.SUBMITTED:
        begin_review(db, pir, ctx, ip_address)

    now = datetime.now(timezone.utc)
    for response in pir.responses:
        _set_response_status(response, ResponseStatus.APPROVED)
        _resolve_open_flags(response, now)

    return apply_transition(db, pir, PIRStatus.APPROVED, Actor.CUSTOMER, ctx, notifier, ip_address=ip_address)


def reject_pir(db: Session, pir: PIRRequest, ctx: CompanyContext, reason: Optional[str] = None,
               notifier: Optional[Notifier] = None, ip_address: Optional[str] = None) -> PIRRequest:
    _require_actor(pir, ctx, Actor.CUSTOMER)
    if parse_status(pir.status) in (PIRStatus.SUBMITTED, PIRStatus.RESUBMITTED):
        begin_review(db, pir, ctx, ip_address)
    return apply_transition(db, pir, PIRStatus.REJECTED, Actor.CUSTOMER, ctx, notifier,
                            {"reason": reason} if reason else None, ip_address)


def cancel_pir(db: Session, pir: PIRRequest, ctx: CompanyContext,
               ip_address: Optional[str] = None) -> PIRRequest:
    _require_actor(pir, ctx, Actor.CUSTOMER)
    return apply_transition(db, pir, PIRStatus.CANCELED, Actor.CUSTOMER, ctx, ip_address=ip_address)
