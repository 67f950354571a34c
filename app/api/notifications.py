"""
Notification API route: turns an event payload into one queued email.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import PIRRequest
from app.core.logging import get_logger
from app.core.security import get_token_payload
from app.services.notifications import (
    NotificationType, Notifier, build_invitation_email, build_pir_email, get_notifier,
)
from app.services.pir_lifecycle import parse_status

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])
logger = get_logger(__name__)


# ============= SCHEMAS =============

class NotificationRequest(BaseModel):
    type: NotificationType
    record: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None
    # SUPPLIER_INVITATION may also carry its fields at the top level
    invite_email: Optional[str] = None
    inviter_name: Optional[str] = None
    inviter_company_name: Optional[str] = None


@dataclass
class PIRRecord:
    id: int
    status: Any
    customer_id: Optional[int]
    supplier_company_id: Optional[int]
    product_id: Optional[int] = None
    suggested_product_name: Optional[str] = None


def _optional_int(value) -> Optional[int]:
    return int(value) if value not in (None, "") else None


def _pir_record(db: Session, record: Dict[str, Any]) -> PIRRecord:
    """Build the record from the payload, filling missing fields from the stored PIR."""
    if record.get("id") in (None, ""):
        raise ValueError("record.id is required")
    pir_id = int(record["id"])
    stored = db.query(PIRRequest).filter(PIRRequest.id == pir_id).first()

    def pick(key):
        if record.get(key) not in (None, ""):
            return record[key]
        return getattr(stored, key) if stored is not None else None

    status = pick("status")
    if status is None:
        raise ValueError("record.status is required")
    return PIRRecord(
        id=pir_id,
        status=parse_status(status),
        customer_id=_optional_int(pick("customer_id")),
        supplier_company_id=_optional_int(pick("supplier_company_id")),
        product_id=_optional_int(pick("product_id")),
        suggested_product_name=pick("suggested_product_name"),
    )


# ============= ROUTES =============

@router.post("/send")
async def send_notification(
    payload: NotificationRequest,
    token_payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """
    Build and queue the email for one event.

    Responds 200 {success, message} (also when there is nothing to send) or
    500 {error}.
    """
    body = payload.record or payload.data or {}
    try:
        if payload.type == NotificationType.SUPPLIER_INVITATION:
            message = build_invitation_email(
                body.get("invite_email") or payload.invite_email,
                body.get("inviter_name") or payload.inviter_name or "A customer",
                body.get("inviter_company_name") or payload.inviter_company_name or "A customer",
                body.get("invitation_token"),
            )
        else:
            record = _pir_record(db, body)
            old_status = (payload.old_record or {}).get("status")
            if old_status is not None and parse_status(old_status) == record.status:
                return {"success": True, "message": "Status unchanged"}
            message = build_pir_email(db, record)

        if message is None:
            return {"success": True, "message": "No email sent"}

        notifier.dispatch(message)
    except Exception as e:
        logger.error(f"Failed to send {payload.type.value} notification: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})

    logger.info(f"Queued {payload.type.value} email to {message.to}")
    return {"success": True, "message": "Email sent successfully"}
