"""
Audit Log API routes.
"""
from typing import List, Optional
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session
from sqlalchemy import desc, distinct, func

from app.db.session import get_db
from app.db.models import AuditLog, PIRRequest
from app.core.rbac import CompanyContext, get_company_context, require_admin

router = APIRouter(prefix="/api/audit", tags=["Audit"])


# ============= SCHEMAS =============

class AuditLogResponse(BaseModel):
    id: int
    timestamp: Optional[datetime]
    user_id: Optional[int]
    user_email: Optional[str]
    company_id: Optional[int]
    action: str
    entity_type: Optional[str]
    entity_id: Optional[int]
    details: Optional[dict]
    ip_address: Optional[str]


class AuditSummary(BaseModel):
    total_events: int
    events_today: int
    top_actions: List[dict]
    top_users: List[dict]


def _to_response(log: AuditLog) -> AuditLogResponse:
    return AuditLogResponse(
        id=log.id,
        timestamp=log.timestamp,
        user_id=log.user_id,
        user_email=log.user.email if log.user else None,
        company_id=log.company_id,
        action=log.action,
        entity_type=log.entity_type,
        entity_id=log.entity_id,
        details=log.details,
        ip_address=log.ip_address,
    )


# ============= ROUTES =============

@router.get("/logs", response_model=List[AuditLogResponse])
async def list_audit_logs(
    action: Optional[str] = Query(None, description="Filter by action type"),
    entity_type: Optional[str] = Query(None, description="Filter by entity type"),
    entity_id: Optional[int] = Query(None, description="Filter by entity id"),
    user_id: Optional[int] = Query(None, description="Filter by user"),
    start_date: Optional[datetime] = Query(None, description="Start date filter"),
    end_date: Optional[datetime] = Query(None, description="End date filter"),
    limit: int = Query(100, le=500),
    offset: int = Query(0),
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """List audit logs written by the current company (admin only)."""
    query = db.query(AuditLog).filter(AuditLog.company_id == ctx.company_id)

    if action:
        query = query.filter(AuditLog.action == action)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditLog.entity_id == entity_id)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    if start_date:
        query = query.filter(AuditLog.timestamp >= start_date)
    if end_date:
        query = query.filter(AuditLog.timestamp <= end_date)

    logs = query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).offset(offset).limit(limit).all()
    return [_to_response(log) for log in logs]


@router.get("/pirs/{pir_id}", response_model=List[AuditLogResponse])
async def get_pir_history(
    pir_id: int,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Status history of one PIR, visible to both the customer and the supplier."""
    pir = db.query(PIRRequest).filter(PIRRequest.id == pir_id).first()
    if not pir or ctx.company_id not in (pir.customer_id, pir.supplier_company_id):
        raise HTTPException(status_code=404, detail="PIR not found")

    logs = db.query(AuditLog).filter(
        AuditLog.entity_type == "pir_request",
        AuditLog.entity_id == pir_id,
    ).order_by(AuditLog.id).all()
    return [_to_response(log) for log in logs]


@router.get("/summary", response_model=AuditSummary)
async def get_audit_summary(
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Get audit log summary (admin only)."""
    company_id = ctx.company_id
    now = datetime.now(timezone.utc)

    total = db.query(AuditLog).filter(AuditLog.company_id == company_id).count()

    today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    today_count = db.query(AuditLog).filter(
        AuditLog.company_id == company_id,
        AuditLog.timestamp >= today_start
    ).count()

    # Top actions (last 7 days)
    week_ago = now - timedelta(days=7)
    action_counts = db.query(
        AuditLog.action,
        func.count(AuditLog.id).label('count')
    ).filter(
        AuditLog.company_id == company_id,
        AuditLog.timestamp >= week_ago
    ).group_by(AuditLog.action).order_by(desc('count')).limit(10).all()

    user_counts = db.query(
        AuditLog.user_id,
        func.count(AuditLog.id).label('count')
    ).filter(
        AuditLog.company_id == company_id,
        AuditLog.timestamp >= week_ago,
        AuditLog.user_id.isnot(None)
    ).group_by(AuditLog.user_id).order_by(desc('count')).limit(10).all()

    return AuditSummary(
        total_events=total,
        events_today=today_count,
        top_actions=[{"action": a, "count": c} for a, c in action_counts],
        top_users=[{"user_id": u, "count": c} for u, c in user_counts],
    )


@router.get("/actions")
async def list_action_types(
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """List all unique action types in the current company's audit log."""
    actions = db.query(distinct(AuditLog.action)).filter(
        AuditLog.company_id == ctx.company_id
    ).all()
    return [a[0] for a in actions]
