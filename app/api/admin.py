"""
Admin API routes - company member management and data reset.
Requires ADMIN or OWNER role for all endpoints.
"""
from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import AuditLog, CompanyUser, User, UserRole
from app.core.config import settings, should_enable_debug_tools
from app.core.logging import audit_event
from app.core.rbac import CompanyContext, Role, require_admin, require_owner
from app.core.security import get_role_value
from app.services.data_reset import clear_all_data

router = APIRouter(prefix="/api/admin", tags=["Admin"])


# ============= SCHEMAS =============

class MemberResponse(BaseModel):
    user_id: int
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    role: str
    is_active: bool
    last_login: Optional[datetime]


class RoleUpdate(BaseModel):
    role: UserRole


class DataResetRequest(BaseModel):
    confirmation_code: str


class DataResetResponse(BaseModel):
    success: bool
    message: str


# ============= HELPERS =============

def _member_response(membership: CompanyUser) -> MemberResponse:
    user = membership.user
    profile = user.profile
    return MemberResponse(
        user_id=user.id,
        email=user.email,
        first_name=profile.first_name if profile else None,
        last_name=profile.last_name if profile else None,
        role=get_role_value(membership.role),
        is_active=user.is_active,
        last_login=user.last_login,
    )


def _get_membership(db: Session, company_id: int, user_id: int) -> CompanyUser:
    membership = db.query(CompanyUser).filter(
        CompanyUser.company_id == company_id,
        CompanyUser.user_id == user_id,
    ).first()
    if not membership:
        raise HTTPException(status_code=404, detail="Member not found")
    return membership


def _owner_count(db: Session, company_id: int) -> int:
    return db.query(CompanyUser).filter(
        CompanyUser.company_id == company_id,
        CompanyUser.role == UserRole.OWNER,
    ).count()


# ============= MEMBER ROUTES =============

@router.get("/members", response_model=List[MemberResponse])
async def list_members(
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    List all members of the current company.
    Admin-only endpoint.
    """
    memberships = db.query(CompanyUser).join(User, User.id == CompanyUser.user_id).filter(
        CompanyUser.company_id == ctx.company_id
    ).order_by(User.email).all()
    return [_member_response(m) for m in memberships]


@router.put("/members/{user_id}/role", response_model=MemberResponse)
async def change_member_role(
    user_id: int,
    request: Request,
    data: RoleUpdate,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """
    Change a member's role. Admin-only.

    Only owners may grant or revoke the owner role, and the last owner of a
    company cannot be demoted.
    """
    membership = _get_membership(db, ctx.company_id, user_id)
    current_role = UserRole(membership.role)

    if UserRole.OWNER in (current_role, data.role) and ctx.role != Role.OWNER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only owners can grant or revoke the owner role",
        )

    if current_role == UserRole.OWNER and data.role != UserRole.OWNER and _owner_count(db, ctx.company_id) <= 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot demote the last owner of the company",
        )

    membership.role = data.role
    db.add(AuditLog(
        user_id=ctx.user_id,
        company_id=ctx.company_id,
        action="change_member_role",
        entity_type="company_user",
        entity_id=membership.id,
        details={"user_id": user_id, "from": current_role.value, "to": data.role.value},
        ip_address=request.client.host if request.client else None,
    ))
    db.commit()
    db.refresh(membership)

    return _member_response(membership)


@router.delete("/members/{user_id}")
async def remove_member(
    user_id: int,
    request: Request,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Remove a member from the current company. Cannot remove yourself."""
    if ctx.user_id == user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot remove yourself from the company"
        )

    membership = _get_membership(db, ctx.company_id, user_id)
    if UserRole(membership.role) == UserRole.OWNER and ctx.role != Role.OWNER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only owners can remove an owner",
        )

    email = membership.user.email
    db.delete(membership)
    db.add(AuditLog(
        user_id=ctx.user_id,
        company_id=ctx.company_id,
        action="remove_member",
        entity_type="company_user",
        entity_id=user_id,
        details={"email": email},
        ip_address=request.client.host if request.client else None,
    ))
    db.commit()

    return {"message": f"{email} removed from the company"}


# ============= DATA RESET =============

@router.post("/reset-data", response_model=DataResetResponse)
async def reset_data(
    data: DataResetRequest,
    ctx: CompanyContext = Depends(require_owner),
    db: Session = Depends(get_db)
):
    """
    Clear ALL data in the database (development and staging only).
    Available only when ENABLE_DEBUG_TOOLS is on.
    """
    if not should_enable_debug_tools():
        raise HTTPException(status_code=404, detail="Not found")

    audit_event(
        action="data_reset_requested",
        user_id=ctx.user_id,
        company_id=ctx.company_id,
        details={"environment": settings.APP_ENV},
    )
    result = clear_all_data(db, data.confirmation_code)
    return DataResetResponse(**result.to_dict())
