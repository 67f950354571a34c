"""
Supplier invitation API routes.

A customer invites a supplier contact by email. The invited user exists
inactive, without a password, until they accept with the emailed token.
"""
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import (
    AuditLog, Company, CompanyRelationship, CompanyType, CompanyUser, Profile,
    RelationshipStatus, User, UserRole,
)
from app.core.logging import get_logger
from app.core.rbac import CompanyContext, get_company_context
from app.core.security import generate_invitation_token, get_password_hash
from app.api.auth import TokenResponse, _check_password_strength, _token_response
from app.services.notifications import Notifier, build_invitation_email, get_notifier

router = APIRouter(prefix="/api/invitations", tags=["Invitations"])
logger = get_logger(__name__)


# ============= SCHEMAS =============

class InviteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    inviting_company_id: Optional[int] = Field(None, alias="invitingCompanyId")
    inviting_user_id: Optional[int] = Field(None, alias="invitingUserId")
    supplier_name: Optional[str] = Field(None, alias="supplierName", max_length=255)
    contact_name: Optional[str] = Field(None, alias="contactName", max_length=255)
    invited_supplier_company_id: Optional[int] = None


class AcceptInvitationRequest(BaseModel):
    token: str
    password: str = Field(..., min_length=10, max_length=128)
    first_name: Optional[str] = Field(None, max_length=255)
    last_name: Optional[str] = Field(None, max_length=255)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_strength(v)


# ============= HELPERS =============

def _ensure_supplier_company(db: Session, ctx: CompanyContext, data: InviteRequest) -> Optional[Company]:
    if data.invited_supplier_company_id is not None:
        # Contacts may only be invited into suppliers the company already works with.
        supplier = db.query(Company).join(
            CompanyRelationship, CompanyRelationship.supplier_id == Company.id,
        ).filter(
            Company.id == data.invited_supplier_company_id,
            CompanyRelationship.customer_id == ctx.company_id,
        ).first()
        if not supplier:
            raise HTTPException(status_code=404, detail="Supplier company not found")
        return supplier

    if not data.supplier_name:
        return None

    supplier = Company(
        name=data.supplier_name,
        role=CompanyType.SUPPLIER,
        contact_name=data.contact_name,
        contact_email=data.email,
    )
    db.add(supplier)
    db.flush()
    db.add(CompanyRelationship(
        customer_id=ctx.company_id,
        supplier_id=supplier.id,
        status=RelationshipStatus.PENDING,
    ))
    return supplier


def _inviter_name(db: Session, ctx: CompanyContext) -> str:
    profile = db.query(Profile).filter(Profile.id == ctx.user_id).first()
    return (profile.full_name if profile else "") or ctx.email or "A customer"


# ============= ROUTES =============

@router.post("")
async def invite_user(
    request: Request,
    data: InviteRequest,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier)
):
    """
    Invite a supplier contact by email.

    Returns 409 when the email already belongs to a registered user. Inviting
    an address with a pending invitation issues a fresh token.
    """
    if data.inviting_company_id is not None and data.inviting_company_id != ctx.company_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invitations can only be sent on behalf of your current company",
        )

    email = data.email.lower()
    user = db.query(User).filter(func.lower(User.email) == email).first()
    if user and user.hashed_password:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT,
                            content={"error": "User already registered."})

    supplier = _ensure_supplier_company(db, ctx, data)
    metadata = {
        "invited_by_user_id": data.inviting_user_id or ctx.user_id,
        "invited_to_company_id": ctx.company_id,
        "invited_supplier_name": data.supplier_name or (supplier.name if supplier else None),
        "invited_contact_name": data.contact_name,
        "invited_supplier_company_id": supplier.id if supplier else None,
    }

    token = generate_invitation_token()
    now = datetime.now(timezone.utc)
    if user is None:
        user = User(email=email, hashed_password=None, is_active=False)
        db.add(user)
    user.user_metadata = metadata
    user.invitation_token = token
    user.invited_at = now
    db.flush()

    db.add(AuditLog(
        user_id=ctx.user_id,
        company_id=ctx.company_id,
        action="invite_user",
        entity_type="user",
        entity_id=user.id,
        details={"email": email, "supplier_company_id": metadata["invited_supplier_company_id"]},
        ip_address=request.client.host if request.client else None,
    ))
    db.commit()

    inviter_company = db.query(Company).filter(Company.id == ctx.company_id).first()
    notifier.notify_message(build_invitation_email(
        email,
        _inviter_name(db, ctx),
        inviter_company.name if inviter_company else "A customer",
        token,
    ))
    logger.info(f"Invited {email} to supplier company {metadata['invited_supplier_company_id']}",
                extra={"user_id": ctx.user_id, "company_id": ctx.company_id})

    return {
        "success": True,
        "data": {
            "user": {"id": user.id, "email": user.email, "invited_at": now.isoformat()},
            "invited_supplier_company_id": metadata["invited_supplier_company_id"],
        },
    }


@router.post("/accept", response_model=TokenResponse)
async def accept_invitation(
    request: Request,
    data: AcceptInvitationRequest,
    db: Session = Depends(get_db)
):
    """Complete registration for an invited user and join the invited supplier company."""
    user = db.query(User).filter(User.invitation_token == data.token).first()
    if not user:
        raise HTTPException(status_code=404, detail="Invitation not found or already used")

    user.hashed_password = get_password_hash(data.password)
    user.is_active = True
    user.invitation_token = None

    metadata = dict(user.user_metadata or {})
    metadata.update({"first_name": data.first_name, "last_name": data.last_name})
    user.user_metadata = metadata

    profile = db.query(Profile).filter(Profile.id == user.id).first()
    if profile is None:
        profile = Profile(id=user.id, email=user.email)
        db.add(profile)
    profile.first_name = data.first_name
    profile.last_name = data.last_name

    company_id = metadata.get("invited_supplier_company_id")
    if company_id is not None:
        has_owner = db.query(CompanyUser).filter(
            CompanyUser.company_id == company_id,
            CompanyUser.role == UserRole.OWNER,
        ).first() is not None
        existing = db.query(CompanyUser).filter(
            CompanyUser.company_id == company_id,
            CompanyUser.user_id == user.id,
        ).first()
        if not existing:
            db.add(CompanyUser(
                company_id=company_id,
                user_id=user.id,
                role=UserRole.MEMBER if has_owner else UserRole.OWNER,
            ))
        relationship = db.query(CompanyRelationship).filter(
            CompanyRelationship.customer_id == metadata.get("invited_to_company_id"),
            CompanyRelationship.supplier_id == company_id,
        ).first()
        if relationship and relationship.status == RelationshipStatus.PENDING:
            relationship.status = RelationshipStatus.ACTIVE

    db.add(AuditLog(
        user_id=user.id,
        company_id=company_id,
        action="accept_invitation",
        entity_type="user",
        entity_id=user.id,
        ip_address=request.client.host if request.client else None,
    ))
    db.commit()
    db.refresh(user)

    return _token_response(db, user, company_id)
