"""
Authentication API routes.
"""
import re
from datetime import datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel, EmailStr, field_validator, Field
from sqlalchemy.orm import Session
from sqlalchemy import func

from app.db.session import get_db
from app.db.models import User, Profile, Company, CompanyUser, CompanyType, UserRole, AuditLog
from app.core.security import (
    verify_password, get_password_hash, create_session_token,
    get_token_payload, get_role_value
)
from app.core.config import settings
from app.core.logging import get_logger
from app.services.company_bootstrap import ensure_user_company_association

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
logger = get_logger(__name__)


# ============= SCHEMAS =============

def _check_password_strength(v: str) -> str:
    if not re.search(r'[A-Za-z]', v):
        raise ValueError('Password must contain at least one letter')
    if not re.search(r'[0-9]', v):
        raise ValueError('Password must contain at least one number')
    return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., max_length=128)


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=10, max_length=128)
    first_name: Optional[str] = Field(None, max_length=255)
    last_name: Optional[str] = Field(None, max_length=255)
    company_name: Optional[str] = Field(None, max_length=255)

    @field_validator('password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_strength(v)


class SwitchCompanyRequest(BaseModel):
    company_id: int


class MembershipResponse(BaseModel):
    company_id: int
    company_name: str
    role: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: dict
    current_company: Optional[MembershipResponse] = None
    companies: List[MembershipResponse] = []


class MeResponse(BaseModel):
    id: int
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    current_company: Optional[MembershipResponse]
    companies: List[MembershipResponse]


# ============= HELPERS =============

def _memberships(db: Session, user_id: int) -> List[MembershipResponse]:
    rows = db.query(CompanyUser, Company).join(
        Company, Company.id == CompanyUser.company_id
    ).filter(CompanyUser.user_id == user_id).order_by(CompanyUser.id).all()
    return [
        MembershipResponse(company_id=c.id, company_name=c.name, role=get_role_value(m.role))
        for m, c in rows
    ]


def _user_summary(user: User) -> dict:
    profile = user.profile
    return {
        "id": user.id,
        "email": user.email,
        "first_name": profile.first_name if profile else None,
        "last_name": profile.last_name if profile else None,
    }


def _token_response(db: Session, user: User, company_id: Optional[int] = None) -> TokenResponse:
    companies = _memberships(db, user.id)
    current = None
    if company_id is not None:
        current = next((m for m in companies if m.company_id == company_id), None)
    if current is None and companies:
        current = companies[0]

    token = create_session_token(
        user.id, user.email,
        current.company_id if current else None,
        current.role if current else None,
    )
    return TokenResponse(
        access_token=token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=_user_summary(user),
        current_company=current,
        companies=companies,
    )


def _audit(db: Session, request: Request, user_id: int, company_id: Optional[int], action: str,
           details: Optional[dict] = None):
    db.add(AuditLog(
        user_id=user_id,
        company_id=company_id,
        action=action,
        entity_type="user",
        entity_id=user_id,
        details=details,
        ip_address=request.client.host if request.client else None,
    ))


# ============= ROUTES =============

@router.post("/register", response_model=TokenResponse)
async def register(
    request: Request,
    register_data: RegisterRequest,
    db: Session = Depends(get_db)
):
    """
    Register a new user.

    With a company name the user becomes owner of that new company; without
    one the login bootstrap gives them a default company.
    """
    existing = db.query(User).filter(func.lower(User.email) == register_data.email.lower()).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    user = User(
        email=register_data.email.lower(),
        hashed_password=get_password_hash(register_data.password),
        user_metadata={
            "first_name": register_data.first_name,
            "last_name": register_data.last_name,
        },
    )
    db.add(user)
    db.flush()
    db.add(Profile(
        id=user.id,
        email=user.email,
        first_name=register_data.first_name,
        last_name=register_data.last_name,
    ))

    company_id = None
    if register_data.company_name:
        company = Company(
            name=register_data.company_name,
            role=CompanyType.BOTH,
            contact_email=user.email,
        )
        db.add(company)
        db.flush()
        db.add(CompanyUser(company_id=company.id, user_id=user.id, role=UserRole.OWNER))
        company_id = company.id

    _audit(db, request, user.id, company_id, "register", {"email": user.email})
    db.commit()

    if company_id is None:
        ensure_user_company_association(db, user.id, user.email)

    db.refresh(user)
    return _token_response(db, user, company_id)


@router.post("/login", response_model=TokenResponse)
async def login(
    request: Request,
    login_data: LoginRequest,
    db: Session = Depends(get_db)
):
    """Authenticate user, make sure they belong to a company and return a session token."""
    user = db.query(User).filter(func.lower(User.email) == login_data.email.lower()).first()

    if not user or not verify_password(login_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is disabled",
        )

    result = ensure_user_company_association(db, user.id, user.email)
    if result.error:
        logger.warning(f"Retrying company bootstrap for user {user.id}", extra={"user_id": user.id})
        result = ensure_user_company_association(db, user.id, user.email)
        if result.error:
            logger.error(f"Company bootstrap failed twice for user {user.id}: {result.error}",
                         extra={"user_id": user.id})

    user.last_login = datetime.now(timezone.utc)
    response = _token_response(db, user)

    _audit(db, request, user.id,
           response.current_company.company_id if response.current_company else None,
           "login", {"email": user.email, "company_created": result.created})
    db.commit()

    return response


@router.get("/me", response_model=MeResponse)
async def get_current_user(
    token_payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db)
):
    """Get current authenticated user and their company selection."""
    user = db.query(User).filter(User.id == int(token_payload.get("sub"))).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    companies = _memberships(db, user.id)
    company_id = token_payload.get("company_id")
    current = next((m for m in companies if m.company_id == company_id), None)
    summary = _user_summary(user)

    return MeResponse(
        id=user.id,
        email=user.email,
        first_name=summary["first_name"],
        last_name=summary["last_name"],
        current_company=current,
        companies=companies,
    )


@router.get("/companies", response_model=List[MembershipResponse])
async def list_my_companies(
    token_payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db)
):
    """Companies the current user belongs to."""
    return _memberships(db, int(token_payload.get("sub")))


@router.post("/switch-company", response_model=TokenResponse)
async def switch_company(
    request: Request,
    data: SwitchCompanyRequest,
    token_payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db)
):
    """Issue a new session token bound to another company the user belongs to."""
    user = db.query(User).filter(User.id == int(token_payload.get("sub"))).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    membership = db.query(CompanyUser).filter(
        CompanyUser.user_id == user.id,
        CompanyUser.company_id == data.company_id,
    ).first()
    if not membership:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this company",
        )

    _audit(db, request, user.id, data.company_id, "switch_company",
           {"from": token_payload.get("company_id"), "to": data.company_id})
    db.commit()

    return _token_response(db, user, data.company_id)


@router.post("/logout")
async def logout(
    request: Request,
    token_payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db)
):
    """Log out user (for audit purposes)."""
    user_id = int(token_payload.get("sub"))
    _audit(db, request, user_id, token_payload.get("company_id"), "logout")
    db.commit()

    return {"message": "Logged out successfully"}
