"""
Company-scoped role checks as FastAPI dependencies.

Roles are held per membership (company_users), so every check re-reads the
membership row for the company named in the session token. A token issued
before a role change or a membership removal therefore stops granting access
immediately.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.security import decode_token, security
from app.db.session import get_db


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


# Role hierarchy: higher index = more permissions
ROLE_HIERARCHY = {
    Role.MEMBER: 0,
    Role.ADMIN: 1,
    Role.OWNER: 2,
}


def has_permission(user_role: Role, required_role: Role) -> bool:
    """Check if user role has sufficient permissions."""
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, 0)


@dataclass
class CompanyContext:
    """Request-scoped identity: who is calling and on behalf of which company."""
    user_id: int
    email: Optional[str]
    company_id: int
    role: Role


def _user_id_from_payload(payload: dict) -> int:
    user_id_raw = payload.get("sub") or payload.get("user_id")
    if user_id_raw is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user identifier (sub)",
        )
    return int(user_id_raw)


async def get_company_context(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> CompanyContext:
    """Resolve the caller's current company and their role in it."""
    from app.db.models import CompanyUser

    payload = decode_token(credentials.credentials)
    user_id = _user_id_from_payload(payload)
    company_id = payload.get("company_id")
    if company_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No company selected for this session",
        )

    membership = db.query(CompanyUser).filter(
        CompanyUser.user_id == user_id,
        CompanyUser.company_id == company_id,
    ).first()
    if not membership:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to this company",
        )

    return CompanyContext(
        user_id=user_id,
        email=payload.get("email"),
        company_id=company_id,
        role=Role(membership.role),
    )


class RBACChecker:
    """Dependency for checking role-based access within the current company."""

    def __init__(self, required_role: Role):
        self.required_role = required_role

    async def __call__(
        self,
        context: CompanyContext = Depends(get_company_context),
    ) -> CompanyContext:
        if not has_permission(context.role, self.required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {self.required_role.value}",
            )
        return context


# Convenience dependencies for common role checks
require_member = RBACChecker(Role.MEMBER)
require_admin = RBACChecker(Role.ADMIN)
require_owner = RBACChecker(Role.OWNER)
