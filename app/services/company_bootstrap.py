"""
Company-association bootstrap.

Guarantees an authenticated user has at least one company membership. A user
without one gets a profile (if missing), a company named after their email
local-part and an admin membership in that company. The company and the
membership are written in a single transaction.
"""
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models import Company, CompanyType, CompanyUser, Profile, User, UserRole

logger = get_logger(__name__)


@dataclass
class BootstrapResult:
    created: bool
    company_id: Optional[int] = None
    error: Optional[str] = None


def company_name_for_email(email: str) -> str:
    local_part = (email or "").split("@")[0].strip() or "My"
    return f"{local_part}'s Company"


def _ensure_profile(db: Session, user: User, email: str):
    if db.query(Profile).filter(Profile.id == user.id).first():
        return

    metadata = user.user_metadata or {}
    profile = Profile(
        id=user.id,
        email=email,
        first_name=metadata.get("first_name") or metadata.get("firstName"),
        last_name=metadata.get("last_name") or metadata.get("lastName"),
    )
    try:
        db.add(profile)
        db.flush()
    except IntegrityError as e:
        # Another request created the profile first; nothing else is pending yet.
        db.rollback()
        logger.warning(f"Profile for user {user.id} not created ({e.orig}); continuing",
                       extra={"user_id": user.id})


def ensure_user_company_association(db: Session, user_id: int, email: str) -> BootstrapResult:
    """
    Give the user a default company unless they already belong to one.

    Returns created=False both when a membership already existed and when the
    bootstrap failed (error is set in that case); nothing is left half-written.
    """
    existing = db.query(CompanyUser).filter(CompanyUser.user_id == user_id).first()
    if existing:
        return BootstrapResult(created=False, company_id=existing.company_id)

    try:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            return BootstrapResult(created=False, error=f"User {user_id} not found")

        _ensure_profile(db, user, email)

        company = Company(
            name=company_name_for_email(email),
            role=CompanyType.BOTH,
            contact_email=email,
        )
        db.add(company)
        db.flush()

        if settings.BOOTSTRAP_PROPAGATION_DELAY > 0:
            time.sleep(settings.BOOTSTRAP_PROPAGATION_DELAY)

        db.add(CompanyUser(company_id=company.id, user_id=user_id, role=UserRole.ADMIN))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Company bootstrap failed for user {user_id}: {e}", extra={"user_id": user_id})
        return BootstrapResult(created=False, error=str(e))

    logger.info(
        f"Created company {company.id} and admin membership for user {user_id}",
        extra={"user_id": user_id, "company_id": company.id, "action": "company_bootstrap"},
    )
    return BootstrapResult(created=True, company_id=company.id)
