"""
SQLAlchemy ORM models for Compliance Connect.
Customer and supplier data is scoped to companies; questions and tags are
shared reference data.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime,
    ForeignKey, Enum, JSON, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from app.db.session import Base


# ============= ENUMS =============

class UserRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class CompanyType(str, enum.Enum):
    SUPPLIER = "supplier"
    CUSTOMER = "customer"
    BOTH = "both"


class RelationshipStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


class QuestionType(str, enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    FILE = "file"
    TABLE = "table"


class PIRStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    RESUBMITTED = "resubmitted"
    IN_REVIEW = "in_review"
    FLAGGED = "flagged"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELED = "canceled"


class ResponseStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    FLAGGED = "flagged"


class FlagStatus(str, enum.Enum):
    OPEN = "open"
    RESOLVED = "resolved"


# Stored as VARCHAR with a CHECK constraint so the schema is portable;
# values_callable keeps the lowercase enum values, not the member names.
def enum_values(enum_cls):
    return [e.value for e in enum_cls]


def _enum_type(enum_cls, name):
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
        values_callable=enum_values,
        validate_strings=True,
    )


UserRoleType = _enum_type(UserRole, 'userrole')
CompanyTypeType = _enum_type(CompanyType, 'companytype')
RelationshipStatusType = _enum_type(RelationshipStatus, 'relationshipstatus')
QuestionTypeType = _enum_type(QuestionType, 'questiontype')
PIRStatusType = _enum_type(PIRStatus, 'pirstatus')
ResponseStatusType = _enum_type(ResponseStatus, 'responsestatus')
FlagStatusType = _enum_type(FlagStatus, 'flagstatus')


# ============= IDENTITY & COMPANIES =============

class User(Base):
    """Login identity. Invited users exist inactive until they accept."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    user_metadata = Column(JSON, default=dict)
    invitation_token = Column(String(100), unique=True, nullable=True, index=True)
    invited_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_login = Column(DateTime(timezone=True))

    # Relationships
    profile = relationship("Profile", back_populates="user", uselist=False)
    memberships = relationship("CompanyUser", back_populates="user")
    audit_logs = relationship("AuditLog", back_populates="user")


class Profile(Base):
    """Display profile; shares its primary key with the user."""
    __tablename__ = "profiles"

    id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    email = Column(String(255))
    first_name = Column(String(255))
    last_name = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="profile")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class Company(Base):
    """A customer and/or supplier organization."""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    role = Column(CompanyTypeType, default=CompanyType.BOTH, nullable=False)
    contact_name = Column(String(255))
    contact_email = Column(String(255))
    contact_phone = Column(String(50))
    address = Column(Text)
    city = Column(String(100))
    state = Column(String(100))
    country = Column(String(100))
    zip_code = Column(String(20))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    members = relationship("CompanyUser", back_populates="company")
    products = relationship("Product", back_populates="supplier")
    audit_logs = relationship("AuditLog", back_populates="company")


class CompanyUser(Base):
    """Membership of a user in a company, with exactly one role."""
    __tablename__ = "company_users"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(UserRoleType, default=UserRole.MEMBER, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    company = relationship("Company", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint('company_id', 'user_id', name='uq_company_user'),
    )


class CompanyRelationship(Base):
    """Customer -> supplier link."""
    __tablename__ = "company_relationships"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    supplier_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    status = Column(RelationshipStatusType, default=RelationshipStatus.PENDING, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    customer = relationship("Company", foreign_keys=[customer_id])
    supplier = relationship("Company", foreign_keys=[supplier_id])

    __table_args__ = (
        UniqueConstraint('customer_id', 'supplier_id', name='uq_relationship_pair'),
    )


# ============= AUDIT LOG =============

class AuditLog(Base):
    """Compliance-grade audit log."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), index=True)
    entity_id = Column(Integer)
    details = Column(JSON)
    ip_address = Column(String(50))

    user = relationship("User", back_populates="audit_logs")
    company = relationship("Company", back_populates="audit_logs")

    __table_args__ = (
        Index('ix_audit_logs_company_timestamp', 'company_id', 'timestamp'),
    )


# ============= QUESTION BANK =============

class Section(Base):
    __tablename__ = "sections"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    order_index = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    subsections = relationship("Subsection", back_populates="section", order_by="Subsection.order_index")
    questions = relationship("Question", back_populates="section")


class Subsection(Base):
    __tablename__ = "subsections"

    id = Column(Integer, primary_key=True, index=True)
    section_id = Column(Integer, ForeignKey("sections.id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    order_index = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    section = relationship("Section", back_populates="subsections")
    questions = relationship("Question", back_populates="subsection")


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    color = Column(String(20), default="#6366f1")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class QuestionTag(Base):
    __tablename__ = "question_tags"

    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)


class Question(Base):
    """Question-bank entry; identity is fixed once answered against."""
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    section_id = Column(Integer, ForeignKey("sections.id"), nullable=True)
    subsection_id = Column(Integer, ForeignKey("subsections.id"), nullable=True)
    text = Column(Text, nullable=False)
    description = Column(Text)
    type = Column(QuestionTypeType, default=QuestionType.TEXT, nullable=False)
    required = Column(Boolean, default=True, nullable=False)
    options = Column(JSON)  # list of choices for choice types
    table_columns = Column(JSON)  # column definitions for table type
    order_index = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    section = relationship("Section", back_populates="questions")
    subsection = relationship("Subsection", back_populates="questions")
    tags = relationship("Tag", secondary="question_tags", lazy="selectin")


# ============= PRODUCTS & PIRs =============

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    supplier_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    supplier = relationship("Company", back_populates="products")


class PIRTag(Base):
    __tablename__ = "pir_tags"

    pir_id = Column(Integer, ForeignKey("pir_requests.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)


class PIRRequest(Base):
    """Product Information Request, owned by the customer company."""
    __tablename__ = "pir_requests"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    supplier_company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)
    suggested_product_name = Column(String(255))
    title = Column(String(500))
    description = Column(Text)
    status = Column(PIRStatusType, default=PIRStatus.DRAFT, nullable=False, index=True)
    due_date = Column(DateTime(timezone=True))
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    customer = relationship("Company", foreign_keys=[customer_id])
    supplier = relationship("Company", foreign_keys=[supplier_company_id])
    product = relationship("Product")
    tags = relationship("Tag", secondary="pir_tags", lazy="selectin")
    responses = relationship("PIRResponse", back_populates="pir", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("customer_id <> supplier_company_id", name="ck_pir_distinct_parties"),
    )

    @property
    def product_name(self) -> str:
        if self.suggested_product_name:
            return self.suggested_product_name
        if self.product is not None:
            return self.product.name
        return "Unknown Product"


class PIRResponse(Base):
    """Supplier answer to one question of one PIR."""
    __tablename__ = "pir_responses"

    id = Column(Integer, primary_key=True, index=True)
    pir_id = Column(Integer, ForeignKey("pir_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
    answer = Column(JSON)
    status = Column(ResponseStatusType, default=ResponseStatus.DRAFT, nullable=False)
    submitted_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    pir = relationship("PIRRequest", back_populates="responses")
    question = relationship("Question")
    flags = relationship("ResponseFlag", back_populates="response", cascade="all, delete-orphan")
    comments = relationship(
        "ResponseComment", back_populates="response",
        cascade="all, delete-orphan", order_by="ResponseComment.id",
    )

    __table_args__ = (
        UniqueConstraint('pir_id', 'question_id', name='uq_response_pir_question'),
    )


class ResponseFlag(Base):
    """Customer request to revise an answer."""
    __tablename__ = "response_flags"

    id = Column(Integer, primary_key=True, index=True)
    response_id = Column(Integer, ForeignKey("pir_responses.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    status = Column(FlagStatusType, default=FlagStatus.OPEN, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    resolved_at = Column(DateTime(timezone=True))

    response = relationship("PIRResponse", back_populates="flags")


class ResponseComment(Base):
    """Append-only discussion thread entry on an answer."""
    __tablename__ = "response_comments"

    id = Column(Integer, primary_key=True, index=True)
    response_id = Column(Integer, ForeignKey("pir_responses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    author_name = Column(String(255))
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    response = relationship("PIRResponse", back_populates="comments")
