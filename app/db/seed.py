"""
Demo data for local development (ENABLE_MOCK_DATA=true).
Run: python -m app.db.seed
"""
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db.session import get_db_context, init_db
from app.db.models import (
    Company, CompanyRelationship, CompanyType, CompanyUser, Product, Profile,
    QuestionType, RelationshipStatus, User, UserRole,
)
from app.core.security import get_password_hash
from app.services.question_bank import (
    create_question_with_tags, create_section, create_subsection, get_or_create_tag,
)

logger = get_logger(__name__)

DEMO_PASSWORD = "password123"

COMPANIES = [
    ("Customer Company", CompanyType.CUSTOMER, "customer@example.com"),
    ("Supplier Company", CompanyType.SUPPLIER, "supplier@example.com"),
]

USERS = [
    ("customer@example.com", "Customer", "Admin", 0),
    ("supplier@example.com", "Supplier", "Admin", 1),
]

QUESTIONS = [
    ("General", "Regulatory", "Does the product comply with REACH?", QuestionType.BOOLEAN, True, None),
    ("General", "Regulatory", "List any SVHC substances above 0.1% w/w", QuestionType.TEXT, False, None),
    ("General", "Composition", "Country of origin", QuestionType.SINGLE_CHOICE, True,
     ["United States", "Germany", "China", "Other"]),
    ("Food Safety", "Certification", "Which certifications does the site hold?", QuestionType.MULTIPLE_CHOICE, True,
     ["ISO 22000", "FSSC 22000", "BRCGS", "SQF"]),
    ("Food Safety", "Certification", "Upload the current certificate", QuestionType.FILE, False, None),
]


def seed_demo_data(db: Session):
    """Create two demo companies with an admin each, a question bank and a product."""
    if db.query(Company).first():
        logger.info("Database already seeded. Skipping...")
        return

    companies = []
    for name, role, email in COMPANIES:
        company = Company(name=name, role=role, contact_name=f"{name} Contact", contact_email=email)
        db.add(company)
        companies.append(company)
    db.flush()

    for email, first, last, company_index in USERS:
        user = User(
            email=email,
            hashed_password=get_password_hash(DEMO_PASSWORD),
            user_metadata={"first_name": first, "last_name": last},
        )
        db.add(user)
        db.flush()
        db.add(Profile(id=user.id, email=email, first_name=first, last_name=last))
        db.add(CompanyUser(company_id=companies[company_index].id, user_id=user.id, role=UserRole.OWNER))

    customer, supplier = companies
    db.add(CompanyRelationship(customer_id=customer.id, supplier_id=supplier.id,
                               status=RelationshipStatus.ACTIVE))
    db.add(Product(supplier_id=supplier.id, name="Widget", description="Demo product"))

    compliance = get_or_create_tag(db, "Compliance", "Regulatory compliance questions")
    food_safety = get_or_create_tag(db, "Food Safety")
    sections = {}
    subsections = {}
    for section_name, subsection_name, text, qtype, required, options in QUESTIONS:
        if section_name not in sections:
            sections[section_name] = create_section(db, section_name)
        key = (section_name, subsection_name)
        if key not in subsections:
            subsections[key] = create_subsection(db, sections[section_name].id, subsection_name)
        tag = food_safety if section_name == "Food Safety" else compliance
        create_question_with_tags(
            db,
            subsection_id=subsections[key].id,
            text=text,
            description=None,
            type=qtype,
            required=required,
            options=options,
            tag_ids=[tag.id],
        )

    db.commit()
    logger.info(f"Seeded demo data: {len(COMPANIES)} companies, {len(QUESTIONS)} questions "
                f"(login with any demo email / {DEMO_PASSWORD})")


if __name__ == "__main__":
    init_db()
    with get_db_context() as session:
        seed_demo_data(session)
