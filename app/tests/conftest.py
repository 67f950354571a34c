"""
Shared fixtures: an in-memory SQLite database, a recording notifier and the
customer/supplier scenario most tests start from.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-validation")
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.session import Base, get_db
from app.db.models import CompanyRelationship, Product, QuestionType, RelationshipStatus
from app.services.notifications import get_notifier
from app.services.question_bank import (
    create_question_with_tags, create_section, create_subsection, get_or_create_tag,
)
from app.tests.factories import RecordingNotifier, context_for, make_company, make_user


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db, notifier):
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    # Not used as a context manager: the lifespan would run init_db against
    # the application engine.
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def parties(db):
    """
    A customer and a supplier company, one owner each, linked by an active
    relationship. The supplier offers the product "Widget".
    """
    customer = make_company(db, "Customer Company", contact_email="customer@example.com")
    supplier = make_company(db, "Supplier Company", contact_email="supplier@example.com")
    customer_user = make_user(db, "buyer@customer.example.com", customer, first_name="Cara")
    supplier_user = make_user(db, "seller@supplier.example.com", supplier, first_name="Sam")

    db.add(CompanyRelationship(customer_id=customer.id, supplier_id=supplier.id,
                               status=RelationshipStatus.ACTIVE))
    product = Product(supplier_id=supplier.id, name="Widget")
    db.add(product)
    db.commit()
    db.refresh(product)

    return {
        "customer": customer,
        "supplier": supplier,
        "customer_user": customer_user,
        "supplier_user": supplier_user,
        "customer_ctx": context_for(customer_user, customer),
        "supplier_ctx": context_for(supplier_user, supplier),
        "product": product,
    }


@pytest.fixture
def question_bank(db):
    """
    Tag "Compliance" with one required text question and one optional
    boolean question; tag "Food Safety" with one required question of its own.
    """
    compliance = get_or_create_tag(db, "Compliance")
    food_safety = get_or_create_tag(db, "Food Safety")
    section = create_section(db, "General")
    subsection = create_subsection(db, section.id, "Company Details")

    certificate = create_question_with_tags(
        db, subsection.id, "Which certifications does the product hold?", None,
        QuestionType.TEXT, True, None, [compliance.id],
    )
    recalls = create_question_with_tags(
        db, subsection.id, "Has the product been recalled?", None,
        QuestionType.BOOLEAN, False, None, [compliance.id],
    )
    haccp = create_question_with_tags(
        db, subsection.id, "Describe your HACCP plan", None,
        QuestionType.TEXT, True, None, [food_safety.id],
    )
    db.commit()

    return {
        "compliance": compliance,
        "food_safety": food_safety,
        "section": section,
        "subsection": subsection,
        "certificate": certificate,
        "recalls": recalls,
        "haccp": haccp,
    }
