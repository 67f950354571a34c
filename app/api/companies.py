"""
Companies, supplier/customer relationships and products API routes.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import (
    AuditLog, Company, CompanyRelationship, CompanyType, Product, RelationshipStatus,
)
from app.core.rbac import CompanyContext, get_company_context, require_admin

router = APIRouter(prefix="/api/companies", tags=["Companies"])


# ============= SCHEMAS =============

class CompanyResponse(BaseModel):
    id: int
    name: str
    role: CompanyType
    contact_name: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None

    model_config = {"from_attributes": True}


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    role: Optional[CompanyType] = None
    contact_name: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class RelationshipResponse(BaseModel):
    id: int
    status: RelationshipStatus
    company: CompanyResponse


class SupplierCreate(BaseModel):
    """Link an existing supplier by id, or create a new supplier company."""
    supplier_id: Optional[int] = None
    name: Optional[str] = Field(None, max_length=255)
    contact_name: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None


class RelationshipStatusUpdate(BaseModel):
    status: RelationshipStatus


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class ProductResponse(BaseModel):
    id: int
    supplier_id: int
    name: str
    description: Optional[str]

    model_config = {"from_attributes": True}


# ============= HELPERS =============

def _audit(db: Session, request: Request, ctx: CompanyContext, action: str, entity_type: str,
           entity_id: Optional[int] = None, details: Optional[dict] = None):
    db.add(AuditLog(
        user_id=ctx.user_id,
        company_id=ctx.company_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        ip_address=request.client.host if request.client else None,
    ))


def _get_company(db: Session, company_id: int) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


# ============= COMPANY ROUTES =============

@router.get("/current", response_model=CompanyResponse)
async def get_current_company(
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Get the company selected in the current session."""
    return _get_company(db, ctx.company_id)


@router.put("/current", response_model=CompanyResponse)
async def update_current_company(
    request: Request,
    update_data: CompanyUpdate,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Update current company (admin only)."""
    company = _get_company(db, ctx.company_id)

    changes = update_data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(company, field, value)

    _audit(db, request, ctx, "update_company", "company", company.id,
           {k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()})
    db.commit()
    db.refresh(company)

    return company


# ============= RELATIONSHIP ROUTES =============

@router.get("/current/suppliers", response_model=List[RelationshipResponse])
async def list_suppliers(
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Suppliers linked to the current company."""
    rows = db.query(CompanyRelationship).filter(
        CompanyRelationship.customer_id == ctx.company_id
    ).order_by(CompanyRelationship.id).all()
    return [
        RelationshipResponse(id=r.id, status=r.status, company=CompanyResponse.model_validate(r.supplier))
        for r in rows
    ]


@router.get("/current/customers", response_model=List[RelationshipResponse])
async def list_customers(
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Customers linked to the current company."""
    rows = db.query(CompanyRelationship).filter(
        CompanyRelationship.supplier_id == ctx.company_id
    ).order_by(CompanyRelationship.id).all()
    return [
        RelationshipResponse(id=r.id, status=r.status, company=CompanyResponse.model_validate(r.customer))
        for r in rows
    ]


@router.post("/current/suppliers", response_model=RelationshipResponse, status_code=status.HTTP_201_CREATED)
async def add_supplier(
    request: Request,
    data: SupplierCreate,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Link a supplier to the current company, creating the supplier company if needed."""
    if data.supplier_id is not None:
        supplier = _get_company(db, data.supplier_id)
    elif data.name:
        supplier = Company(
            name=data.name,
            role=CompanyType.SUPPLIER,
            contact_name=data.contact_name,
            contact_email=data.contact_email,
            contact_phone=data.contact_phone,
        )
        db.add(supplier)
        db.flush()
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide supplier_id or a supplier name",
        )

    if supplier.id == ctx.company_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A company cannot be its own supplier",
        )

    existing = db.query(CompanyRelationship).filter(
        CompanyRelationship.customer_id == ctx.company_id,
        CompanyRelationship.supplier_id == supplier.id,
    ).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Supplier is already linked",
        )

    relationship = CompanyRelationship(
        customer_id=ctx.company_id,
        supplier_id=supplier.id,
        status=RelationshipStatus.ACTIVE,
    )
    db.add(relationship)
    db.flush()
    _audit(db, request, ctx, "add_supplier", "company_relationship", relationship.id,
           {"supplier_id": supplier.id, "supplier_name": supplier.name})
    db.commit()
    db.refresh(relationship)

    return RelationshipResponse(
        id=relationship.id,
        status=relationship.status,
        company=CompanyResponse.model_validate(supplier),
    )


@router.put("/relationships/{relationship_id}", response_model=RelationshipResponse)
async def update_relationship_status(
    relationship_id: int,
    request: Request,
    data: RelationshipStatusUpdate,
    ctx: CompanyContext = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Change the status of a relationship the current company is part of."""
    relationship = db.query(CompanyRelationship).filter(
        CompanyRelationship.id == relationship_id
    ).first()
    if not relationship or ctx.company_id not in (relationship.customer_id, relationship.supplier_id):
        raise HTTPException(status_code=404, detail="Relationship not found")

    previous = relationship.status
    relationship.status = data.status
    _audit(db, request, ctx, "update_relationship", "company_relationship", relationship.id,
           {"from": previous.value, "to": data.status.value})
    db.commit()
    db.refresh(relationship)

    other = relationship.supplier if relationship.customer_id == ctx.company_id else relationship.customer
    return RelationshipResponse(
        id=relationship.id,
        status=relationship.status,
        company=CompanyResponse.model_validate(other),
    )


# ============= PRODUCT ROUTES =============

@router.get("/{company_id}/products", response_model=List[ProductResponse])
async def list_products(
    company_id: int,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Products offered by a supplier company."""
    _get_company(db, company_id)
    return db.query(Product).filter(Product.supplier_id == company_id).order_by(Product.name).all()


@router.post("/current/products", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
async def create_product(
    request: Request,
    data: ProductCreate,
    ctx: CompanyContext = Depends(get_company_context),
    db: Session = Depends(get_db)
):
    """Add a product to the current (supplier) company's catalogue."""
    product = Product(supplier_id=ctx.company_id, name=data.name.strip(), description=data.description)
    db.add(product)
    db.flush()
    _audit(db, request, ctx, "create_product", "product", product.id, {"name": product.name})
    db.commit()
    db.refresh(product)
    return product
