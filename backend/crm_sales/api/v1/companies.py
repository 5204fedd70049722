"""
Company API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from crm_sales.core.database import get_db
from crm_sales.core.security import get_tenant_context
from crm_sales.core.tenancy import TenantContext
from crm_sales.schemas import CompanyCreate, CompanyUpdate, CompanyResponse, MessageResponse
from crm_sales.services.company_service import CompanyService

router = APIRouter(prefix="/companies", tags=["Companies"])


@router.get("", response_model=List[CompanyResponse])
async def list_companies(
    include_inactive: bool = False,
    source: str = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """List companies of the current tenant"""
    return CompanyService(db, tenant).get_all(include_inactive, source)


@router.post("", response_model=CompanyResponse, status_code=201)
async def create_company(
    company_data: CompanyCreate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Create a new company"""
    company = CompanyService(db, tenant).create(company_data)
    db.commit()
    return company


@router.get("/{company_id}", response_model=CompanyResponse)
async def get_company(
    company_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Get company by ID"""
    return CompanyService(db, tenant).get_by_id(company_id)


@router.put("/{company_id}", response_model=CompanyResponse)
async def update_company(
    company_id: int,
    company_data: CompanyUpdate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Update a company"""
    company = CompanyService(db, tenant).update(company_id, company_data)
    db.commit()
    return company


@router.delete("/{company_id}", response_model=MessageResponse)
async def delete_company(
    company_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Delete a company, or deactivate it if it has sales documents"""
    CompanyService(db, tenant).delete(company_id)
    db.commit()
    return {"message": "Company deleted successfully"}
