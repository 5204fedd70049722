"""
Company Service - billed parties
"""
from typing import List

from sqlalchemy.orm import Session

from crm_sales.core.tenancy import TenantContext, TenantScopedRepository
from crm_sales.models import Company, DeliveryNote, Invoice, Order, Quote
from crm_sales.schemas import CompanyCreate, CompanyUpdate


class CompanyService:
    def __init__(self, db: Session, tenant: TenantContext):
        self.db = db
        self.tenant = tenant
        self.repo = TenantScopedRepository(db, tenant, Company, "Company")

    def get_by_id(self, company_id: int) -> Company:
        return self.repo.get(company_id)

    def get_all(self, include_inactive: bool = False, source: str = None) -> List[Company]:
        query = self.repo.query()
        if not include_inactive:
            query = query.filter(Company.is_active == True)
        if source:
            query = query.filter(Company.source == source)
        return query.order_by(Company.name.asc()).all()

    def create(self, company_data: CompanyCreate) -> Company:
        company = Company(
            name=company_data.name,
            email=company_data.email,
            phone=company_data.phone,
            address=company_data.address,
            tax_id=company_data.tax_id,
            source=company_data.source.value,
        )
        self.repo.add(company)
        self.db.flush()
        return company

    def update(self, company_id: int, company_data: CompanyUpdate) -> Company:
        company = self.get_by_id(company_id)

        update_data = company_data.model_dump(exclude_unset=True)
        for key, value in update_data.items():
            setattr(company, key, value)

        self.db.flush()
        return company

    def delete(self, company_id: int) -> bool:
        company = self.get_by_id(company_id)

        # Companies with sales documents are only deactivated
        has_documents = any(
            self.db.query(model.id).filter(model.company_id == company_id).first()
            for model in (Quote, Order, Invoice, DeliveryNote)
        )

        if has_documents:
            company.is_active = False
        else:
            self.db.delete(company)

        return True
