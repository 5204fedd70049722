"""
Allocation API Routes - invoice/order bridge
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from crm_sales.core.database import get_db
from crm_sales.core.security import get_tenant_context
from crm_sales.core.tenancy import TenantContext
from crm_sales.schemas import AllocationCreate, AllocationResponse, MessageResponse
from crm_sales.services.allocation_service import AllocationService

router = APIRouter(prefix="/allocations", tags=["Allocations"])


@router.post("", response_model=AllocationResponse)
async def allocate(
    allocation_data: AllocationCreate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Set how much of an order an invoice bills"""
    allocation = AllocationService(db, tenant).allocate(
        allocation_data.invoice_id,
        allocation_data.order_id,
        allocation_data.amount,
        allocation_data.expected_version
    )
    db.commit()
    return allocation


@router.delete("/{invoice_id}/{order_id}", response_model=MessageResponse)
async def deallocate(
    invoice_id: int,
    order_id: int,
    expected_version: Optional[int] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Remove an invoice/order allocation"""
    AllocationService(db, tenant).deallocate(invoice_id, order_id, expected_version)
    db.commit()
    return {"message": "Allocation removed"}


@router.get("/invoice/{invoice_id}", response_model=List[AllocationResponse])
async def list_invoice_allocations(
    invoice_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Orders billed by an invoice"""
    return AllocationService(db, tenant).list_for_invoice(invoice_id)


@router.get("/order/{order_id}", response_model=List[AllocationResponse])
async def list_order_allocations(
    order_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Invoices billing an order"""
    return AllocationService(db, tenant).list_for_order(order_id)
