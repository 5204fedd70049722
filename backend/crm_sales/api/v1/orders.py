"""
Order API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from crm_sales.core.database import get_db
from crm_sales.core.security import get_tenant_context
from crm_sales.core.tenancy import TenantContext
from crm_sales.schemas import (
    OrderCreate, OrderResponse, OrderWithItems, OrderStatusUpdate, ItemsUpdate,
    OrderInvoiceRequest, ConsolidatedInvoiceRequest, InvoiceWithItems
)
from crm_sales.services.order_service import OrderService
from crm_sales.services.workflow_service import WorkflowService

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.get("", response_model=List[OrderResponse])
async def list_orders(
    status: str = None,
    company_id: int = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """List orders"""
    return OrderService(db, tenant).list(status=status, company_id=company_id)


@router.post("", response_model=OrderWithItems, status_code=201)
async def create_order(
    order_data: OrderCreate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Create a new pending order"""
    order = OrderService(db, tenant).create(order_data)
    db.commit()
    return order


@router.post("/consolidated-invoice", response_model=InvoiceWithItems, status_code=201)
async def create_consolidated_invoice(
    invoice_data: ConsolidatedInvoiceRequest,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Bill several orders of one company on a single invoice"""
    invoice = WorkflowService(db, tenant).create_consolidated_invoice(
        [(line.order_id, line.amount) for line in invoice_data.orders],
        invoice_data.due_date,
        invoice_data.notes
    )
    db.commit()
    return invoice


@router.get("/{order_id}", response_model=OrderWithItems)
async def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Get order by ID"""
    return OrderService(db, tenant).get_by_id(order_id)


@router.put("/{order_id}/items", response_model=OrderWithItems)
async def update_order_items(
    order_id: int,
    items_data: ItemsUpdate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Replace the line items of a pending order"""
    order = OrderService(db, tenant).update_items(
        order_id,
        [item.model_dump() for item in items_data.items],
        items_data.tax_rate,
        items_data.expected_version
    )
    db.commit()
    return order


@router.post("/{order_id}/status", response_model=OrderResponse)
async def change_order_status(
    order_id: int,
    status_data: OrderStatusUpdate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Move an order through its lifecycle"""
    order = OrderService(db, tenant).change_status(order_id, status_data.status, status_data.expected_version)
    db.commit()
    return order


@router.post("/{order_id}/invoice", response_model=InvoiceWithItems, status_code=201)
async def invoice_order(
    order_id: int,
    invoice_data: OrderInvoiceRequest = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Invoice the rest of an order, or part of it"""
    invoice_data = invoice_data or OrderInvoiceRequest()
    invoice = WorkflowService(db, tenant).convert_order_to_invoice(
        order_id,
        amount=invoice_data.amount,
        percentage=invoice_data.percentage,
        due_date=invoice_data.due_date
    )
    db.commit()
    return invoice
