"""
Invoice API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from crm_sales.core.database import get_db
from crm_sales.core.security import get_tenant_context
from crm_sales.core.tenancy import TenantContext
from crm_sales.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceResponse, InvoiceWithItems, InvoiceStatusUpdate,
    InvoiceCancelRequest, ItemsUpdate, OverdueSweepRequest, DeliveryNoteUpdate, DeliveryNoteWithItems
)
from crm_sales.services.invoice_service import InvoiceService
from crm_sales.services.workflow_service import WorkflowService

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.get("", response_model=List[InvoiceResponse])
async def list_invoices(
    status: str = None,
    company_id: int = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """List invoices"""
    return InvoiceService(db, tenant).list(status=status, company_id=company_id)


@router.post("", response_model=InvoiceWithItems, status_code=201)
async def create_invoice(
    invoice_data: InvoiceCreate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Create a new draft invoice"""
    invoice = InvoiceService(db, tenant).create(invoice_data)
    db.commit()
    return invoice


@router.post("/mark-overdue", response_model=List[InvoiceResponse])
async def mark_overdue_invoices(
    sweep_data: OverdueSweepRequest = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Flag sent, unpaid invoices past their due date"""
    as_of = sweep_data.as_of if sweep_data else None
    invoices = InvoiceService(db, tenant).mark_overdue(as_of)
    db.commit()
    return invoices


@router.get("/{invoice_id}", response_model=InvoiceWithItems)
async def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Get invoice by ID"""
    return InvoiceService(db, tenant).get_by_id(invoice_id)


@router.put("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: int,
    invoice_data: InvoiceUpdate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Update due date or notes"""
    changes = invoice_data.model_dump(exclude_unset=True, exclude={"expected_version"})
    invoice = InvoiceService(db, tenant).update_details(invoice_id, invoice_data.expected_version, **changes)
    db.commit()
    return invoice


@router.put("/{invoice_id}/items", response_model=InvoiceWithItems)
async def update_invoice_items(
    invoice_id: int,
    items_data: ItemsUpdate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Replace the line items of a draft, unpaid invoice"""
    invoice = InvoiceService(db, tenant).update_items(
        invoice_id,
        [item.model_dump() for item in items_data.items],
        items_data.tax_rate,
        items_data.expected_version
    )
    db.commit()
    return invoice


@router.post("/{invoice_id}/send", response_model=InvoiceResponse)
async def send_invoice(
    invoice_id: int,
    expected_version: Optional[int] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Send a draft invoice"""
    invoice = InvoiceService(db, tenant).send(invoice_id, expected_version)
    db.commit()
    return invoice


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse)
async def cancel_invoice(
    invoice_id: int,
    cancel_data: InvoiceCancelRequest = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Cancel an unpaid invoice and release its order allocations"""
    cancel_data = cancel_data or InvoiceCancelRequest()
    invoice = InvoiceService(db, tenant).cancel(invoice_id, cancel_data.reason, cancel_data.expected_version)
    db.commit()
    return invoice


@router.post("/{invoice_id}/status", response_model=InvoiceResponse)
async def set_invoice_status(
    invoice_id: int,
    status_data: InvoiceStatusUpdate,
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Request a status; once paid, the payment ledger decides"""
    invoice = InvoiceService(db, tenant).set_status(
        invoice_id, status_data.status, status_data.expected_version, as_of
    )
    db.commit()
    return invoice


@router.post("/{invoice_id}/delivery-note", response_model=DeliveryNoteWithItems, status_code=201)
async def create_delivery_note_from_invoice(
    invoice_id: int,
    shipping_data: DeliveryNoteUpdate = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Create a delivery note carrying the invoice's line items"""
    shipping = shipping_data.model_dump(exclude_unset=True, exclude={"expected_version"}) if shipping_data else {}
    note = WorkflowService(db, tenant).convert_invoice_to_delivery_note(invoice_id, **shipping)
    db.commit()
    return note
