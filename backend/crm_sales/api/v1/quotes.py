"""
Quote API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import date

from crm_sales.core.database import get_db
from crm_sales.core.security import get_tenant_context
from crm_sales.core.tenancy import TenantContext
from crm_sales.schemas import (
    QuoteCreate, QuoteResponse, QuoteWithItems, QuoteRejectRequest, QuoteToInvoiceRequest,
    ItemsUpdate, OrderWithItems, InvoiceWithItems, DocumentChainResponse
)
from crm_sales.services.quote_service import QuoteService
from crm_sales.services.workflow_service import WorkflowService

router = APIRouter(prefix="/quotes", tags=["Quotes"])


@router.get("", response_model=List[QuoteResponse])
async def list_quotes(
    status: str = None,
    company_id: int = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """List quotes"""
    return QuoteService(db, tenant).list(status=status, company_id=company_id)


@router.post("", response_model=QuoteWithItems, status_code=201)
async def create_quote(
    quote_data: QuoteCreate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Create a new draft quote"""
    quote = QuoteService(db, tenant).create(quote_data)
    db.commit()
    return quote


@router.post("/expire-lapsed", response_model=List[QuoteResponse])
async def expire_lapsed_quotes(
    as_of: Optional[date] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Expire draft and sent quotes past their validity date"""
    quotes = QuoteService(db, tenant).expire_lapsed(as_of)
    db.commit()
    return quotes


@router.get("/{quote_id}", response_model=QuoteWithItems)
async def get_quote(
    quote_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Get quote by ID"""
    return QuoteService(db, tenant).get_by_id(quote_id)


@router.put("/{quote_id}/items", response_model=QuoteWithItems)
async def update_quote_items(
    quote_id: int,
    items_data: ItemsUpdate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Replace the line items of a draft quote"""
    quote = QuoteService(db, tenant).update_items(
        quote_id,
        [item.model_dump() for item in items_data.items],
        items_data.tax_rate,
        items_data.expected_version
    )
    db.commit()
    return quote


@router.post("/{quote_id}/send", response_model=QuoteResponse)
async def send_quote(
    quote_id: int,
    expected_version: Optional[int] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Send a draft quote to the customer"""
    quote = QuoteService(db, tenant).send(quote_id, expected_version)
    db.commit()
    return quote


@router.post("/{quote_id}/accept", response_model=QuoteResponse)
async def accept_quote(
    quote_id: int,
    expected_version: Optional[int] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Mark a sent quote as accepted"""
    quote = QuoteService(db, tenant).accept(quote_id, expected_version)
    db.commit()
    return quote


@router.post("/{quote_id}/reject", response_model=QuoteResponse)
async def reject_quote(
    quote_id: int,
    reject_data: QuoteRejectRequest,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Mark a sent quote as rejected"""
    quote = QuoteService(db, tenant).reject(quote_id, reject_data.reason, reject_data.expected_version)
    db.commit()
    return quote


@router.post("/{quote_id}/expire", response_model=QuoteResponse)
async def expire_quote(
    quote_id: int,
    expected_version: Optional[int] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Expire a draft or sent quote"""
    quote = QuoteService(db, tenant).expire(quote_id, expected_version)
    db.commit()
    return quote


@router.post("/{quote_id}/convert/order", response_model=OrderWithItems, status_code=201)
async def convert_quote_to_order(
    quote_id: int,
    expected_version: Optional[int] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Create an order from an accepted quote"""
    order = WorkflowService(db, tenant).convert_quote_to_order(quote_id, expected_version)
    db.commit()
    return order


@router.post("/{quote_id}/convert/invoice", response_model=InvoiceWithItems, status_code=201)
async def convert_quote_to_invoice(
    quote_id: int,
    convert_data: QuoteToInvoiceRequest = None,
    expected_version: Optional[int] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Create an invoice from an accepted quote"""
    terms = convert_data.payment_terms_days if convert_data else None
    invoice = WorkflowService(db, tenant).convert_quote_to_invoice(quote_id, terms, expected_version)
    db.commit()
    return invoice


@router.get("/{quote_id}/chain", response_model=DocumentChainResponse)
async def get_document_chain(
    quote_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """The quote with every order and invoice derived from it"""
    return WorkflowService(db, tenant).get_document_chain(quote_id)
