"""
Event API Routes - document timelines and the tenant event stream
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from crm_sales.core.database import get_db
from crm_sales.core.exceptions import NotFound
from crm_sales.core.security import get_tenant_context
from crm_sales.core.tenancy import TenantContext
from crm_sales.schemas import StoredEventResponse, EventStreamResponse
from crm_sales.services.delivery_note_service import DeliveryNoteService
from crm_sales.services.event_store import EventStore
from crm_sales.services.invoice_service import InvoiceService
from crm_sales.services.order_service import OrderService
from crm_sales.services.quote_service import QuoteService

router = APIRouter(prefix="/events", tags=["Events"])

DOCUMENT_SERVICES = {
    "Quote": QuoteService,
    "Order": OrderService,
    "Invoice": InvoiceService,
    "DeliveryNote": DeliveryNoteService,
}


@router.get("", response_model=EventStreamResponse)
async def get_event_stream(
    aggregate_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Newest-first page of the tenant's events"""
    total, events = EventStore(db, tenant).stream(aggregate_type, limit, offset)
    return {"total": total, "limit": limit, "offset": offset, "events": events}


@router.get("/type/{event_type}", response_model=List[StoredEventResponse])
async def get_events_by_type(
    event_type: str,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Latest events of one type"""
    return EventStore(db, tenant).events_by_type(event_type, limit)


@router.get("/{aggregate_type}/{aggregate_id}", response_model=List[StoredEventResponse])
async def get_document_timeline(
    aggregate_type: str,
    aggregate_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Every event of one document, oldest first"""
    service_class = DOCUMENT_SERVICES.get(aggregate_type)
    if service_class is None:
        raise NotFound("Aggregate type", aggregate_type)
    return service_class(db, tenant).history(aggregate_id)
