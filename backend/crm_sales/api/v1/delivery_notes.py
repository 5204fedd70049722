"""
Delivery Note API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from crm_sales.core.database import get_db
from crm_sales.core.security import get_tenant_context
from crm_sales.core.tenancy import TenantContext
from crm_sales.schemas import (
    DeliveryNoteCreate, DeliveryNoteUpdate, DeliveryNoteResponse, DeliveryNoteWithItems, DeliveryNoteTransition
)
from crm_sales.services.delivery_note_service import DeliveryNoteService

router = APIRouter(prefix="/delivery-notes", tags=["Delivery Notes"])


@router.get("", response_model=List[DeliveryNoteResponse])
async def list_delivery_notes(
    status: str = None,
    invoice_id: int = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """List delivery notes"""
    return DeliveryNoteService(db, tenant).list(status=status, invoice_id=invoice_id)


@router.post("", response_model=DeliveryNoteWithItems, status_code=201)
async def create_delivery_note(
    note_data: DeliveryNoteCreate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Create a pending delivery note"""
    note = DeliveryNoteService(db, tenant).create(note_data)
    db.commit()
    return note


@router.get("/{note_id}", response_model=DeliveryNoteWithItems)
async def get_delivery_note(
    note_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Get delivery note by ID"""
    return DeliveryNoteService(db, tenant).get_by_id(note_id)


@router.put("/{note_id}", response_model=DeliveryNoteResponse)
async def update_delivery_note(
    note_id: int,
    note_data: DeliveryNoteUpdate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Update shipping details"""
    changes = note_data.model_dump(exclude_unset=True, exclude={"expected_version"})
    note = DeliveryNoteService(db, tenant).update_details(note_id, note_data.expected_version, **changes)
    db.commit()
    return note


@router.post("/{note_id}/status", response_model=DeliveryNoteResponse)
async def transition_delivery_note(
    note_id: int,
    transition_data: DeliveryNoteTransition,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Ship, deliver or return a delivery note"""
    note = DeliveryNoteService(db, tenant).transition(
        note_id,
        transition_data.status,
        effective_date=transition_data.effective_date,
        carrier=transition_data.carrier,
        tracking_number=transition_data.tracking_number,
        reason=transition_data.reason,
        expected_version=transition_data.expected_version
    )
    db.commit()
    return note
