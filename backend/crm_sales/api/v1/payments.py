"""
Payment API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from crm_sales.core.database import get_db
from crm_sales.core.security import get_tenant_context
from crm_sales.core.tenancy import TenantContext
from crm_sales.schemas import PaymentCreate, PaymentResponse, PaymentSummary, MessageResponse
from crm_sales.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("", response_model=PaymentResponse, status_code=201)
async def record_payment(
    payment_data: PaymentCreate,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Record a completed payment against an invoice"""
    payment = PaymentService(db, tenant).record_payment(
        payment_data.invoice_id,
        payment_data.amount,
        payment_method=payment_data.payment_method.value,
        payment_date=payment_data.payment_date,
        reference=payment_data.reference,
        transaction_id=payment_data.transaction_id,
        notes=payment_data.notes,
        expected_version=payment_data.expected_version
    )
    db.commit()
    return payment


@router.get("/invoice/{invoice_id}", response_model=List[PaymentResponse])
async def list_invoice_payments(
    invoice_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """List payments of an invoice"""
    return PaymentService(db, tenant).list_for_invoice(invoice_id)


@router.get("/invoice/{invoice_id}/summary", response_model=PaymentSummary)
async def get_payment_summary(
    invoice_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Totals and payment counts of an invoice"""
    return PaymentService(db, tenant).summary(invoice_id)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Get payment by ID"""
    return PaymentService(db, tenant).get_by_id(payment_id)


@router.post("/{payment_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    payment_id: int,
    expected_version: Optional[int] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Refund a completed payment"""
    payment = PaymentService(db, tenant).refund(payment_id, expected_version)
    db.commit()
    return payment


@router.delete("/{payment_id}", response_model=MessageResponse)
async def delete_payment(
    payment_id: int,
    expected_version: Optional[int] = None,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant_context)
):
    """Delete a payment, reversing its effect on the invoice balance"""
    PaymentService(db, tenant).delete(payment_id, expected_version)
    db.commit()
    return {"message": "Payment deleted successfully"}
