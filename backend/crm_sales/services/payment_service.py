"""
Payment Service - the payment ledger

Every balance change goes through the invoice aggregate while the invoice
row is locked, so two payments can never both validate against the same
stale ``paid_amount``.
"""
import logging
from collections import Counter
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from crm_sales.core.exceptions import BusinessRuleViolation, ValidationFailed
from crm_sales.core.money import ZERO, quantize, to_money
from crm_sales.core.tenancy import TenantContext, TenantScopedRepository
from crm_sales.domain import invoice as invoice_domain
from crm_sales.models import Payment, PaymentMethod, PaymentStatus
from crm_sales.services.invoice_service import InvoiceService
from crm_sales.services.notification_service import Notifier

logger = logging.getLogger(__name__)

PAYMENT_METHODS = {method.value for method in PaymentMethod}


class PaymentService:
    def __init__(self, db: Session, tenant: TenantContext, notifier: Notifier = None):
        self.db = db
        self.tenant = tenant
        self.repo = TenantScopedRepository(db, tenant, Payment, "Payment")
        self.invoices = InvoiceService(db, tenant, notifier)

    def get_by_id(self, payment_id: int) -> Payment:
        return self.repo.get(payment_id)

    def get_next_number(self) -> str:
        """Generate next payment number"""
        last_payment = self.repo.query().order_by(Payment.id.desc()).first()
        if last_payment:
            try:
                num = int(last_payment.payment_number.replace("PAY-", ""))
                return f"PAY-{num + 1:05d}"
            except ValueError:
                pass
        return f"PAY-{self.repo.query().count() + 1:05d}"

    def record_payment(self, invoice_id: int, amount, payment_method: str = PaymentMethod.BANK_TRANSFER.value,
                       payment_date: date = None, reference: str = None, transaction_id: str = None,
                       notes: str = None, expected_version: Optional[int] = None) -> Payment:
        """Record a completed payment against an invoice"""
        amount = to_money(amount, "amount")
        if amount <= 0:
            raise ValidationFailed("Payment amount must be greater than zero", field="amount")
        payment_method = getattr(payment_method, "value", payment_method)
        if payment_method not in PAYMENT_METHODS:
            raise ValidationFailed(f"Unknown payment method '{payment_method}'", field="payment_method")

        invoice, aggregate = self.invoices.load(invoice_id, expected_version)
        invoice_domain.ensure_payable(aggregate, amount)

        payment = Payment(
            payment_number=self.get_next_number(),
            payment_date=payment_date or date.today(),
            amount=amount,
            payment_method=payment_method,
            status=PaymentStatus.COMPLETED.value,
            reference=reference,
            transaction_id=transaction_id,
            notes=notes,
            recorded_by=self.tenant.user_id,
            invoice_id=invoice.id,
        )
        self.repo.add(payment)
        self.db.flush()

        invoice_domain.record_payment(aggregate, self.tenant, payment.id, amount)
        self.invoices.save(invoice, aggregate)
        logger.info(f"Payment {payment.payment_number} of {amount} recorded on {invoice.invoice_number}")
        return payment

    def _load_completed(self, payment_id: int):
        payment = self.repo.get(payment_id, for_update=True)
        if payment.status != PaymentStatus.COMPLETED.value:
            raise BusinessRuleViolation(
                f"Payment {payment.payment_number} is {payment.status}; only completed payments can be reversed",
                code="PAYMENT_NOT_COMPLETED",
                details={"status": payment.status},
            )
        return payment

    def refund(self, payment_id: int, expected_version: Optional[int] = None) -> Payment:
        """Reverse a completed payment; the invoice balance is restored"""
        payment = self._load_completed(payment_id)
        invoice, aggregate = self.invoices.load(payment.invoice_id, expected_version)
        invoice_domain.refund_payment(aggregate, self.tenant, payment.id)

        payment.status = PaymentStatus.REFUNDED.value
        payment.refunded_at = datetime.now(timezone.utc).replace(tzinfo=None)
        self.invoices.save(invoice, aggregate)
        logger.info(f"Payment {payment.payment_number} refunded on {invoice.invoice_number}")
        return payment

    def delete(self, payment_id: int, expected_version: Optional[int] = None) -> None:
        """
        Hard-delete a payment. A completed payment's amount leaves the
        invoice balance; other payments never counted towards it.
        """
        payment = self.repo.get(payment_id, for_update=True)
        if payment.status == PaymentStatus.COMPLETED.value:
            invoice, aggregate = self.invoices.load(payment.invoice_id, expected_version)
            invoice_domain.delete_payment(aggregate, self.tenant, payment.id)
            self.db.delete(payment)
            self.invoices.save(invoice, aggregate)
        else:
            self.db.delete(payment)
            self.db.flush()
        logger.info(f"Payment {payment.payment_number} ({payment.status}) deleted")

    def list_for_invoice(self, invoice_id: int) -> List[Payment]:
        self.invoices.get_by_id(invoice_id)
        return self.repo.query().filter(
            Payment.invoice_id == invoice_id
        ).order_by(Payment.payment_date.asc(), Payment.id.asc()).all()

    def summary(self, invoice_id: int) -> dict:
        invoice = self.invoices.get_by_id(invoice_id)
        payments = self.list_for_invoice(invoice_id)
        paid = quantize(sum(
            (Decimal(p.amount) for p in payments if p.status == PaymentStatus.COMPLETED.value), ZERO
        ))
        return {
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "status": invoice.status,
            "total": invoice.total,
            "paid_amount": paid,
            "remaining": quantize(invoice.total - paid),
            "payment_count": len(payments),
            "by_status": dict(Counter(p.status for p in payments)),
        }
