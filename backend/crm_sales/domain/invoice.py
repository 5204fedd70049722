"""
Invoice state machine and status derivation.

The invoice has a lifecycle (draft -> sent, draft | sent -> cancelled) that
commands move explicitly. The status callers see is derived from the
lifecycle and the payment ledger:

    cancelled                      -> cancelled
    total > 0 and paid >= total    -> paid
    paid > 0                       -> partial
    sent, unpaid, past due date    -> overdue
    otherwise                      -> the lifecycle value

Derivation reads "today" from the events themselves, so replaying the same
history always yields the same status.
"""
import logging
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from crm_sales.core.exceptions import BusinessRuleViolation, InvalidTransition, ValidationFailed
from crm_sales.core.money import ZERO, quantize, to_decimal
from crm_sales.core.tenancy import TenantContext
from crm_sales.domain.aggregate import Aggregate, ensure_transition
from crm_sales.domain.calculator import ItemInput, LineItem, calculate_totals, validate_items
from crm_sales.domain.events import DomainEvent, decode_date

logger = logging.getLogger(__name__)

AGGREGATE_TYPE = "Invoice"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


LIFECYCLE_TRANSITIONS = {
    InvoiceStatus.DRAFT.value: (InvoiceStatus.SENT.value, InvoiceStatus.CANCELLED.value),
    InvoiceStatus.SENT.value: (InvoiceStatus.CANCELLED.value,),
    InvoiceStatus.CANCELLED.value: (),
}


def derive_invoice_status(lifecycle: str, total: Decimal, paid_amount: Decimal,
                          due_date: Optional[date], today: Optional[date]) -> str:
    if lifecycle == InvoiceStatus.CANCELLED.value:
        return InvoiceStatus.CANCELLED.value
    if total > 0 and paid_amount >= total:
        return InvoiceStatus.PAID.value
    if paid_amount > 0:
        return InvoiceStatus.PARTIAL.value
    if (
        lifecycle == InvoiceStatus.SENT.value
        and total > 0
        and due_date is not None
        and today is not None
        and today > due_date
    ):
        return InvoiceStatus.OVERDUE.value
    return lifecycle


class InvoiceState(BaseModel):
    invoice_number: Optional[str] = None
    company_id: Optional[int] = None
    quote_id: Optional[int] = None
    lifecycle: str = InvoiceStatus.DRAFT.value
    status: str = InvoiceStatus.DRAFT.value
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    items: Tuple[LineItem, ...] = ()
    tax_rate: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    payments: Dict[int, Decimal] = {}
    notes: Optional[str] = None
    created_by: Optional[int] = None
    as_of: Optional[date] = None

    model_config = ConfigDict(frozen=True)

    @property
    def created(self) -> bool:
        return self.invoice_number is not None

    @property
    def paid_amount(self) -> Decimal:
        return quantize(sum(self.payments.values(), ZERO))

    @property
    def balance_due(self) -> Decimal:
        return quantize(self.total - self.paid_amount)

    def status_on(self, today: Optional[date]) -> str:
        return derive_invoice_status(self.lifecycle, self.total, self.paid_amount, self.due_date, today)


def _with_items(state: InvoiceState, items, tax_rate) -> InvoiceState:
    lines = validate_items(items)
    totals = calculate_totals(lines, tax_rate)
    return state.model_copy(update={
        "items": tuple(lines),
        "tax_rate": totals.tax_rate,
        "subtotal": totals.subtotal,
        "tax": totals.tax,
        "total": totals.total,
    })


def _apply(state: InvoiceState, event: DomainEvent) -> InvoiceState:
    data = event.data
    kind = event.event_type

    if kind == "InvoiceCreated":
        state = InvoiceState(
            invoice_number=data["invoice_number"],
            company_id=data["company_id"],
            quote_id=data.get("quote_id"),
            issue_date=decode_date(data["issue_date"]),
            due_date=decode_date(data.get("due_date")),
            notes=data.get("notes"),
            created_by=data.get("created_by"),
        )
        return _with_items(state, data["items"], data["tax_rate"])
    if kind == "InvoiceItemsUpdated":
        return _with_items(state, data["items"], data["tax_rate"])
    if kind == "InvoiceDetailsUpdated":
        update = {}
        if "due_date" in data:
            update["due_date"] = decode_date(data["due_date"])
        if "notes" in data:
            update["notes"] = data["notes"]
        return state.model_copy(update=update)
    if kind == "InvoiceSent":
        return state.model_copy(update={"lifecycle": InvoiceStatus.SENT.value})
    if kind == "InvoiceCancelled":
        return state.model_copy(update={"lifecycle": InvoiceStatus.CANCELLED.value})
    if kind == "PaymentRecorded":
        payments = dict(state.payments)
        payments[int(data["payment_id"])] = to_decimal(data["amount"])
        return state.model_copy(update={"payments": payments})
    if kind in ("PaymentRefunded", "PaymentDeleted"):
        payments = dict(state.payments)
        payments.pop(int(data["payment_id"]), None)
        return state.model_copy(update={"payments": payments})
    if kind == "InvoiceMarkedOverdue":
        return state
    raise ValueError(f"Unknown invoice event: {kind}")


def reduce_invoice(state: InvoiceState, event: DomainEvent) -> InvoiceState:
    state = _apply(state, event)
    as_of = event.occurred_on
    if event.data.get("as_of"):
        as_of = max(as_of, decode_date(event.data["as_of"]))
    if state.as_of is not None:
        as_of = max(as_of, state.as_of)
    return state.model_copy(update={"as_of": as_of, "status": state.status_on(as_of)})


def new_invoice(invoice_id: int) -> Aggregate[InvoiceState]:
    return Aggregate(AGGREGATE_TYPE, invoice_id, InvoiceState(), reduce_invoice)


# ==================== COMMANDS ====================

def _ensure_not_cancelled(state: InvoiceState):
    if state.lifecycle == InvoiceStatus.CANCELLED.value:
        raise BusinessRuleViolation(
            f"Invoice {state.invoice_number} is cancelled",
            code="INVOICE_CANCELLED",
        )


def create(invoice: Aggregate[InvoiceState], ctx: TenantContext, invoice_number: str, company_id: int,
           issue_date: date, due_date: Optional[date], items: Iterable[ItemInput], tax_rate: Decimal,
           quote_id: Optional[int] = None, notes: Optional[str] = None):
    if invoice.state.created:
        raise BusinessRuleViolation("Invoice already exists", code="ALREADY_EXISTS")
    if due_date is not None and due_date < issue_date:
        raise ValidationFailed("due_date cannot be before issue_date", field="due_date")
    lines = validate_items(items)
    totals = calculate_totals(lines, tax_rate)
    return invoice.record("InvoiceCreated", ctx, {
        "invoice_number": invoice_number,
        "company_id": company_id,
        "quote_id": quote_id,
        "issue_date": issue_date,
        "due_date": due_date,
        "items": lines,
        "tax_rate": totals.tax_rate,
        "notes": notes,
        "created_by": ctx.user_id,
    })


def update_items(invoice: Aggregate[InvoiceState], ctx: TenantContext, items: Iterable[ItemInput],
                 tax_rate=None, allocated: Decimal = ZERO):
    """Replace the line items of a draft invoice that has no payments"""
    state = invoice.state
    if state.lifecycle != InvoiceStatus.DRAFT.value or state.payments:
        raise BusinessRuleViolation(
            f"Invoice {state.invoice_number} can only be edited while in draft and unpaid",
            code="DOCUMENT_LOCKED",
            details={"status": state.status},
        )
    lines = validate_items(items)
    rate = state.tax_rate if tax_rate is None else tax_rate
    totals = calculate_totals(lines, rate)
    if totals.total < allocated:
        raise BusinessRuleViolation(
            f"Invoice total {totals.total} cannot drop below its order allocations {allocated}",
            code="ALLOCATION_EXCEEDS_INVOICE_TOTAL",
            details={"total": str(totals.total), "allocated": str(allocated)},
        )
    return invoice.record("InvoiceItemsUpdated", ctx, {"items": lines, "tax_rate": totals.tax_rate})


def update_details(invoice: Aggregate[InvoiceState], ctx: TenantContext, **changes):
    state = invoice.state
    _ensure_not_cancelled(state)
    data = {key: value for key, value in changes.items() if key in ("due_date", "notes")}
    due_date = data.get("due_date")
    if due_date is not None and state.issue_date is not None and due_date < state.issue_date:
        raise ValidationFailed("due_date cannot be before issue_date", field="due_date")
    if not data:
        return None
    return invoice.record("InvoiceDetailsUpdated", ctx, data)


def send(invoice: Aggregate[InvoiceState], ctx: TenantContext):
    state = invoice.state
    ensure_transition("invoice", LIFECYCLE_TRANSITIONS, state.lifecycle, InvoiceStatus.SENT.value)
    if not state.items:
        raise BusinessRuleViolation(
            f"Invoice {state.invoice_number} has no line items",
            code="INVOICE_HAS_NO_ITEMS",
        )
    return invoice.record("InvoiceSent", ctx)


def cancel(invoice: Aggregate[InvoiceState], ctx: TenantContext, reason: Optional[str] = None):
    state = invoice.state
    ensure_transition("invoice", LIFECYCLE_TRANSITIONS, state.lifecycle, InvoiceStatus.CANCELLED.value)
    if state.payments:
        raise BusinessRuleViolation(
            f"Invoice {state.invoice_number} has completed payments; refund them before cancelling",
            code="INVOICE_HAS_PAYMENTS",
            details={"paid_amount": str(state.paid_amount)},
        )
    return invoice.record("InvoiceCancelled", ctx, {"reason": reason})


def mark_overdue(invoice: Aggregate[InvoiceState], ctx: TenantContext, today: date):
    state = invoice.state
    if state.status_on(today) != InvoiceStatus.OVERDUE.value:
        raise BusinessRuleViolation(
            f"Invoice {state.invoice_number} is not overdue",
            code="INVOICE_NOT_OVERDUE",
            details={"status": state.status, "due_date": str(state.due_date), "as_of": str(today)},
        )
    return invoice.record("InvoiceMarkedOverdue", ctx, {"as_of": today})


def is_due_for_overdue(state: InvoiceState, today: date) -> bool:
    return state.status != InvoiceStatus.OVERDUE.value and state.status_on(today) == InvoiceStatus.OVERDUE.value


def requested_status_is_reconciled(invoice: Aggregate[InvoiceState], target: str) -> bool:
    """
    Once money has been received the ledger owns the status: a requested
    status is ignored in favour of the derived one.
    """
    state = invoice.state
    if state.paid_amount > 0:
        if target != state.status:
            logger.warning(
                f"Invoice {state.invoice_number}: requested status '{target}' ignored, "
                f"ledger derives '{state.status}'"
            )
        return True
    return False


def check_requested_status(invoice: Aggregate[InvoiceState], target: str):
    """Reject requests for statuses only the ledger can produce"""
    state = invoice.state
    if target not in {s.value for s in InvoiceStatus}:
        raise ValidationFailed(f"Unknown invoice status '{target}'", field="status")
    if target in (InvoiceStatus.PAID.value, InvoiceStatus.PARTIAL.value):
        raise InvalidTransition("invoice", state.status, target)


def ensure_payable(invoice: Aggregate[InvoiceState], amount: Decimal):
    state = invoice.state
    _ensure_not_cancelled(state)
    if amount <= 0:
        raise ValidationFailed("Payment amount must be greater than zero", field="amount")
    if state.total <= 0:
        raise BusinessRuleViolation(
            f"Invoice {state.invoice_number} has nothing to pay",
            code="INVOICE_HAS_NO_BALANCE",
        )
    if amount > state.balance_due:
        raise BusinessRuleViolation(
            f"Payment of {amount} exceeds the balance due of {state.balance_due}",
            code="OVERPAYMENT",
            details={
                "amount": str(amount),
                "total": str(state.total),
                "paid_amount": str(state.paid_amount),
                "balance_due": str(state.balance_due),
            },
        )


def record_payment(invoice: Aggregate[InvoiceState], ctx: TenantContext, payment_id: int, amount: Decimal):
    amount = quantize(amount)
    ensure_payable(invoice, amount)
    return invoice.record("PaymentRecorded", ctx, {"payment_id": payment_id, "amount": amount})


def _ensure_completed_payment(invoice: Aggregate[InvoiceState], payment_id: int) -> Decimal:
    amount = invoice.state.payments.get(payment_id)
    if amount is None:
        raise BusinessRuleViolation(
            f"Payment {payment_id} is not a completed payment of invoice {invoice.state.invoice_number}",
            code="PAYMENT_NOT_COMPLETED",
            details={"payment_id": payment_id},
        )
    return amount


def refund_payment(invoice: Aggregate[InvoiceState], ctx: TenantContext, payment_id: int):
    amount = _ensure_completed_payment(invoice, payment_id)
    return invoice.record("PaymentRefunded", ctx, {"payment_id": payment_id, "amount": amount})


def delete_payment(invoice: Aggregate[InvoiceState], ctx: TenantContext, payment_id: int):
    amount = _ensure_completed_payment(invoice, payment_id)
    return invoice.record("PaymentDeleted", ctx, {"payment_id": payment_id, "amount": amount})
