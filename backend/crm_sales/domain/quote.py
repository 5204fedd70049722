"""
Quote state machine.

    draft -> sent -> accepted | rejected | expired
    draft -> expired

Only an accepted quote converts into an order or an invoice, and each
conversion kind happens at most once.
"""
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from crm_sales.core.exceptions import BusinessRuleViolation, ValidationFailed
from crm_sales.core.money import ZERO
from crm_sales.core.tenancy import TenantContext
from crm_sales.domain.aggregate import Aggregate, ensure_transition
from crm_sales.domain.calculator import ItemInput, LineItem, calculate_totals, validate_items
from crm_sales.domain.events import DomainEvent, decode_date

AGGREGATE_TYPE = "Quote"


class QuoteStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


TRANSITIONS = {
    QuoteStatus.DRAFT.value: (QuoteStatus.SENT.value, QuoteStatus.EXPIRED.value),
    QuoteStatus.SENT.value: (QuoteStatus.ACCEPTED.value, QuoteStatus.REJECTED.value, QuoteStatus.EXPIRED.value),
    QuoteStatus.ACCEPTED.value: (),
    QuoteStatus.REJECTED.value: (),
    QuoteStatus.EXPIRED.value: (),
}


class QuoteState(BaseModel):
    quote_number: Optional[str] = None
    company_id: Optional[int] = None
    status: str = QuoteStatus.DRAFT.value
    issue_date: Optional[date] = None
    valid_until: Optional[date] = None
    items: Tuple[LineItem, ...] = ()
    tax_rate: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    notes: Optional[str] = None
    created_by: Optional[int] = None
    rejection_reason: Optional[str] = None
    converted_order_id: Optional[int] = None
    converted_invoice_id: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    @property
    def created(self) -> bool:
        return self.quote_number is not None


def _with_items(state: QuoteState, items, tax_rate) -> QuoteState:
    lines = validate_items(items)
    totals = calculate_totals(lines, tax_rate)
    return state.model_copy(update={
        "items": tuple(lines),
        "tax_rate": totals.tax_rate,
        "subtotal": totals.subtotal,
        "tax": totals.tax,
        "total": totals.total,
    })


def reduce_quote(state: QuoteState, event: DomainEvent) -> QuoteState:
    data = event.data
    kind = event.event_type

    if kind == "QuoteCreated":
        state = QuoteState(
            quote_number=data["quote_number"],
            company_id=data["company_id"],
            issue_date=decode_date(data["issue_date"]),
            valid_until=decode_date(data.get("valid_until")),
            notes=data.get("notes"),
            created_by=data.get("created_by"),
        )
        return _with_items(state, data["items"], data["tax_rate"])
    if kind == "QuoteItemsUpdated":
        return _with_items(state, data["items"], data["tax_rate"])
    if kind == "QuoteSent":
        return state.model_copy(update={"status": QuoteStatus.SENT.value})
    if kind == "QuoteAccepted":
        return state.model_copy(update={"status": QuoteStatus.ACCEPTED.value})
    if kind == "QuoteRejected":
        return state.model_copy(update={"status": QuoteStatus.REJECTED.value,
                                        "rejection_reason": data.get("reason")})
    if kind == "QuoteExpired":
        return state.model_copy(update={"status": QuoteStatus.EXPIRED.value})
    if kind == "QuoteConvertedToOrder":
        return state.model_copy(update={"converted_order_id": data["order_id"]})
    if kind == "QuoteConvertedToInvoice":
        return state.model_copy(update={"converted_invoice_id": data["invoice_id"]})
    raise ValueError(f"Unknown quote event: {kind}")


def new_quote(quote_id: int) -> Aggregate[QuoteState]:
    return Aggregate(AGGREGATE_TYPE, quote_id, QuoteState(), reduce_quote)


# ==================== COMMANDS ====================

def create(quote: Aggregate[QuoteState], ctx: TenantContext, quote_number: str, company_id: int,
           issue_date: date, valid_until: Optional[date], items: Iterable[ItemInput],
           tax_rate: Decimal, notes: Optional[str] = None):
    if quote.state.created:
        raise BusinessRuleViolation("Quote already exists", code="ALREADY_EXISTS")
    lines = validate_items(items)
    totals = calculate_totals(lines, tax_rate)
    if valid_until is not None and valid_until < issue_date:
        raise ValidationFailed("valid_until cannot be before issue_date", field="valid_until")
    return quote.record("QuoteCreated", ctx, {
        "quote_number": quote_number,
        "company_id": company_id,
        "issue_date": issue_date,
        "valid_until": valid_until,
        "items": lines,
        "tax_rate": totals.tax_rate,
        "notes": notes,
        "created_by": ctx.user_id,
    })


def update_items(quote: Aggregate[QuoteState], ctx: TenantContext, items: Iterable[ItemInput], tax_rate=None):
    if quote.state.status != QuoteStatus.DRAFT.value:
        raise BusinessRuleViolation(
            f"Quote {quote.state.quote_number} can only be edited while in draft",
            code="DOCUMENT_LOCKED",
            details={"status": quote.state.status},
        )
    lines = validate_items(items)
    rate = quote.state.tax_rate if tax_rate is None else tax_rate
    totals = calculate_totals(lines, rate)
    return quote.record("QuoteItemsUpdated", ctx, {"items": lines, "tax_rate": totals.tax_rate})


def send(quote: Aggregate[QuoteState], ctx: TenantContext):
    ensure_transition("quote", TRANSITIONS, quote.state.status, QuoteStatus.SENT.value)
    if not quote.state.items:
        raise BusinessRuleViolation("Cannot send a quote without line items", code="DOCUMENT_HAS_NO_ITEMS")
    return quote.record("QuoteSent", ctx)


def accept(quote: Aggregate[QuoteState], ctx: TenantContext):
    ensure_transition("quote", TRANSITIONS, quote.state.status, QuoteStatus.ACCEPTED.value)
    return quote.record("QuoteAccepted", ctx)


def reject(quote: Aggregate[QuoteState], ctx: TenantContext, reason: Optional[str] = None):
    ensure_transition("quote", TRANSITIONS, quote.state.status, QuoteStatus.REJECTED.value)
    return quote.record("QuoteRejected", ctx, {"reason": reason})


def expire(quote: Aggregate[QuoteState], ctx: TenantContext):
    ensure_transition("quote", TRANSITIONS, quote.state.status, QuoteStatus.EXPIRED.value)
    return quote.record("QuoteExpired", ctx)


def is_lapsed(state: QuoteState, today: date) -> bool:
    return (
        state.status in (QuoteStatus.DRAFT.value, QuoteStatus.SENT.value)
        and state.valid_until is not None
        and today > state.valid_until
    )


def ensure_convertible(quote: Aggregate[QuoteState], target: str):
    """Conversion is allowed from ``accepted`` only, once per target kind"""
    state = quote.state
    if state.status != QuoteStatus.ACCEPTED.value:
        raise BusinessRuleViolation(
            f"Quote {state.quote_number} must be accepted before it can be converted "
            f"(current status: {state.status})",
            details={"status": state.status, "target": target},
        )
    already = state.converted_order_id if target == "order" else state.converted_invoice_id
    if already is not None:
        raise BusinessRuleViolation(
            f"Quote {state.quote_number} has already been converted to {target} {already}",
            code="QUOTE_ALREADY_CONVERTED",
            details={"target": target, "target_id": already},
        )


def mark_converted_to_order(quote: Aggregate[QuoteState], ctx: TenantContext, order_id: int):
    ensure_convertible(quote, "order")
    return quote.record("QuoteConvertedToOrder", ctx, {"order_id": order_id})


def mark_converted_to_invoice(quote: Aggregate[QuoteState], ctx: TenantContext, invoice_id: int):
    ensure_convertible(quote, "invoice")
    return quote.record("QuoteConvertedToInvoice", ctx, {"invoice_id": invoice_id})
