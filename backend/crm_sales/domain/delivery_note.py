"""
Delivery note state machine.

    pending -> in_transit -> delivered
    pending | in_transit -> returned
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

AGGREGATE_TYPE = "DeliveryNote"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    RETURNED = "returned"


TRANSITIONS = {
    DeliveryStatus.PENDING.value: (DeliveryStatus.IN_TRANSIT.value, DeliveryStatus.RETURNED.value),
    DeliveryStatus.IN_TRANSIT.value: (DeliveryStatus.DELIVERED.value, DeliveryStatus.RETURNED.value),
    DeliveryStatus.DELIVERED.value: (),
    DeliveryStatus.RETURNED.value: (),
}

SHIPPING_FIELDS = ("shipping_address", "carrier", "tracking_number", "notes")


class DeliveryNoteState(BaseModel):
    delivery_number: Optional[str] = None
    company_id: Optional[int] = None
    invoice_id: Optional[int] = None
    status: str = DeliveryStatus.PENDING.value
    items: Tuple[LineItem, ...] = ()
    tax_rate: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    shipping_address: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    ship_date: Optional[date] = None
    delivery_date: Optional[date] = None
    return_reason: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    @property
    def created(self) -> bool:
        return self.delivery_number is not None


def reduce_delivery_note(state: DeliveryNoteState, event: DomainEvent) -> DeliveryNoteState:
    data = event.data
    kind = event.event_type

    if kind == "DeliveryNoteCreated":
        lines = validate_items(data["items"])
        totals = calculate_totals(lines, data["tax_rate"])
        return DeliveryNoteState(
            delivery_number=data["delivery_number"],
            company_id=data["company_id"],
            invoice_id=data.get("invoice_id"),
            items=tuple(lines),
            tax_rate=totals.tax_rate,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            shipping_address=data.get("shipping_address"),
            carrier=data.get("carrier"),
            tracking_number=data.get("tracking_number"),
            notes=data.get("notes"),
            created_by=data.get("created_by"),
        )
    if kind == "DeliveryNoteDetailsUpdated":
        return state.model_copy(update={key: data[key] for key in SHIPPING_FIELDS if key in data})
    if kind == "DeliveryNoteShipped":
        update = {"status": DeliveryStatus.IN_TRANSIT.value, "ship_date": decode_date(data["ship_date"])}
        for key in ("carrier", "tracking_number"):
            if data.get(key):
                update[key] = data[key]
        return state.model_copy(update=update)
    if kind == "DeliveryNoteDelivered":
        return state.model_copy(update={
            "status": DeliveryStatus.DELIVERED.value,
            "delivery_date": decode_date(data["delivery_date"]),
        })
    if kind == "DeliveryNoteReturned":
        return state.model_copy(update={
            "status": DeliveryStatus.RETURNED.value,
            "return_reason": data.get("reason"),
        })
    raise ValueError(f"Unknown delivery note event: {kind}")


def new_delivery_note(note_id: int) -> Aggregate[DeliveryNoteState]:
    return Aggregate(AGGREGATE_TYPE, note_id, DeliveryNoteState(), reduce_delivery_note)


# ==================== COMMANDS ====================

def create(note: Aggregate[DeliveryNoteState], ctx: TenantContext, delivery_number: str, company_id: int,
           items: Iterable[ItemInput], tax_rate: Decimal = ZERO, invoice_id: Optional[int] = None, **shipping):
    if note.state.created:
        raise BusinessRuleViolation("Delivery note already exists", code="ALREADY_EXISTS")
    lines = validate_items(items)
    totals = calculate_totals(lines, tax_rate)
    data = {
        "delivery_number": delivery_number,
        "company_id": company_id,
        "invoice_id": invoice_id,
        "items": lines,
        "tax_rate": totals.tax_rate,
        "created_by": ctx.user_id,
    }
    data.update({key: shipping.get(key) for key in SHIPPING_FIELDS})
    return note.record("DeliveryNoteCreated", ctx, data)


def update_details(note: Aggregate[DeliveryNoteState], ctx: TenantContext, **changes):
    state = note.state
    if state.status in (DeliveryStatus.DELIVERED.value, DeliveryStatus.RETURNED.value):
        raise BusinessRuleViolation(
            f"Delivery note {state.delivery_number} is {state.status} and can no longer be edited",
            code="DOCUMENT_LOCKED",
        )
    data = {key: value for key, value in changes.items() if key in SHIPPING_FIELDS}
    if not data:
        return None
    return note.record("DeliveryNoteDetailsUpdated", ctx, data)


def ship(note: Aggregate[DeliveryNoteState], ctx: TenantContext, ship_date: date,
         carrier: Optional[str] = None, tracking_number: Optional[str] = None):
    ensure_transition("delivery note", TRANSITIONS, note.state.status, DeliveryStatus.IN_TRANSIT.value)
    return note.record("DeliveryNoteShipped", ctx, {
        "ship_date": ship_date,
        "carrier": carrier,
        "tracking_number": tracking_number,
    })


def deliver(note: Aggregate[DeliveryNoteState], ctx: TenantContext, delivery_date: date):
    state = note.state
    ensure_transition("delivery note", TRANSITIONS, state.status, DeliveryStatus.DELIVERED.value)
    if state.ship_date is not None and delivery_date < state.ship_date:
        raise ValidationFailed("delivery_date cannot be before ship_date", field="delivery_date")
    return note.record("DeliveryNoteDelivered", ctx, {"delivery_date": delivery_date})


def mark_returned(note: Aggregate[DeliveryNoteState], ctx: TenantContext, reason: Optional[str] = None):
    ensure_transition("delivery note", TRANSITIONS, note.state.status, DeliveryStatus.RETURNED.value)
    return note.record("DeliveryNoteReturned", ctx, {"reason": reason})
