"""
Order state machine.

    pending -> processing -> completed -> refunded
    pending | processing -> cancelled

The amount invoiced against an order is owned by the allocation bridge;
the aggregate mirrors each pair's allocation so replay reproduces
``invoiced_amount`` and ``remaining_amount``.
"""
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from crm_sales.core.exceptions import BusinessRuleViolation
from crm_sales.core.money import ZERO, quantize, to_decimal
from crm_sales.core.tenancy import TenantContext
from crm_sales.domain.aggregate import Aggregate, ensure_transition
from crm_sales.domain.calculator import ItemInput, LineItem, calculate_totals, validate_items
from crm_sales.domain.events import DomainEvent

AGGREGATE_TYPE = "Order"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


TRANSITIONS = {
    OrderStatus.PENDING.value: (OrderStatus.PROCESSING.value, OrderStatus.CANCELLED.value),
    OrderStatus.PROCESSING.value: (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value),
    OrderStatus.COMPLETED.value: (OrderStatus.REFUNDED.value,),
    OrderStatus.CANCELLED.value: (),
    OrderStatus.REFUNDED.value: (),
}


class OrderState(BaseModel):
    order_number: Optional[str] = None
    company_id: Optional[int] = None
    quote_id: Optional[int] = None
    status: str = OrderStatus.PENDING.value
    items: Tuple[LineItem, ...] = ()
    tax_rate: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax: Decimal = ZERO
    total: Decimal = ZERO
    allocations: Dict[int, Decimal] = {}
    notes: Optional[str] = None
    created_by: Optional[int] = None

    model_config = ConfigDict(frozen=True)

    @property
    def created(self) -> bool:
        return self.order_number is not None

    @property
    def invoiced_amount(self) -> Decimal:
        return quantize(sum(self.allocations.values(), ZERO))

    @property
    def remaining_amount(self) -> Decimal:
        return quantize(self.total - self.invoiced_amount)


def _with_items(state: OrderState, items, tax_rate) -> OrderState:
    lines = validate_items(items)
    totals = calculate_totals(lines, tax_rate)
    return state.model_copy(update={
        "items": tuple(lines),
        "tax_rate": totals.tax_rate,
        "subtotal": totals.subtotal,
        "tax": totals.tax,
        "total": totals.total,
    })


def reduce_order(state: OrderState, event: DomainEvent) -> OrderState:
    data = event.data
    kind = event.event_type

    if kind == "OrderCreated":
        state = OrderState(
            order_number=data["order_number"],
            company_id=data["company_id"],
            quote_id=data.get("quote_id"),
            notes=data.get("notes"),
            created_by=data.get("created_by"),
        )
        return _with_items(state, data["items"], data["tax_rate"])
    if kind == "OrderItemsUpdated":
        return _with_items(state, data["items"], data["tax_rate"])
    if kind == "OrderStatusChanged":
        return state.model_copy(update={"status": data["status"]})
    if kind == "OrderAllocationChanged":
        allocations = dict(state.allocations)
        amount = to_decimal(data["amount"])
        if amount > 0:
            allocations[int(data["invoice_id"])] = amount
        else:
            allocations.pop(int(data["invoice_id"]), None)
        return state.model_copy(update={"allocations": allocations})
    raise ValueError(f"Unknown order event: {kind}")


def new_order(order_id: int) -> Aggregate[OrderState]:
    return Aggregate(AGGREGATE_TYPE, order_id, OrderState(), reduce_order)


# ==================== COMMANDS ====================

def create(order: Aggregate[OrderState], ctx: TenantContext, order_number: str, company_id: int,
           items: Iterable[ItemInput], tax_rate: Decimal, quote_id: Optional[int] = None,
           notes: Optional[str] = None):
    if order.state.created:
        raise BusinessRuleViolation("Order already exists", code="ALREADY_EXISTS")
    lines = validate_items(items)
    totals = calculate_totals(lines, tax_rate)
    return order.record("OrderCreated", ctx, {
        "order_number": order_number,
        "company_id": company_id,
        "quote_id": quote_id,
        "items": lines,
        "tax_rate": totals.tax_rate,
        "notes": notes,
        "created_by": ctx.user_id,
    })


def update_items(order: Aggregate[OrderState], ctx: TenantContext, items: Iterable[ItemInput], tax_rate=None):
    state = order.state
    if state.status != OrderStatus.PENDING.value:
        raise BusinessRuleViolation(
            f"Order {state.order_number} can only be edited while pending",
            code="DOCUMENT_LOCKED",
            details={"status": state.status},
        )
    lines = validate_items(items)
    rate = state.tax_rate if tax_rate is None else tax_rate
    totals = calculate_totals(lines, rate)
    if totals.total < state.invoiced_amount:
        raise BusinessRuleViolation(
            f"Order total {totals.total} cannot drop below the invoiced amount {state.invoiced_amount}",
            code="ALLOCATION_EXCEEDS_ORDER_TOTAL",
            details={"total": str(totals.total), "invoiced_amount": str(state.invoiced_amount)},
        )
    return order.record("OrderItemsUpdated", ctx, {"items": lines, "tax_rate": totals.tax_rate})


def change_status(order: Aggregate[OrderState], ctx: TenantContext, target: str):
    state = order.state
    ensure_transition("order", TRANSITIONS, state.status, target)
    if target == OrderStatus.CANCELLED.value and state.allocations:
        raise BusinessRuleViolation(
            f"Order {state.order_number} has been invoiced and cannot be cancelled",
            code="ORDER_HAS_ALLOCATIONS",
            details={"invoice_ids": sorted(state.allocations)},
        )
    return order.record("OrderStatusChanged", ctx, {"status": target, "previous_status": state.status})


def ensure_allocatable(order: Aggregate[OrderState]):
    if order.state.status == OrderStatus.CANCELLED.value:
        raise BusinessRuleViolation(
            f"Order {order.state.order_number} is cancelled",
            code="ORDER_CANCELLED",
        )


def set_allocation(order: Aggregate[OrderState], ctx: TenantContext, invoice_id: int, amount: Decimal):
    """Mirror the bridge row for ``invoice_id``; an amount of zero removes it"""
    amount = quantize(amount)
    if amount > 0:
        ensure_allocatable(order)
    return order.record("OrderAllocationChanged", ctx, {"invoice_id": invoice_id, "amount": amount})
