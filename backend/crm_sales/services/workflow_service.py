"""
Workflow Service - conversions between sales documents

Quote -> Order, Quote -> Invoice, Order -> Invoice (full or partial),
several Orders -> one Invoice, and Invoice -> Delivery Note. Every
conversion runs inside the caller's transaction: the new document, the
bridge rows and the source document's events commit together or not at all.
"""
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from crm_sales.core.config import settings
from crm_sales.core.exceptions import BusinessRuleViolation, ValidationFailed
from crm_sales.core.money import HUNDRED, ZERO, percent_of, quantize, to_decimal, to_money
from crm_sales.core.tenancy import TenantContext
from crm_sales.domain import order as order_domain
from crm_sales.domain import quote as quote_domain
from crm_sales.domain.invoice import InvoiceStatus
from crm_sales.models import Invoice, InvoiceOrderAllocation, Order, Quote
from crm_sales.schemas import DeliveryNoteCreate, InvoiceCreate, LineItemCreate, OrderCreate
from crm_sales.services.allocation_service import AllocationService
from crm_sales.services.delivery_note_service import DeliveryNoteService
from crm_sales.services.invoice_service import InvoiceService
from crm_sales.services.notification_service import Notifier
from crm_sales.services.order_service import OrderService
from crm_sales.services.quote_service import QuoteService

logger = logging.getLogger(__name__)


def _copy_items(lines) -> List[LineItemCreate]:
    """Line items of a replayed document, at full precision"""
    return [
        LineItemCreate(
            product_name=item.product_name,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            discount=item.discount,
        )
        for item in lines
    ]


def _summary_line(order: Order, amount: Decimal, label: str) -> LineItemCreate:
    return LineItemCreate(
        product_name=f"Order {order.order_number}",
        description=label,
        quantity=Decimal("1"),
        unit_price=amount,
    )


class WorkflowService:
    def __init__(self, db: Session, tenant: TenantContext, notifier: Notifier = None):
        self.db = db
        self.tenant = tenant
        self.quotes = QuoteService(db, tenant, notifier)
        self.orders = OrderService(db, tenant, notifier)
        self.invoices = InvoiceService(db, tenant, notifier)
        self.allocations = AllocationService(db, tenant, notifier)
        self.delivery_notes = DeliveryNoteService(db, tenant, notifier)

    # ==================== QUOTES ====================

    def convert_quote_to_order(self, quote_id: int, expected_version: Optional[int] = None) -> Order:
        quote, aggregate = self.quotes.load(quote_id, expected_version)
        quote_domain.ensure_convertible(aggregate, "order")

        order = self.orders.create(
            OrderCreate(
                company_id=quote.company_id,
                tax_rate=quote.tax_rate,
                notes=quote.notes,
                items=_copy_items(aggregate.state.items),
            ),
            quote_id=quote.id,
        )
        quote_domain.mark_converted_to_order(aggregate, self.tenant, order.id)
        self.quotes.save(quote, aggregate)
        logger.info(f"Converted quote {quote.quote_number} to order {order.order_number}")
        return order

    def convert_quote_to_invoice(self, quote_id: int, payment_terms_days: int = None,
                                 expected_version: Optional[int] = None) -> Invoice:
        quote, aggregate = self.quotes.load(quote_id, expected_version)
        quote_domain.ensure_convertible(aggregate, "invoice")

        issue_date = date.today()
        terms = payment_terms_days if payment_terms_days is not None else settings.DEFAULT_PAYMENT_TERMS_DAYS
        invoice = self.invoices.create(
            InvoiceCreate(
                company_id=quote.company_id,
                issue_date=issue_date,
                due_date=issue_date + timedelta(days=terms),
                tax_rate=quote.tax_rate,
                notes=quote.notes,
                items=_copy_items(aggregate.state.items),
            ),
            quote_id=quote.id,
        )
        quote_domain.mark_converted_to_invoice(aggregate, self.tenant, invoice.id)
        self.quotes.save(quote, aggregate)
        logger.info(f"Converted quote {quote.quote_number} to invoice {invoice.invoice_number}")
        return invoice

    # ==================== ORDERS ====================

    def _invoiceable(self, order_id: int, amount=None, percentage=None) -> Tuple[Order, Decimal]:
        order = self.orders.get_by_id(order_id)
        order_domain.ensure_allocatable(self.orders.replay(order))
        remaining = quantize(order.total - self.allocations.allocated_to_order(order.id))

        if amount is not None and percentage is not None:
            raise ValidationFailed("Give either an amount or a percentage, not both", field="amount")
        if amount is not None:
            amount = to_money(amount, "amount")
        elif percentage is not None:
            percentage = to_decimal(percentage, "percentage")
            if percentage <= 0 or percentage > HUNDRED:
                raise ValidationFailed("percentage must be between 0 and 100", field="percentage")
            amount = quantize(percent_of(order.total, percentage))
        else:
            if remaining <= 0:
                raise BusinessRuleViolation(
                    f"Order {order.order_number} has already been fully invoiced",
                    code="ORDER_FULLY_INVOICED",
                )
            amount = remaining

        if amount <= 0:
            raise ValidationFailed("Amount to invoice must be greater than zero", field="amount")
        if amount > remaining:
            raise BusinessRuleViolation(
                f"Order {order.order_number} has only {remaining} left to invoice, cannot invoice {amount}",
                code="ALLOCATION_EXCEEDS_ORDER_TOTAL",
                details={"amount": str(amount), "remaining": str(remaining)},
            )
        return order, amount

    def convert_order_to_invoice(self, order_id: int, amount=None, percentage=None,
                                 due_date: date = None) -> Invoice:
        """Invoice the rest of an order, or part of it by amount or percentage"""
        order, amount = self._invoiceable(order_id, amount, percentage)

        if amount == order.total:
            items, tax_rate = _copy_items(self.orders.replay(order).state.items), order.tax_rate
        else:
            label = f"Partial invoice ({percentage}%)" if percentage is not None else "Partial invoice"
            items, tax_rate = [_summary_line(order, amount, label)], ZERO

        invoice = self.invoices.create(
            InvoiceCreate(
                company_id=order.company_id,
                due_date=due_date,
                tax_rate=tax_rate,
                notes=order.notes,
                items=items,
            ),
            quote_id=order.quote_id,
        )
        self.allocations.allocate(invoice.id, order.id, amount)
        logger.info(f"Invoiced {amount} of order {order.order_number} on {invoice.invoice_number}")
        return invoice

    def create_consolidated_invoice(self, lines: Iterable[Tuple[int, Optional[Decimal]]],
                                    due_date: date = None, notes: str = None) -> Invoice:
        """One invoice billing several orders of the same company"""
        lines = list(lines)
        if not lines:
            raise ValidationFailed("At least one order is required", field="orders")
        order_ids = [order_id for order_id, _ in lines]
        if len(set(order_ids)) != len(order_ids):
            raise ValidationFailed("Each order can appear only once", field="orders")

        planned = [self._invoiceable(order_id, amount) for order_id, amount in lines]
        companies = {order.company_id for order, _ in planned}
        if len(companies) > 1:
            raise BusinessRuleViolation("Cannot consolidate orders from different companies", code="COMPANY_MISMATCH")

        invoice = self.invoices.create(
            InvoiceCreate(
                company_id=companies.pop(),
                due_date=due_date,
                tax_rate=ZERO,
                notes=notes,
                items=[_summary_line(order, amount, "Consolidated invoice") for order, amount in planned],
            )
        )
        for order, amount in planned:
            self.allocations.allocate(invoice.id, order.id, amount)
        logger.info(f"Consolidated {len(planned)} order(s) into invoice {invoice.invoice_number}")
        return invoice

    # ==================== DELIVERY ====================

    def convert_invoice_to_delivery_note(self, invoice_id: int, **shipping):
        invoice = self.invoices.get_by_id(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise BusinessRuleViolation(f"Invoice {invoice.invoice_number} is cancelled", code="INVOICE_CANCELLED")
        note = self.delivery_notes.create(
            DeliveryNoteCreate(
                company_id=invoice.company_id,
                invoice_id=invoice.id,
                tax_rate=invoice.tax_rate,
                items=_copy_items(self.invoices.replay(invoice).state.items),
                **shipping
            )
        )
        logger.info(f"Created delivery note {note.delivery_number} from invoice {invoice.invoice_number}")
        return note

    # ==================== CHAIN ====================

    def get_document_chain(self, quote_id: int) -> dict:
        """The quote, the orders made from it, and every invoice billing either"""
        quote: Quote = self.quotes.get_by_id(quote_id)
        orders = self.orders.repo.query().filter(Order.quote_id == quote.id).order_by(Order.id.asc()).all()
        order_ids = [order.id for order in orders]

        bridged = select(InvoiceOrderAllocation.invoice_id).where(
            InvoiceOrderAllocation.tenant_id == self.tenant.tenant_id,
            InvoiceOrderAllocation.order_id.in_(order_ids)
        ) if order_ids else None

        criteria = [Invoice.quote_id == quote.id]
        if bridged is not None:
            criteria.append(Invoice.id.in_(bridged))
        invoices = self.invoices.repo.query().filter(or_(*criteria)).order_by(Invoice.id.asc()).all()
        return {"quote": quote, "orders": orders, "invoices": invoices}
