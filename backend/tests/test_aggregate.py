from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from crm_sales.core.exceptions import ConcurrencyConflict, InvalidTransition
from crm_sales.core.tenancy import TenantContext
from crm_sales.domain import invoice as invoice_domain
from crm_sales.domain import order as order_domain
from crm_sales.domain import quote as quote_domain
from crm_sales.domain.aggregate import ensure_transition
from crm_sales.domain.events import DomainEvent, EventMetadata

from conftest import STANDARD_ITEMS

CTX = TenantContext(tenant_id=1, user_id=3)


def draft_quote(quote_id=10):
    quote = quote_domain.new_quote(quote_id)
    quote_domain.create(quote, CTX, "QUO-00010", 5, date(2024, 3, 1), date(2024, 3, 31), STANDARD_ITEMS, Decimal("10"))
    return quote


class TestAggregateContract:
    def test_raise_event_bumps_version_and_buffers(self):
        quote = draft_quote()
        quote_domain.send(quote, CTX)

        assert quote.version == 2
        assert [e.event_type for e in quote.get_uncommitted_events()] == ["QuoteCreated", "QuoteSent"]
        assert [e.version for e in quote.get_uncommitted_events()] == [1, 2]
        assert quote.committed_version == 0

    def test_mark_committed_clears_buffer_only(self):
        quote = draft_quote()
        quote.mark_committed()

        assert quote.get_uncommitted_events() == []
        assert quote.version == 1
        assert quote.committed_version == 1

    def test_get_uncommitted_events_returns_a_copy(self):
        quote = draft_quote()
        quote.get_uncommitted_events().clear()

        assert len(quote.get_uncommitted_events()) == 1

    def test_event_metadata(self):
        event = draft_quote().get_uncommitted_events()[0]

        assert event.metadata.tenant_id == 1
        assert event.metadata.user_id == 3
        assert event.metadata.aggregate_version == 1
        assert event.metadata.timestamp.tzinfo is not None

    def test_replay_reproduces_state_and_version(self):
        quote = draft_quote()
        quote_domain.update_items(quote, CTX, STANDARD_ITEMS[:1])
        quote_domain.send(quote, CTX)
        quote_domain.accept(quote, CTX)
        quote_domain.mark_converted_to_order(quote, CTX, 44)

        replayed = quote_domain.new_quote(10).load_from_history(quote.get_uncommitted_events())

        assert replayed.state == quote.state
        assert replayed.version == quote.version == 5
        assert replayed.get_uncommitted_events() == []
        assert replayed.state.total == Decimal("110.00")

    def test_apply_event_never_buffers(self):
        source = draft_quote()
        target = quote_domain.new_quote(10)
        target.apply_event(source.get_uncommitted_events()[0])

        assert target.version == 1
        assert target.get_uncommitted_events() == []

    def test_out_of_order_event_is_a_conflict(self):
        source = draft_quote()
        quote_domain.send(source, CTX)
        target = quote_domain.new_quote(10)

        with pytest.raises(ConcurrencyConflict):
            target.apply_event(source.get_uncommitted_events()[1])

    def test_event_of_another_aggregate_is_rejected(self):
        event = draft_quote(quote_id=10).get_uncommitted_events()[0]

        with pytest.raises(ValueError):
            quote_domain.new_quote(11).apply_event(event)

    def test_unknown_event_type_is_rejected(self):
        event = DomainEvent(
            event_type="QuoteTeleported",
            aggregate_type="Quote",
            aggregate_id=10,
            metadata=EventMetadata(tenant_id=1, timestamp=datetime.now(timezone.utc), aggregate_version=1),
        )

        with pytest.raises(ValueError):
            quote_domain.new_quote(10).apply_event(event)


class TestStateMachines:
    def test_ensure_transition(self):
        ensure_transition("quote", quote_domain.TRANSITIONS, "draft", "sent")

        with pytest.raises(InvalidTransition) as exc:
            ensure_transition("quote", quote_domain.TRANSITIONS, "accepted", "draft")
        assert exc.value.code == "INVALID_TRANSITION"
        assert exc.value.details == {"current_status": "accepted", "requested_status": "draft"}

    def test_quote_can_expire_from_draft(self):
        quote = draft_quote()
        quote_domain.expire(quote, CTX)

        assert quote.state.status == "expired"

    def test_quote_cannot_be_accepted_from_draft(self):
        with pytest.raises(InvalidTransition):
            quote_domain.accept(draft_quote(), CTX)

    def test_quote_lapse(self):
        state = draft_quote().state

        assert not quote_domain.is_lapsed(state, date(2024, 3, 31))
        assert quote_domain.is_lapsed(state, date(2024, 4, 1))

    def test_order_lifecycle(self):
        order = order_domain.new_order(3)
        order_domain.create(order, CTX, "ORD-00003", 5, STANDARD_ITEMS, Decimal("10"))
        for status in ("processing", "completed", "refunded"):
            order_domain.change_status(order, CTX, status)

        assert order.state.status == "refunded"
        with pytest.raises(InvalidTransition):
            order_domain.change_status(order, CTX, "pending")

    def test_order_allocations_drive_remaining_amount(self):
        order = order_domain.new_order(3)
        order_domain.create(order, CTX, "ORD-00003", 5, STANDARD_ITEMS, Decimal("10"))
        order_domain.set_allocation(order, CTX, 20, Decimal("100.00"))
        order_domain.set_allocation(order, CTX, 21, Decimal("9.90"))
        order_domain.set_allocation(order, CTX, 20, Decimal("60.00"))

        assert order.state.invoiced_amount == Decimal("69.90")
        assert order.state.remaining_amount == Decimal("50.00")

        order_domain.set_allocation(order, CTX, 21, Decimal("0"))
        assert order.state.allocations == {20: Decimal("60.00")}

    def test_invoice_replay_keeps_status_stable(self):
        invoice = invoice_domain.new_invoice(8)
        invoice_domain.create(invoice, CTX, "INV-00008", 5, date(2024, 1, 1), date(2024, 1, 31),
                              STANDARD_ITEMS, Decimal("10"))
        invoice_domain.send(invoice, CTX)
        invoice_domain.record_payment(invoice, CTX, 1, Decimal("19.90"))

        first = invoice_domain.new_invoice(8).load_from_history(invoice.get_uncommitted_events())
        second = invoice_domain.new_invoice(8).load_from_history(invoice.get_uncommitted_events())

        assert first.state.status == second.state.status == invoice.state.status == "partial"
        assert first.state == second.state

    def test_overdue_derived_from_event_dates(self):
        long_ago = datetime(2024, 1, 1, tzinfo=timezone.utc)
        invoice = invoice_domain.new_invoice(8)
        invoice.record("InvoiceCreated", CTX, {
            "invoice_number": "INV-00008", "company_id": 5, "issue_date": date(2024, 1, 1),
            "due_date": date(2024, 1, 31), "items": STANDARD_ITEMS, "tax_rate": "10",
        }, timestamp=long_ago)
        invoice.record("InvoiceSent", CTX, timestamp=long_ago + timedelta(days=1))

        assert invoice.state.status == "sent"

        invoice_domain.mark_overdue(invoice, CTX, date(2024, 2, 15))
        assert invoice.state.status == "overdue"
        assert invoice.state.as_of >= date(2024, 2, 15)
