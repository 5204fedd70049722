from decimal import Decimal

import pytest

from crm_sales.core.exceptions import BusinessRuleViolation, NotFound, ValidationFailed
from crm_sales.models import InvoiceOrderAllocation
from crm_sales.services.allocation_service import AllocationService
from crm_sales.services.invoice_service import InvoiceService
from crm_sales.services.order_service import OrderService
from crm_sales.services.workflow_service import WorkflowService

HUNDRED_ITEMS = [{"product_name": "Retainer", "quantity": "1", "unit_price": "100.00"}]


def assert_conserved(db, ctx, order):
    """Bridge rows, the projected row and the replayed aggregate agree"""
    rows = db.query(InvoiceOrderAllocation).filter(InvoiceOrderAllocation.order_id == order.id).all()
    bridged = sum((Decimal(row.amount_allocated) for row in rows), Decimal("0"))
    state = OrderService(db, ctx).replay(order).state

    assert bridged == order.invoiced_amount == state.invoiced_amount
    assert order.remaining_amount == order.total - order.invoiced_amount == state.remaining_amount


class TestOrderInvoicing:
    def test_full_invoice_copies_items(self, db, ctx, make_order):
        order = make_order()
        invoice = WorkflowService(db, ctx).convert_order_to_invoice(order.id)

        assert invoice.total == order.total == Decimal("119.90")
        assert invoice.tax_rate == order.tax_rate
        assert len(invoice.items) == 2
        assert order.remaining_amount == Decimal("0.00")
        assert_conserved(db, ctx, order)

    def test_partial_by_percentage_then_rest(self, db, ctx, make_order):
        order = make_order()
        workflow = WorkflowService(db, ctx)

        half = workflow.convert_order_to_invoice(order.id, percentage=Decimal("50"))
        assert half.total == Decimal("59.95")
        assert order.invoiced_amount == Decimal("59.95")
        assert order.remaining_amount == Decimal("59.95")

        rest = workflow.convert_order_to_invoice(order.id)
        assert rest.total == Decimal("59.95")
        assert order.remaining_amount == Decimal("0.00")
        assert_conserved(db, ctx, order)

        with pytest.raises(BusinessRuleViolation) as exc:
            workflow.convert_order_to_invoice(order.id)
        assert exc.value.code == "ORDER_FULLY_INVOICED"

    def test_partial_amount_above_remaining(self, db, ctx, make_order):
        order = make_order()
        workflow = WorkflowService(db, ctx)
        workflow.convert_order_to_invoice(order.id, amount=Decimal("100.00"))

        with pytest.raises(BusinessRuleViolation) as exc:
            workflow.convert_order_to_invoice(order.id, amount=Decimal("20.00"))
        assert exc.value.code == "ALLOCATION_EXCEEDS_ORDER_TOTAL"

    def test_amount_and_percentage_together(self, db, ctx, make_order):
        order = make_order()

        with pytest.raises(ValidationFailed):
            WorkflowService(db, ctx).convert_order_to_invoice(order.id, amount=Decimal("1"), percentage=Decimal("1"))

    def test_sub_cent_amount_is_refused(self, db, ctx, make_order):
        order = make_order()

        with pytest.raises(ValidationFailed) as exc:
            WorkflowService(db, ctx).convert_order_to_invoice(order.id, amount="10.005")
        assert exc.value.details["field"] == "amount"
        assert order.invoiced_amount == Decimal("0.00")
        assert InvoiceService(db, ctx).list() == []

    def test_consolidated_invoice(self, db, ctx, make_order):
        first, second = make_order(), make_order(items=HUNDRED_ITEMS, tax_rate=Decimal("0"))

        invoice = WorkflowService(db, ctx).create_consolidated_invoice(
            [(first.id, None), (second.id, Decimal("40.00"))]
        )

        assert invoice.total == Decimal("159.90")
        assert [item.product_name for item in invoice.items] == [
            f"Order {first.order_number}", f"Order {second.order_number}"
        ]
        assert len(AllocationService(db, ctx).list_for_invoice(invoice.id)) == 2
        assert second.remaining_amount == Decimal("60.00")
        assert_conserved(db, ctx, first)
        assert_conserved(db, ctx, second)

    def test_consolidated_invoice_needs_one_company(self, db, ctx, make_order, second_company):
        first = make_order()
        other = make_order(company_id=second_company.id)

        with pytest.raises(BusinessRuleViolation) as exc:
            WorkflowService(db, ctx).create_consolidated_invoice([(first.id, None), (other.id, None)])
        assert exc.value.code == "COMPANY_MISMATCH"

    def test_consolidated_invoice_rejects_duplicates(self, db, ctx, make_order):
        order = make_order()

        with pytest.raises(ValidationFailed):
            WorkflowService(db, ctx).create_consolidated_invoice([(order.id, None), (order.id, None)])


class TestAllocate:
    def test_upsert_replaces_amount(self, db, ctx, make_order, make_invoice):
        order = make_order()
        invoice = make_invoice(items=HUNDRED_ITEMS, tax_rate=Decimal("0"))
        allocations = AllocationService(db, ctx)

        allocations.allocate(invoice.id, order.id, Decimal("100.00"))
        allocation = allocations.allocate(invoice.id, order.id, Decimal("50.00"))

        assert allocation.amount_allocated == Decimal("50.00")
        assert order.invoiced_amount == Decimal("50.00")
        assert len(allocations.list_for_order(order.id)) == 1
        assert_conserved(db, ctx, order)

    def test_invoice_total_is_a_ceiling(self, db, ctx, make_order, make_invoice):
        order = make_order()
        invoice = make_invoice(items=HUNDRED_ITEMS, tax_rate=Decimal("0"))

        with pytest.raises(BusinessRuleViolation) as exc:
            AllocationService(db, ctx).allocate(invoice.id, order.id, Decimal("100.01"))
        assert exc.value.code == "ALLOCATION_EXCEEDS_INVOICE_TOTAL"

    def test_order_total_is_a_ceiling(self, db, ctx, make_order, make_invoice):
        order = make_order(items=HUNDRED_ITEMS, tax_rate=Decimal("0"))
        first = make_invoice(items=HUNDRED_ITEMS, tax_rate=Decimal("0"))
        second = make_invoice(items=HUNDRED_ITEMS, tax_rate=Decimal("0"))
        allocations = AllocationService(db, ctx)
        allocations.allocate(first.id, order.id, Decimal("70.00"))

        with pytest.raises(BusinessRuleViolation) as exc:
            allocations.allocate(second.id, order.id, Decimal("30.01"))
        assert exc.value.code == "ALLOCATION_EXCEEDS_ORDER_TOTAL"

        allocations.allocate(second.id, order.id, Decimal("30.00"))
        assert order.remaining_amount == Decimal("0.00")

    def test_amount_must_be_positive(self, db, ctx, make_order, make_invoice):
        order, invoice = make_order(), make_invoice()

        with pytest.raises(ValidationFailed):
            AllocationService(db, ctx).allocate(invoice.id, order.id, Decimal("0"))

    def test_sub_cent_amount_is_refused(self, db, ctx, make_order, make_invoice):
        order, invoice = make_order(), make_invoice()

        with pytest.raises(ValidationFailed):
            AllocationService(db, ctx).allocate(invoice.id, order.id, Decimal("10.005"))
        assert AllocationService(db, ctx).list_for_order(order.id) == []
        assert order.invoiced_amount == Decimal("0.00")

    def test_companies_must_match(self, db, ctx, make_order, make_invoice, second_company):
        order = make_order(company_id=second_company.id)
        invoice = make_invoice()

        with pytest.raises(BusinessRuleViolation) as exc:
            AllocationService(db, ctx).allocate(invoice.id, order.id, Decimal("1.00"))
        assert exc.value.code == "COMPANY_MISMATCH"

    def test_cancelled_order_takes_no_allocation(self, db, ctx, make_order, make_invoice):
        order = make_order()
        OrderService(db, ctx).change_status(order.id, "cancelled")
        invoice = make_invoice()

        with pytest.raises(BusinessRuleViolation) as exc:
            AllocationService(db, ctx).allocate(invoice.id, order.id, Decimal("1.00"))
        assert exc.value.code == "ORDER_CANCELLED"

    def test_cancelled_invoice_takes_no_allocation(self, db, ctx, make_order, make_invoice):
        order = make_order()
        invoice = make_invoice()
        InvoiceService(db, ctx).cancel(invoice.id)

        with pytest.raises(BusinessRuleViolation) as exc:
            AllocationService(db, ctx).allocate(invoice.id, order.id, Decimal("1.00"))
        assert exc.value.code == "INVOICE_CANCELLED"

    def test_order_with_allocations_cannot_be_cancelled(self, db, ctx, make_order):
        order = make_order()
        WorkflowService(db, ctx).convert_order_to_invoice(order.id, amount=Decimal("10.00"))

        with pytest.raises(BusinessRuleViolation) as exc:
            OrderService(db, ctx).change_status(order.id, "cancelled")
        assert exc.value.code == "ORDER_HAS_ALLOCATIONS"

    def test_invoice_items_cannot_drop_below_allocations(self, db, ctx, make_order):
        order = make_order()
        invoice = WorkflowService(db, ctx).convert_order_to_invoice(order.id, amount=Decimal("50.00"))

        with pytest.raises(BusinessRuleViolation) as exc:
            InvoiceService(db, ctx).update_items(invoice.id, [{"product_name": "Less", "quantity": 1, "unit_price": 10}])
        assert exc.value.code == "ALLOCATION_EXCEEDS_INVOICE_TOTAL"


class TestRelease:
    def test_deallocate(self, db, ctx, make_order):
        order = make_order()
        invoice = WorkflowService(db, ctx).convert_order_to_invoice(order.id, amount=Decimal("50.00"))

        AllocationService(db, ctx).deallocate(invoice.id, order.id)

        assert order.invoiced_amount == Decimal("0.00")
        assert order.remaining_amount == Decimal("119.90")
        assert_conserved(db, ctx, order)

    def test_deallocate_unknown_pair(self, db, ctx, make_order, make_invoice):
        order, invoice = make_order(), make_invoice()

        with pytest.raises(NotFound):
            AllocationService(db, ctx).deallocate(invoice.id, order.id)

    def test_cancelling_invoice_releases_every_order(self, db, ctx, make_order):
        first, second = make_order(), make_order()
        invoice = WorkflowService(db, ctx).create_consolidated_invoice([(first.id, None), (second.id, None)])
        assert first.remaining_amount == second.remaining_amount == Decimal("0.00")

        invoice = InvoiceService(db, ctx).cancel(invoice.id, "Wrong customer")

        assert invoice.status == "cancelled"
        assert AllocationService(db, ctx).list_for_invoice(invoice.id) == []
        assert first.remaining_amount == second.remaining_amount == Decimal("119.90")
        assert_conserved(db, ctx, first)
        assert_conserved(db, ctx, second)
        assert [e.event_type for e in OrderService(db, ctx).history(first.id)][-1] == "OrderAllocationChanged"
