"""
Order Service - order lifecycle
"""
import logging
from typing import List, Optional

from crm_sales.core.config import settings
from crm_sales.domain import order as order_domain
from crm_sales.models import Order, OrderItem
from crm_sales.schemas import OrderCreate
from crm_sales.services.document_service import DocumentService

logger = logging.getLogger(__name__)


class OrderService(DocumentService):
    model = Order
    item_model = OrderItem
    resource_name = "Order"
    aggregate_type = order_domain.AGGREGATE_TYPE
    number_field = "order_number"
    number_prefix = "ORD"
    projected_fields = (
        "status", "tax_rate", "subtotal", "tax", "total",
        "invoiced_amount", "remaining_amount", "notes",
    )

    def new_aggregate(self, entity_id: int):
        return order_domain.new_order(entity_id)

    def create(self, order_data: OrderCreate, quote_id: Optional[int] = None) -> Order:
        self.ensure_company(order_data.company_id)
        tax_rate = order_data.tax_rate if order_data.tax_rate is not None else settings.DEFAULT_TAX_RATE
        items = [item.model_dump() for item in order_data.items]

        order_domain.create(
            self.new_aggregate(0), self.tenant, "ORD-PENDING", order_data.company_id,
            items, tax_rate, quote_id, order_data.notes
        )

        order = self.insert(
            company_id=order_data.company_id,
            quote_id=quote_id,
            status=order_domain.OrderStatus.PENDING.value,
            created_by=self.tenant.user_id,
        )
        aggregate = self.new_aggregate(order.id)
        order_domain.create(
            aggregate, self.tenant, order.order_number, order_data.company_id,
            items, tax_rate, quote_id, order_data.notes
        )
        return self.save(order, aggregate)

    def update_items(self, order_id: int, items: List[dict], tax_rate=None,
                     expected_version: Optional[int] = None) -> Order:
        order, aggregate = self.load(order_id, expected_version)
        order_domain.update_items(aggregate, self.tenant, items, tax_rate)
        return self.save(order, aggregate)

    def change_status(self, order_id: int, status: str, expected_version: Optional[int] = None) -> Order:
        order, aggregate = self.load(order_id, expected_version)
        order_domain.change_status(aggregate, self.tenant, status)
        return self.save(order, aggregate)
