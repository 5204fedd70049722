"""
Quote Service - quote lifecycle
"""
import logging
from datetime import date, timedelta
from typing import List, Optional

from crm_sales.core.config import settings
from crm_sales.domain import quote as quote_domain
from crm_sales.models import Quote, QuoteItem
from crm_sales.schemas import QuoteCreate
from crm_sales.services.document_service import DocumentService

logger = logging.getLogger(__name__)


class QuoteService(DocumentService):
    model = Quote
    item_model = QuoteItem
    resource_name = "Quote"
    aggregate_type = quote_domain.AGGREGATE_TYPE
    number_field = "quote_number"
    number_prefix = "QUO"
    projected_fields = (
        "status", "valid_until", "tax_rate", "subtotal", "tax", "total", "notes",
        "rejection_reason", "converted_order_id", "converted_invoice_id",
    )

    def new_aggregate(self, entity_id: int):
        return quote_domain.new_quote(entity_id)

    def create(self, quote_data: QuoteCreate) -> Quote:
        self.ensure_company(quote_data.company_id)
        issue_date = quote_data.issue_date or date.today()
        valid_until = quote_data.valid_until or issue_date + timedelta(days=settings.QUOTE_VALIDITY_DAYS)
        tax_rate = quote_data.tax_rate if quote_data.tax_rate is not None else settings.DEFAULT_TAX_RATE
        items = [item.model_dump() for item in quote_data.items]

        # Validate before touching the database
        quote_domain.create(
            self.new_aggregate(0), self.tenant, "QUO-PENDING", quote_data.company_id,
            issue_date, valid_until, items, tax_rate, quote_data.notes
        )

        quote = self.insert(
            company_id=quote_data.company_id,
            issue_date=issue_date,
            status=quote_domain.QuoteStatus.DRAFT.value,
            created_by=self.tenant.user_id,
        )
        aggregate = self.new_aggregate(quote.id)
        quote_domain.create(
            aggregate, self.tenant, quote.quote_number, quote_data.company_id,
            issue_date, valid_until, items, tax_rate, quote_data.notes
        )
        return self.save(quote, aggregate)

    def update_items(self, quote_id: int, items: List[dict], tax_rate=None,
                     expected_version: Optional[int] = None) -> Quote:
        quote, aggregate = self.load(quote_id, expected_version)
        quote_domain.update_items(aggregate, self.tenant, items, tax_rate)
        return self.save(quote, aggregate)

    def send(self, quote_id: int, expected_version: Optional[int] = None) -> Quote:
        quote, aggregate = self.load(quote_id, expected_version)
        quote_domain.send(aggregate, self.tenant)
        return self.save(quote, aggregate)

    def accept(self, quote_id: int, expected_version: Optional[int] = None) -> Quote:
        quote, aggregate = self.load(quote_id, expected_version)
        quote_domain.accept(aggregate, self.tenant)
        return self.save(quote, aggregate)

    def reject(self, quote_id: int, reason: str = None, expected_version: Optional[int] = None) -> Quote:
        quote, aggregate = self.load(quote_id, expected_version)
        quote_domain.reject(aggregate, self.tenant, reason)
        return self.save(quote, aggregate)

    def expire(self, quote_id: int, expected_version: Optional[int] = None) -> Quote:
        quote, aggregate = self.load(quote_id, expected_version)
        quote_domain.expire(aggregate, self.tenant)
        return self.save(quote, aggregate)

    def expire_lapsed(self, today: date = None) -> List[Quote]:
        """Expire draft and sent quotes whose validity has run out"""
        today = today or date.today()
        candidates = self.repo.query().filter(
            Quote.status.in_([quote_domain.QuoteStatus.DRAFT.value, quote_domain.QuoteStatus.SENT.value]),
            Quote.valid_until < today
        ).order_by(Quote.id.asc()).all()

        expired = []
        for candidate in candidates:
            quote, aggregate = self.load(candidate.id)
            if not quote_domain.is_lapsed(aggregate.state, today):
                continue
            quote_domain.expire(aggregate, self.tenant)
            expired.append(self.save(quote, aggregate))
        if expired:
            logger.info(f"Expired {len(expired)} lapsed quote(s) for tenant {self.tenant.tenant_id}")
        return expired
