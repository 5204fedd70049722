from datetime import datetime, timezone

import pytest

from crm_sales.core.exceptions import ConcurrencyConflict
from crm_sales.domain import quote as quote_domain
from crm_sales.domain.events import DomainEvent, EventMetadata
from crm_sales.services.event_store import EventStore
from crm_sales.services.quote_service import QuoteService


def quote_event(ctx, quote_id, version, event_type="QuoteSent"):
    return DomainEvent(
        event_type=event_type,
        aggregate_type="Quote",
        aggregate_id=quote_id,
        metadata=EventMetadata(
            tenant_id=ctx.tenant_id,
            user_id=ctx.user_id,
            timestamp=datetime.now(timezone.utc),
            aggregate_version=version,
        ),
    )


class TestEventStore:
    def test_timeline_is_ordered_by_version(self, db, ctx, make_quote):
        quote = make_quote()
        service = QuoteService(db, ctx)
        service.send(quote.id)
        service.accept(quote.id)

        timeline = EventStore(db, ctx).timeline("Quote", quote.id)

        assert [e.event_type for e in timeline] == ["QuoteCreated", "QuoteSent", "QuoteAccepted"]
        assert [e.aggregate_version for e in timeline] == [1, 2, 3]
        assert all(e.user_id == 7 for e in timeline)
        assert len({e.event_id for e in timeline}) == 3
        assert timeline[0].sequence_number < timeline[1].sequence_number < timeline[2].sequence_number

    def test_load_rebuilds_domain_events(self, db, ctx, make_quote):
        quote = make_quote()

        events = EventStore(db, ctx).load("Quote", quote.id)
        replayed = quote_domain.new_quote(quote.id).load_from_history(events)

        assert events[0].metadata.timestamp.tzinfo is not None
        assert replayed.state.quote_number == quote.quote_number
        assert replayed.state.total == quote.total

    def test_append_checks_expected_version(self, db, ctx, make_quote):
        quote = make_quote()

        with pytest.raises(ConcurrencyConflict):
            EventStore(db, ctx).append([quote_event(ctx, quote.id, 2)], expected_version=0)

    def test_append_refuses_gaps_and_duplicates(self, db, ctx, make_quote):
        quote = make_quote()
        store = EventStore(db, ctx)

        with pytest.raises(ConcurrencyConflict):
            store.append([quote_event(ctx, quote.id, 1)])
        with pytest.raises(ConcurrencyConflict):
            store.append([quote_event(ctx, quote.id, 3)])

    def test_append_is_single_stream_and_single_tenant(self, db, ctx, other_ctx, make_quote):
        quote = make_quote()
        store = EventStore(db, ctx)

        with pytest.raises(ValueError):
            store.append([quote_event(ctx, quote.id, 2), quote_event(ctx, quote.id + 1, 1)])
        with pytest.raises(ValueError):
            store.append([quote_event(other_ctx, quote.id, 2)])

    def test_append_nothing(self, db, ctx):
        assert EventStore(db, ctx).append([]) == []

    def test_queries(self, db, ctx, make_quote, make_invoice):
        first = make_quote()
        make_quote()
        make_invoice()
        QuoteService(db, ctx).send(first.id)
        store = EventStore(db, ctx)

        assert [e.aggregate_id for e in store.events_by_type("QuoteSent")] == [first.id]

        total, page = store.stream(limit=2)
        assert total == 4
        assert [e.event_type for e in page] == ["QuoteSent", "InvoiceCreated"]

        total, quotes_only = store.stream("Quote", limit=10, offset=1)
        assert total == 3
        assert len(quotes_only) == 2

        since = store.events_since(page[1].sequence_number)
        assert [e.event_type for e in since] == ["QuoteSent"]
        assert store.current_version("Quote", first.id) == 2

    def test_requires_tenant_context(self, db):
        with pytest.raises(TypeError):
            EventStore(db, None)
