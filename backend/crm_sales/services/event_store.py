"""
Event Store - append-only persistence for aggregate event streams
"""
import logging
import uuid
from datetime import timezone
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_sales.core.exceptions import ConcurrencyConflict
from crm_sales.core.tenancy import TenantContext
from crm_sales.domain.events import DomainEvent, EventMetadata
from crm_sales.models import StoredEvent

logger = logging.getLogger(__name__)


def to_domain_event(row: StoredEvent) -> DomainEvent:
    occurred_at = row.occurred_at
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    return DomainEvent(
        event_type=row.event_type,
        aggregate_type=row.aggregate_type,
        aggregate_id=row.aggregate_id,
        data=row.event_data or {},
        metadata=EventMetadata(
            tenant_id=row.tenant_id,
            user_id=row.user_id,
            timestamp=occurred_at,
            aggregate_version=row.aggregate_version,
        ),
    )


class EventStore:
    def __init__(self, db: Session, tenant: TenantContext):
        if not isinstance(tenant, TenantContext):
            raise TypeError("A TenantContext is required to access the event store")
        self.db = db
        self.tenant = tenant

    def _query(self):
        return self.db.query(StoredEvent).filter(StoredEvent.tenant_id == self.tenant.tenant_id)

    def current_version(self, aggregate_type: str, aggregate_id: int) -> int:
        version = self.db.query(func.max(StoredEvent.aggregate_version)).filter(
            StoredEvent.aggregate_type == aggregate_type,
            StoredEvent.aggregate_id == aggregate_id
        ).scalar()
        return version or 0

    def append(self, events: Sequence[DomainEvent], expected_version: Optional[int] = None) -> List[StoredEvent]:
        """
        Append events of one aggregate stream.

        ``expected_version`` is the stream version the caller loaded; if
        another writer got there first the append fails with a conflict and
        nothing is written.
        """
        if not events:
            return []

        first = events[0]
        for event in events:
            if (event.aggregate_type, event.aggregate_id) != (first.aggregate_type, first.aggregate_id):
                raise ValueError("All events of one append must belong to the same aggregate")
            if event.metadata.tenant_id != self.tenant.tenant_id:
                raise ValueError("Event tenant does not match the current tenant")

        current = self.current_version(first.aggregate_type, first.aggregate_id)
        if expected_version is not None and current != expected_version:
            raise ConcurrencyConflict(
                f"{first.aggregate_type} {first.aggregate_id} is at version {current}, "
                f"expected {expected_version}",
                details={"current_version": current, "expected_version": expected_version},
            )
        for offset, event in enumerate(events, start=1):
            if event.version != current + offset:
                raise ConcurrencyConflict(
                    f"{first.aggregate_type} {first.aggregate_id} event version {event.version} "
                    f"does not follow version {current + offset - 1}",
                    details={"current_version": current, "event_version": event.version},
                )

        rows = []
        for event in events:
            timestamp = event.metadata.timestamp
            if timestamp.tzinfo is not None:
                timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
            row = StoredEvent(
                event_id=str(uuid.uuid4()),
                aggregate_type=event.aggregate_type,
                aggregate_id=event.aggregate_id,
                aggregate_version=event.version,
                event_type=event.event_type,
                event_data=event.data,
                user_id=event.metadata.user_id,
                occurred_at=timestamp,
                tenant_id=self.tenant.tenant_id,
            )
            self.db.add(row)
            rows.append(row)

        try:
            self.db.flush()
        except IntegrityError as e:
            logger.warning(f"Event append conflict on {first.aggregate_type} {first.aggregate_id}: {e}")
            raise ConcurrencyConflict(
                f"{first.aggregate_type} {first.aggregate_id} was modified concurrently",
                details={"expected_version": expected_version},
            )
        return rows

    def load(self, aggregate_type: str, aggregate_id: int) -> List[DomainEvent]:
        """Events of one aggregate in version order"""
        rows = self._query().filter(
            StoredEvent.aggregate_type == aggregate_type,
            StoredEvent.aggregate_id == aggregate_id
        ).order_by(StoredEvent.aggregate_version.asc()).all()
        return [to_domain_event(row) for row in rows]

    def timeline(self, aggregate_type: str, aggregate_id: int) -> List[StoredEvent]:
        return self._query().filter(
            StoredEvent.aggregate_type == aggregate_type,
            StoredEvent.aggregate_id == aggregate_id
        ).order_by(StoredEvent.aggregate_version.asc()).all()

    def events_by_type(self, event_type: str, limit: int = 100) -> List[StoredEvent]:
        return self._query().filter(
            StoredEvent.event_type == event_type
        ).order_by(StoredEvent.id.desc()).limit(limit).all()

    def events_since(self, sequence_number: int, batch_size: int = 100) -> List[StoredEvent]:
        """Events after a sequence number, oldest first, for catch-up consumers"""
        return self._query().filter(
            StoredEvent.id > sequence_number
        ).order_by(StoredEvent.id.asc()).limit(batch_size).all()

    def stream(self, aggregate_type: str = None, limit: int = 50, offset: int = 0) -> Tuple[int, List[StoredEvent]]:
        """Newest-first page of the tenant's event stream and its total size"""
        query = self._query()
        if aggregate_type:
            query = query.filter(StoredEvent.aggregate_type == aggregate_type)
        total = query.count()
        events = query.order_by(StoredEvent.id.desc()).offset(offset).limit(limit).all()
        return total, events
