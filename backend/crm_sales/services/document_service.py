"""
Document Service - shared persistence for event-sourced sales documents

A document row is loaded under a row lock, its aggregate is rebuilt from the
event store, a domain command raises new events, and ``save`` appends those
events and projects the resulting state back onto the row. The row's
``version`` column is checked by SQLAlchemy on every UPDATE.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple, Type

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from crm_sales.core.database import apply_lock_timeout
from crm_sales.core.exceptions import ConcurrencyConflict
from crm_sales.core.tenancy import TenantContext, TenantScopedRepository
from crm_sales.domain.aggregate import Aggregate
from crm_sales.models import Company, StoredEvent
from crm_sales.services.event_store import EventStore
from crm_sales.services.notification_service import (
    DocumentRenderer, Notifier, default_notifier, default_renderer, enqueue, template_for
)

logger = logging.getLogger(__name__)


class DocumentService:
    model: Type = None
    item_model: Type = None
    resource_name = "Document"
    aggregate_type: str = None
    number_field: str = None
    number_prefix: str = None
    projected_fields: Tuple[str, ...] = ()
    event_templates: Dict[str, str] = {}

    def __init__(self, db: Session, tenant: TenantContext, notifier: Notifier = None):
        self.db = db
        self.tenant = tenant
        self.repo = TenantScopedRepository(db, tenant, self.model, self.resource_name)
        self.events = EventStore(db, tenant)
        self.notifier = notifier or default_notifier

    def new_aggregate(self, entity_id: int) -> Aggregate:
        raise NotImplementedError

    # ---------- reads ----------

    def get_by_id(self, entity_id: int):
        return self.repo.get(entity_id)

    def list(self, **filters) -> List:
        return self.repo.list(**filters)

    def history(self, entity_id: int) -> List[StoredEvent]:
        self.repo.get(entity_id)
        return self.events.timeline(self.aggregate_type, entity_id)

    def get_next_number(self) -> str:
        """Generate next document number"""
        last = self.repo.query().order_by(self.model.id.desc()).first()
        if last:
            try:
                num = int(getattr(last, self.number_field).replace(f"{self.number_prefix}-", ""))
                return f"{self.number_prefix}-{num + 1:05d}"
            except ValueError:
                pass
        return f"{self.number_prefix}-{self.repo.query().count() + 1:05d}"

    def ensure_company(self, company_id: int) -> Company:
        return TenantScopedRepository(self.db, self.tenant, Company, "Company").get(company_id)

    # ---------- aggregate plumbing ----------

    def replay(self, row) -> Aggregate:
        aggregate = self.new_aggregate(row.id)
        aggregate.load_from_history(self.events.load(self.aggregate_type, row.id))
        if aggregate.version != row.version:
            raise ConcurrencyConflict(
                f"{self.resource_name} {row.id} is at version {row.version} "
                f"but its history has {aggregate.version} events",
                details={"row_version": row.version, "event_version": aggregate.version},
            )
        return aggregate

    def load(self, entity_id: int, expected_version: Optional[int] = None) -> Tuple[Any, Aggregate]:
        """Lock the row and rebuild its aggregate"""
        try:
            apply_lock_timeout(self.db)
            row = self.repo.get(entity_id, for_update=True)
        except OperationalError as e:
            logger.warning(f"Lock wait on {self.resource_name} {entity_id} failed: {e}")
            raise ConcurrencyConflict(
                f"{self.resource_name} {entity_id} is locked by another transaction",
                details={"id": entity_id},
            )
        if expected_version is not None and row.version != expected_version:
            raise ConcurrencyConflict(
                f"{self.resource_name} {entity_id} is at version {row.version}, expected {expected_version}",
                details={"current_version": row.version, "expected_version": expected_version},
            )
        return row, self.replay(row)

    def insert(self, **fields):
        """Insert an empty row at version 0 to obtain its id"""
        row = self.model(**fields)
        row.version = 0
        setattr(row, self.number_field, self.get_next_number())
        self.repo.add(row)
        try:
            self.db.flush()
        except IntegrityError as e:
            logger.warning(f"{self.resource_name} number collision: {e}")
            raise ConcurrencyConflict(
                f"{self.resource_name} number {getattr(row, self.number_field)} is already taken",
                details={"number": getattr(row, self.number_field)},
            )
        return row

    def project(self, row, state) -> None:
        for field in self.projected_fields:
            setattr(row, field, getattr(state, field))

    def project_items(self, row, items) -> None:
        row.items = [
            self.item_model(
                position=position,
                product_name=line.product_name,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount=line.discount,
                total=line.total,
                tenant_id=self.tenant.tenant_id,
            )
            for position, line in enumerate(items)
        ]

    def save(self, row, aggregate: Aggregate):
        """Persist buffered events and refresh the row projection"""
        events = aggregate.get_uncommitted_events()
        if not events:
            return row

        previous_status = row.status
        self.events.append(events, expected_version=aggregate.committed_version)

        self.project(row, aggregate.state)
        if any(e.event_type.endswith(("Created", "ItemsUpdated")) for e in events):
            self.project_items(row, aggregate.state.items)
        row.version = aggregate.version

        try:
            self.db.flush()
        except StaleDataError as e:
            logger.warning(f"Stale {self.resource_name} {row.id}: {e}")
            raise ConcurrencyConflict(
                f"{self.resource_name} {row.id} was modified concurrently",
                details={"id": row.id},
            )
        aggregate.mark_committed()

        self._queue_notifications(row, previous_status, [e.event_type for e in events])
        logger.info(
            f"{self.resource_name} {getattr(row, self.number_field)} -> v{row.version} "
            f"({', '.join(e.event_type for e in events)})"
        )
        return row

    def _queue_notifications(self, row, previous_status: Optional[str], event_types: List[str]):
        payload = {
            "tenant_id": self.tenant.tenant_id,
            "document_type": self.aggregate_type,
            "document_id": row.id,
            "number": getattr(row, self.number_field),
            "status": row.status,
            "company_id": row.company_id,
            "total": str(row.total),
        }
        for event_type in event_types:
            template_key = self.event_templates.get(event_type)
            if template_key:
                enqueue(self.db, self.notifier, template_key, dict(payload))
        if row.status != previous_status:
            template_key = template_for(self.aggregate_type, row.status)
            if template_key:
                enqueue(self.db, self.notifier, template_key, dict(payload, previous_status=previous_status))

    def render(self, entity_id: int, renderer: DocumentRenderer = None) -> bytes:
        row = self.repo.get(entity_id)
        document = self.replay(row).state.model_dump(mode="json")
        document.update({"id": row.id, "number": getattr(row, self.number_field)})
        return (renderer or default_renderer).render(self.aggregate_type, document)
