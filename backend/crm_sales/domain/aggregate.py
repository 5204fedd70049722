"""
Event-sourced aggregate root.

One generic class serves every document kind. Each kind supplies its
initial state and a pure ``reduce(state, event) -> state`` function; the
aggregate only sequences events, counts versions and buffers new events
until the persistence layer commits them.
"""
from datetime import datetime
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, TypeVar

from crm_sales.core.exceptions import ConcurrencyConflict, InvalidTransition
from crm_sales.core.tenancy import TenantContext
from crm_sales.domain.events import DomainEvent, EventMetadata, encode_value, utcnow

StateT = TypeVar("StateT")
Reducer = Callable[[StateT, DomainEvent], StateT]


class Aggregate(Generic[StateT]):

    def __init__(self, aggregate_type: str, aggregate_id: int, initial_state: StateT, reducer: Reducer):
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self._initial_state = initial_state
        self._reducer = reducer
        self.state: StateT = initial_state
        self.version = 0
        self._uncommitted: List[DomainEvent] = []

    def __repr__(self):
        return f"<Aggregate {self.aggregate_type}#{self.aggregate_id} v{self.version}>"

    @property
    def committed_version(self) -> int:
        """Version as last persisted, i.e. before any buffered events"""
        return self.version - len(self._uncommitted)

    def apply_event(self, event: DomainEvent) -> None:
        """Mutate state from an already-persisted event; never buffers"""
        if event.aggregate_type != self.aggregate_type or event.aggregate_id != self.aggregate_id:
            raise ValueError(
                f"Event for {event.aggregate_type}#{event.aggregate_id} "
                f"applied to {self.aggregate_type}#{self.aggregate_id}"
            )
        if event.version != self.version + 1:
            raise ConcurrencyConflict(
                f"{self.aggregate_type} {self.aggregate_id} expected event version "
                f"{self.version + 1}, got {event.version}",
                details={"expected_version": self.version + 1, "event_version": event.version},
            )
        self.state = self._reducer(self.state, event)
        self.version += 1

    def raise_event(self, event: DomainEvent) -> DomainEvent:
        """Apply a new event and buffer it for persistence"""
        self.apply_event(event)
        self._uncommitted.append(event)
        return event

    def record(self, event_type: str, ctx: TenantContext, data: Optional[Dict[str, Any]] = None,
               timestamp: Optional[datetime] = None) -> DomainEvent:
        """Build the next event for this aggregate and raise it"""
        event = DomainEvent(
            event_type=event_type,
            aggregate_type=self.aggregate_type,
            aggregate_id=self.aggregate_id,
            data=encode_value(data or {}),
            metadata=EventMetadata(
                tenant_id=ctx.tenant_id,
                user_id=ctx.user_id,
                timestamp=timestamp or utcnow(),
                aggregate_version=self.version + 1,
            ),
        )
        return self.raise_event(event)

    def get_uncommitted_events(self) -> List[DomainEvent]:
        return list(self._uncommitted)

    def mark_committed(self) -> None:
        self._uncommitted.clear()

    def load_from_history(self, events: Iterable[DomainEvent]) -> "Aggregate[StateT]":
        """Rebuild state from zero by replaying events in order"""
        self.state = self._initial_state
        self.version = 0
        self._uncommitted = []
        for event in events:
            self.apply_event(event)
        return self


def ensure_transition(kind: str, transitions: Dict[str, Iterable[str]], current: str, target: str) -> None:
    """Raise unless ``current -> target`` is an edge of the state machine"""
    if target not in transitions.get(current, ()):
        raise InvalidTransition(kind, current, target)
