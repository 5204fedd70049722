# Domain Package
from crm_sales.domain.aggregate import Aggregate, ensure_transition
from crm_sales.domain.calculator import LineItem, DocumentTotals, calculate_totals, validate_items
from crm_sales.domain.events import DomainEvent, EventMetadata

__all__ = [
    'Aggregate',
    'ensure_transition',
    'LineItem',
    'DocumentTotals',
    'calculate_totals',
    'validate_items',
    'DomainEvent',
    'EventMetadata',
]
