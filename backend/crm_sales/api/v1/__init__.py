# API v1 Package
from crm_sales.api.v1 import companies, quotes, orders, invoices, payments, allocations, delivery_notes, events

__all__ = [
    'companies',
    'quotes',
    'orders',
    'invoices',
    'payments',
    'allocations',
    'delivery_notes',
    'events',
]
