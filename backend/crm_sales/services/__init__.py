# Services Package
from crm_sales.services.event_store import EventStore
from crm_sales.services.notification_service import Notifier, DocumentRenderer, LoggingNotifier, LoggingRenderer
from crm_sales.services.company_service import CompanyService
from crm_sales.services.quote_service import QuoteService
from crm_sales.services.order_service import OrderService
from crm_sales.services.invoice_service import InvoiceService
from crm_sales.services.allocation_service import AllocationService
from crm_sales.services.payment_service import PaymentService
from crm_sales.services.delivery_note_service import DeliveryNoteService
from crm_sales.services.workflow_service import WorkflowService

__all__ = [
    'EventStore',
    'Notifier',
    'DocumentRenderer',
    'LoggingNotifier',
    'LoggingRenderer',
    'CompanyService',
    'QuoteService',
    'OrderService',
    'InvoiceService',
    'AllocationService',
    'PaymentService',
    'DeliveryNoteService',
    'WorkflowService',
]
