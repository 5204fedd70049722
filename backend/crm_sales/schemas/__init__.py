"""
Pydantic Schemas for API Validation
"""
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Any, Dict, List, Optional
from datetime import datetime, date
from decimal import Decimal
from enum import Enum


# ==================== ENUMS ====================

class CompanySourceEnum(str, Enum):
    ACCOUNT = "account"
    CUSTOMER = "customer"


class PaymentMethodEnum(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    CASH = "cash"
    CHECK = "check"
    OTHER = "other"


# ==================== COMMON ====================

class MessageResponse(BaseModel):
    message: str
    success: bool = True


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class LineItemCreate(BaseModel):
    product_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    quantity: Decimal = Field(..., ge=0)
    unit_price: Decimal = Field(..., ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0, le=100)


class LineItemResponse(BaseModel):
    id: int
    position: int
    product_name: str
    description: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    discount: Decimal
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class ItemsUpdate(BaseModel):
    items: List[LineItemCreate]
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    expected_version: Optional[int] = None


class VersionedRequest(BaseModel):
    expected_version: Optional[int] = None


# ==================== COMPANY SCHEMAS ====================

class CompanyBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_id: Optional[str] = None
    source: CompanySourceEnum = CompanySourceEnum.CUSTOMER


class CompanyCreate(CompanyBase):
    pass


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_id: Optional[str] = None
    is_active: Optional[bool] = None


class CompanyResponse(CompanyBase):
    id: int
    tenant_id: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== QUOTE SCHEMAS ====================

class QuoteCreate(BaseModel):
    company_id: int
    issue_date: Optional[date] = None
    valid_until: Optional[date] = None
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    notes: Optional[str] = None
    items: List[LineItemCreate] = []


class QuoteRejectRequest(VersionedRequest):
    reason: Optional[str] = None


class QuoteResponse(BaseModel):
    id: int
    quote_number: str
    company_id: int
    status: str
    issue_date: date
    valid_until: Optional[date] = None
    tax_rate: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    converted_order_id: Optional[int] = None
    converted_invoice_id: Optional[int] = None
    created_by: Optional[int] = None
    version: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QuoteWithItems(QuoteResponse):
    items: List[LineItemResponse] = []


class QuoteToInvoiceRequest(BaseModel):
    payment_terms_days: Optional[int] = Field(None, ge=0)


# ==================== ORDER SCHEMAS ====================

class OrderCreate(BaseModel):
    company_id: int
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    notes: Optional[str] = None
    items: List[LineItemCreate] = Field(..., min_length=1)


class OrderStatusUpdate(VersionedRequest):
    status: str


class OrderResponse(BaseModel):
    id: int
    order_number: str
    company_id: int
    quote_id: Optional[int] = None
    status: str
    tax_rate: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    invoiced_amount: Decimal
    remaining_amount: Decimal
    notes: Optional[str] = None
    created_by: Optional[int] = None
    version: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderWithItems(OrderResponse):
    items: List[LineItemResponse] = []


class OrderInvoiceRequest(BaseModel):
    """Invoice an order in full (no amount) or in part (amount or percentage)"""
    amount: Optional[Decimal] = Field(None, gt=0)
    percentage: Optional[Decimal] = Field(None, gt=0, le=100)
    due_date: Optional[date] = None


class ConsolidatedOrderLine(BaseModel):
    order_id: int
    amount: Optional[Decimal] = Field(None, gt=0)


class ConsolidatedInvoiceRequest(BaseModel):
    orders: List[ConsolidatedOrderLine] = Field(..., min_length=1)
    due_date: Optional[date] = None
    notes: Optional[str] = None


# ==================== INVOICE SCHEMAS ====================

class InvoiceCreate(BaseModel):
    company_id: int
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    notes: Optional[str] = None
    items: List[LineItemCreate] = []


class InvoiceUpdate(VersionedRequest):
    due_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceStatusUpdate(VersionedRequest):
    status: str


class InvoiceCancelRequest(VersionedRequest):
    reason: Optional[str] = None


class InvoiceResponse(BaseModel):
    id: int
    invoice_number: str
    company_id: int
    quote_id: Optional[int] = None
    status: str
    issue_date: date
    due_date: Optional[date] = None
    tax_rate: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    paid_amount: Decimal
    notes: Optional[str] = None
    created_by: Optional[int] = None
    version: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceWithItems(InvoiceResponse):
    items: List[LineItemResponse] = []


class OverdueSweepRequest(BaseModel):
    as_of: Optional[date] = None


# ==================== PAYMENT SCHEMAS ====================

class PaymentCreate(VersionedRequest):
    invoice_id: int
    amount: Decimal = Field(..., gt=0)
    payment_method: PaymentMethodEnum = PaymentMethodEnum.BANK_TRANSFER
    payment_date: Optional[date] = None
    reference: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: int
    payment_number: str
    invoice_id: int
    amount: Decimal
    payment_method: str
    status: str
    payment_date: date
    reference: Optional[str] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[int] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentSummary(BaseModel):
    invoice_id: int
    invoice_number: str
    status: str
    total: Decimal
    paid_amount: Decimal
    remaining: Decimal
    payment_count: int
    by_status: Dict[str, int] = {}


# ==================== ALLOCATION SCHEMAS ====================

class AllocationCreate(VersionedRequest):
    invoice_id: int
    order_id: int
    amount: Decimal = Field(..., gt=0)


class AllocationResponse(BaseModel):
    id: int
    invoice_id: int
    order_id: int
    amount_allocated: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ==================== DELIVERY NOTE SCHEMAS ====================

class DeliveryNoteCreate(BaseModel):
    company_id: int
    invoice_id: Optional[int] = None
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    shipping_address: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    items: List[LineItemCreate] = []


class DeliveryNoteUpdate(VersionedRequest):
    shipping_address: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


class DeliveryNoteTransition(VersionedRequest):
    status: str
    effective_date: Optional[date] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    reason: Optional[str] = None


class DeliveryNoteResponse(BaseModel):
    id: int
    delivery_number: str
    company_id: int
    invoice_id: Optional[int] = None
    status: str
    shipping_address: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    ship_date: Optional[date] = None
    delivery_date: Optional[date] = None
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    notes: Optional[str] = None
    version: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliveryNoteWithItems(DeliveryNoteResponse):
    items: List[LineItemResponse] = []


# ==================== EVENT SCHEMAS ====================

class StoredEventResponse(BaseModel):
    sequence_number: int
    event_id: str
    aggregate_type: str
    aggregate_id: int
    aggregate_version: int
    event_type: str
    event_data: Dict[str, Any]
    user_id: Optional[int] = None
    occurred_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EventStreamResponse(BaseModel):
    total: int
    limit: int
    offset: int
    events: List[StoredEventResponse]


# ==================== WORKFLOW SCHEMAS ====================

class DocumentChainResponse(BaseModel):
    quote: QuoteResponse
    orders: List[OrderResponse] = []
    invoices: List[InvoiceResponse] = []
