"""
SQLAlchemy Models for the Sales Engine

Document rows (quotes, orders, invoices, delivery notes) are projections of
their event streams in ``event_store``. Each carries a ``version`` column
equal to the number of events applied; SQLAlchemy checks it on every UPDATE.
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Numeric, JSON,
    ForeignKey, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import relationship, synonym
import enum

from crm_sales.core.database import Base


# ==================== ENUMS ====================

class CompanySource(enum.Enum):
    ACCOUNT = "account"
    CUSTOMER = "customer"


class PaymentMethod(enum.Enum):
    BANK_TRANSFER = "bank_transfer"
    CARD = "card"
    CASH = "cash"
    CHECK = "check"
    OTHER = "other"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


# ==================== TENANCY ====================

class Tenant(Base):
    """Isolation boundary; every other row belongs to exactly one tenant"""
    __tablename__ = 'tenants'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    companies = relationship("Company", back_populates="tenant")


class Company(Base):
    """Billed party, either a CRM account or a customer"""
    __tablename__ = 'companies'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    tax_id = Column(String(50), nullable=True)
    source = Column(String(20), default=CompanySource.CUSTOMER.value)
    is_active = Column(Boolean, default=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="companies")

    __table_args__ = (
        Index('ix_companies_tenant_id', 'tenant_id'),
    )


# ==================== QUOTES ====================

class Quote(Base):
    """Sales quote"""
    __tablename__ = 'quotes'

    id = Column(Integer, primary_key=True)
    quote_number = Column(String(50), nullable=False)
    status = Column(String(20), default="draft")
    issue_date = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=True)
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    subtotal = Column(Numeric(15, 2), default=Decimal("0.00"))
    tax = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    converted_order_id = Column(Integer, nullable=True)
    converted_invoice_id = Column(Integer, nullable=True)
    company_id = Column(Integer, ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_by = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    company = relationship("Company")
    items = relationship("QuoteItem", back_populates="quote", cascade="all, delete-orphan",
                         order_by="QuoteItem.position")

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    __table_args__ = (
        UniqueConstraint('quote_number', 'tenant_id', name='uq_quote_number'),
        Index('ix_quotes_tenant_id', 'tenant_id'),
    )


class QuoteItem(Base):
    """Quote Line Item"""
    __tablename__ = 'quote_items'

    id = Column(Integer, primary_key=True)
    position = Column(Integer, default=0)
    product_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(15, 4), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount = Column(Numeric(5, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    quote_id = Column(Integer, ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    quote = relationship("Quote", back_populates="items")


# ==================== ORDERS ====================

class Order(Base):
    """Sales order"""
    __tablename__ = 'orders'

    id = Column(Integer, primary_key=True)
    order_number = Column(String(50), nullable=False)
    status = Column(String(20), default="pending")
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    subtotal = Column(Numeric(15, 2), default=Decimal("0.00"))
    tax = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    invoiced_amount = Column(Numeric(15, 2), default=Decimal("0.00"))  # Sum of invoice_orders rows
    remaining_amount = Column(Numeric(15, 2), default=Decimal("0.00"))
    notes = Column(Text, nullable=True)
    quote_id = Column(Integer, ForeignKey('quotes.id', ondelete='SET NULL'), nullable=True)
    company_id = Column(Integer, ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_by = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    company = relationship("Company")
    quote = relationship("Quote")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.position")
    allocations = relationship("InvoiceOrderAllocation", back_populates="order", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    __table_args__ = (
        UniqueConstraint('order_number', 'tenant_id', name='uq_order_number'),
        Index('ix_orders_tenant_id', 'tenant_id'),
    )


class OrderItem(Base):
    """Order Line Item"""
    __tablename__ = 'order_items'

    id = Column(Integer, primary_key=True)
    position = Column(Integer, default=0)
    product_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(15, 4), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount = Column(Numeric(5, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    order_id = Column(Integer, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    order = relationship("Order", back_populates="items")


# ==================== INVOICES ====================

class Invoice(Base):
    """Sales invoice"""
    __tablename__ = 'invoices'

    id = Column(Integer, primary_key=True)
    invoice_number = Column(String(50), nullable=False)
    status = Column(String(20), default="draft")
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    subtotal = Column(Numeric(15, 2), default=Decimal("0.00"))
    tax = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    paid_amount = Column(Numeric(15, 2), default=Decimal("0.00"))  # Sum of completed payments
    notes = Column(Text, nullable=True)
    quote_id = Column(Integer, ForeignKey('quotes.id', ondelete='SET NULL'), nullable=True)
    company_id = Column(Integer, ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_by = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    company = relationship("Company")
    quote = relationship("Quote")
    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan",
                         order_by="InvoiceItem.position")
    payments = relationship("Payment", back_populates="invoice", cascade="all, delete-orphan")
    allocations = relationship("InvoiceOrderAllocation", back_populates="invoice", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    __table_args__ = (
        UniqueConstraint('invoice_number', 'tenant_id', name='uq_invoice_number'),
        CheckConstraint('paid_amount <= total', name='ck_invoice_paid_le_total'),
        Index('ix_invoices_tenant_id', 'tenant_id'),
    )


class InvoiceItem(Base):
    """Invoice Line Item"""
    __tablename__ = 'invoice_items'

    id = Column(Integer, primary_key=True)
    position = Column(Integer, default=0)
    product_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(15, 4), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount = Column(Numeric(5, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    invoice = relationship("Invoice", back_populates="items")


class InvoiceOrderAllocation(Base):
    """Bridge between invoices and the orders they bill, with the amount billed"""
    __tablename__ = 'invoice_orders'

    id = Column(Integer, primary_key=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    order_id = Column(Integer, ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    amount_allocated = Column(Numeric(15, 2), nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    invoice = relationship("Invoice", back_populates="allocations")
    order = relationship("Order", back_populates="allocations")

    __table_args__ = (
        UniqueConstraint('invoice_id', 'order_id', name='uq_invoice_order'),
        CheckConstraint('amount_allocated > 0', name='ck_invoice_order_amount_positive'),
        Index('ix_invoice_orders_tenant_id', 'tenant_id'),
    )


class Payment(Base):
    """Payment received against an invoice"""
    __tablename__ = 'payments'

    id = Column(Integer, primary_key=True)
    payment_number = Column(String(50), nullable=False)
    payment_date = Column(Date, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    payment_method = Column(String(50), default=PaymentMethod.BANK_TRANSFER.value)
    status = Column(String(20), default=PaymentStatus.COMPLETED.value)
    reference = Column(String(100), nullable=True)
    transaction_id = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    recorded_by = Column(Integer, nullable=True)
    refunded_at = Column(DateTime, nullable=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    invoice = relationship("Invoice", back_populates="payments")

    __table_args__ = (
        UniqueConstraint('payment_number', 'tenant_id', name='uq_payment_number'),
        CheckConstraint('amount > 0', name='ck_payment_amount_positive'),
        Index('ix_payments_invoice_id', 'invoice_id'),
    )


# ==================== DELIVERY NOTES ====================

class DeliveryNote(Base):
    """Delivery note for goods shipped to a company"""
    __tablename__ = 'delivery_notes'

    id = Column(Integer, primary_key=True)
    delivery_number = Column(String(50), nullable=False)
    status = Column(String(20), default="pending")
    shipping_address = Column(Text, nullable=True)
    carrier = Column(String(100), nullable=True)
    tracking_number = Column(String(100), nullable=True)
    ship_date = Column(Date, nullable=True)
    delivery_date = Column(Date, nullable=True)
    tax_rate = Column(Numeric(5, 2), default=Decimal("0.00"))
    subtotal = Column(Numeric(15, 2), default=Decimal("0.00"))
    tax = Column(Numeric(15, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    notes = Column(Text, nullable=True)
    invoice_id = Column(Integer, ForeignKey('invoices.id', ondelete='SET NULL'), nullable=True)
    company_id = Column(Integer, ForeignKey('companies.id', ondelete='CASCADE'), nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_by = Column(Integer, nullable=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    company = relationship("Company")
    invoice = relationship("Invoice")
    items = relationship("DeliveryNoteItem", back_populates="delivery_note", cascade="all, delete-orphan",
                         order_by="DeliveryNoteItem.position")

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    __table_args__ = (
        UniqueConstraint('delivery_number', 'tenant_id', name='uq_delivery_number'),
        Index('ix_delivery_notes_tenant_id', 'tenant_id'),
    )


class DeliveryNoteItem(Base):
    """Delivery Note Line Item"""
    __tablename__ = 'delivery_note_items'

    id = Column(Integer, primary_key=True)
    position = Column(Integer, default=0)
    product_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(15, 4), nullable=False)
    unit_price = Column(Numeric(15, 2), nullable=False)
    discount = Column(Numeric(5, 2), default=Decimal("0.00"))
    total = Column(Numeric(15, 2), default=Decimal("0.00"))
    delivery_note_id = Column(Integer, ForeignKey('delivery_notes.id', ondelete='CASCADE'), nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    delivery_note = relationship("DeliveryNote", back_populates="items")


# ==================== EVENT STORE ====================

class StoredEvent(Base):
    """Append-only log of domain events; the primary key doubles as the global sequence"""
    __tablename__ = 'event_store'

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(36), nullable=False, unique=True)
    aggregate_type = Column(String(50), nullable=False)
    aggregate_id = Column(Integer, nullable=False)
    aggregate_version = Column(Integer, nullable=False)
    event_type = Column(String(100), nullable=False)
    event_data = Column(JSON, nullable=False)
    user_id = Column(Integer, nullable=True)
    occurred_at = Column(DateTime, nullable=False)
    tenant_id = Column(Integer, ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    sequence_number = synonym("id")

    __table_args__ = (
        UniqueConstraint('aggregate_type', 'aggregate_id', 'aggregate_version', name='uq_event_stream_version'),
        CheckConstraint('aggregate_version > 0', name='ck_event_version_positive'),
        Index('ix_event_store_tenant_aggregate', 'tenant_id', 'aggregate_type', 'aggregate_id'),
        Index('ix_event_store_event_type', 'tenant_id', 'event_type'),
    )
