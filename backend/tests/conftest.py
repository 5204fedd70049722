"""
Shared fixtures: an in-memory database per test, two tenants, a company,
document factories and an authenticated API client.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from crm_sales.core.database import Base, get_db
from crm_sales.core.security import create_access_token
from crm_sales.core.tenancy import TenantContext
from crm_sales.main import app
from crm_sales.models import Company, Tenant
from crm_sales.schemas import InvoiceCreate, LineItemCreate, OrderCreate, QuoteCreate
from crm_sales.services.invoice_service import InvoiceService
from crm_sales.services.notification_service import Notifier
from crm_sales.services.order_service import OrderService
from crm_sales.services.quote_service import QuoteService

# 2 x 50.00 + 1 x 10.00 less 10% = 109.00 subtotal; 10% tax = 10.90; total 119.90
STANDARD_ITEMS = [
    {"product_name": "Widget", "quantity": "2", "unit_price": "50.00"},
    {"product_name": "Gadget", "description": "Blue", "quantity": "1", "unit_price": "10.00", "discount": "10"},
]


def line_items(items=None):
    return [LineItemCreate(**item) for item in (STANDARD_ITEMS if items is None else items)]


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def notify(self, template_key, payload):
        self.sent.append((template_key, payload))

    @property
    def templates(self):
        return [template_key for template_key, _ in self.sent]


class FailingNotifier(Notifier):
    def notify(self, template_key, payload):
        raise RuntimeError("mail server unavailable")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def tenant(db):
    tenant = Tenant(name="Acme Ltd", slug="acme")
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def other_tenant(db):
    tenant = Tenant(name="Globex", slug="globex")
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def ctx(tenant):
    return TenantContext(tenant_id=tenant.id, user_id=7)


@pytest.fixture
def other_ctx(other_tenant):
    return TenantContext(tenant_id=other_tenant.id, user_id=8)


@pytest.fixture
def company(db, tenant):
    company = Company(name="Initech", email="billing@initech.com", tenant_id=tenant.id)
    db.add(company)
    db.commit()
    return company


@pytest.fixture
def second_company(db, tenant):
    company = Company(name="Umbrella", tenant_id=tenant.id)
    db.add(company)
    db.commit()
    return company


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_quote(db, ctx, company):
    def factory(items=None, tax_rate=Decimal("10"), **fields):
        fields.setdefault("company_id", company.id)
        return QuoteService(db, ctx).create(
            QuoteCreate(items=line_items(items), tax_rate=tax_rate, **fields)
        )
    return factory


@pytest.fixture
def make_order(db, ctx, company):
    def factory(items=None, tax_rate=Decimal("10"), **fields):
        fields.setdefault("company_id", company.id)
        return OrderService(db, ctx).create(
            OrderCreate(items=line_items(items), tax_rate=tax_rate, **fields)
        )
    return factory


@pytest.fixture
def make_invoice(db, ctx, company):
    def factory(items=None, tax_rate=Decimal("10"), send=False, notifier=None, **fields):
        fields.setdefault("company_id", company.id)
        service = InvoiceService(db, ctx, notifier)
        invoice = service.create(InvoiceCreate(items=line_items(items), tax_rate=tax_rate, **fields))
        if send:
            invoice = service.send(invoice.id)
        return invoice
    return factory


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(tenant):
    token = create_access_token({"sub": "7", "tenant_id": tenant.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers(other_tenant):
    token = create_access_token({"sub": "8", "tenant_id": other_tenant.id})
    return {"Authorization": f"Bearer {token}"}
