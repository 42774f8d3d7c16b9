import os
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.db import Base
from app.models.billing import Bill, BillStatus
from app.models.customer import Customer
from app.schemas.reconciliation import NormalizedPayment


@pytest.fixture()
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        # Use PostgreSQL for tests (exercises row locking for real)
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex}@example.com"


def _unique_phone() -> str:
    return f"+92300{uuid.uuid4().int % 10**7:07d}"


@pytest.fixture()
def isp_id():
    return uuid.uuid4()


@pytest.fixture()
def make_customer(db_session, isp_id):
    def _make(email: str | None = None, phone: str | None = None, tenant_id=None):
        customer = Customer(
            name="Test Customer",
            email=email if email is not None else _unique_email(),
            phone=phone if phone is not None else _unique_phone(),
            isp_id=tenant_id or isp_id,
        )
        db_session.add(customer)
        db_session.commit()
        db_session.refresh(customer)
        return customer

    return _make


@pytest.fixture()
def customer(make_customer):
    return make_customer()


@pytest.fixture()
def make_bill(db_session, customer):
    def _make(
        total: str,
        paid: str = "0.00",
        status: BillStatus = BillStatus.pending,
        due_date: datetime | None = None,
        owner: Customer | None = None,
    ):
        owner = owner or customer
        bill = Bill(
            bill_number=f"BILL-{uuid.uuid4().hex[:10].upper()}",
            customer_id=owner.id,
            isp_id=owner.isp_id,
            amount=Decimal(total),
            total_amount=Decimal(total),
            paid_amount=Decimal(paid),
            status=status,
            due_date=due_date or datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        db_session.add(bill)
        db_session.commit()
        db_session.refresh(bill)
        return bill

    return _make


@pytest.fixture()
def make_payment(customer):
    def _make(amount: str, transaction_id: str | None = None, **overrides):
        data = {
            "transaction_id": transaction_id or f"txn_{uuid.uuid4().hex[:12]}",
            "customer_email": customer.email,
            "amount": Decimal(amount),
            "payment_date": datetime(2024, 1, 10, tzinfo=timezone.utc),
        }
        data.update(overrides)
        return NormalizedPayment(**data)

    return _make
