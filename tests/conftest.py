"""Test configuration."""
import hashlib
import hmac
import json
import os
import time
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace
from typing import Any
from uuid import uuid4

import pytest
from alembic import command
from alembic.config import Config
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session

# --- Default environment, set before the app reads its settings
os.environ.setdefault("DATABASE_URL", "sqlite:///./minerpay_test.db")
os.environ.setdefault("MINERPAY_ENV", "test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

from minerpay.db import get_db  # noqa: E402
from minerpay.main import app  # noqa: E402
from minerpay.models import Rental, User  # noqa: E402
from minerpay.services import pricing, rentals  # noqa: E402

DB_PATH = Path("./minerpay_test.db")
WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]


def _run_migrations() -> None:
    cfg = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    cfg.set_main_option("sqlalchemy.url", os.environ["DATABASE_URL"])
    command.upgrade(cfg, "head")


# --- (1) Fresh database file per session, schema built by Alembic only
if DB_PATH.exists():
    DB_PATH.unlink()

engine = create_engine(
    os.environ["DATABASE_URL"],
    connect_args={"check_same_thread": False},
    future=True,
)


# pysqlite defers BEGIN on its own, which breaks SAVEPOINT; take over transaction control.
@event.listens_for(engine, "connect")
def _disable_pysqlite_begin(dbapi_connection, connection_record) -> None:
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


_run_migrations()


@pytest.fixture
def db_session() -> Iterator[Session]:
    """Session whose commits and rollbacks stay inside one outer transaction."""

    connection = engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def override_db_dependency(db_session: Session) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    def _factory(name: str = "user", *, is_paid_member: bool = False) -> User:
        user = User(
            email=f"{name}-{uuid4().hex[:8]}@example.com",
            display_name=name.title(),
            is_paid_member=is_paid_member,
        )
        db_session.add(user)
        db_session.flush()
        return user

    return _factory


@pytest.fixture
def make_rental(db_session: Session, make_user: Callable[..., User]) -> Callable[..., Rental]:
    """Create a pending rental with its split captured through the service."""

    def _factory(
        *,
        daily_rate: str = "25.00",
        days: int = 2,
        fee_rate: str = "0.035",
        flat_fee_per_day: str | None = None,
        owner: User | None = None,
        renter: User | None = None,
    ) -> Rental:
        owner = owner or make_user("owner")
        renter = renter or make_user("renter")
        start = date(2026, 11, 1)
        return rentals.create_rental(
            db_session,
            machine_id=42,
            renter_id=renter.id,
            owner_id=owner.id,
            start_date=start,
            end_date=start + timedelta(days=days - 1),
            daily_rate=Decimal(daily_rate),
            fee_rate=Decimal(fee_rate),
            flat_fee_per_day=Decimal(flat_fee_per_day) if flat_fee_per_day is not None else None,
        )

    return _factory


class FakeGateway:
    """Records every call; ``fail[operation]`` makes that call raise."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail: dict[str, Exception] = {}
        self.hooks: dict[str, Callable[..., None]] = {}
        # Stripe-side status per intent id, as seen by retrieve.
        self.intent_status: dict[str, str] = {}
        self._counter = 0

    def __call__(self, settings) -> "FakeGateway":
        self.settings = settings
        return self

    def _record(self, operation: str, **kwargs: Any) -> None:
        self.calls.append((operation, kwargs))
        if operation in self.hooks:
            self.hooks[operation](**kwargs)
        if operation in self.fail:
            raise self.fail[operation]

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter:04d}"

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def find_or_create_customer(self, email, *, metadata):
        self._record("customer", email=email, metadata=metadata)
        return SimpleNamespace(id="cus_test", email=email)

    def create_checkout_session(self, order, *, line_items, customer_id, success_url, cancel_url):
        self._record("checkout_session", order_id=order.id, line_items=line_items, customer_id=customer_id)
        session_id = self._next_id("cs_test")
        return SimpleNamespace(id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    def create_rental_payment_intent(self, rental, *, amount, currency, metadata, receipt_email=None, replaces=None):
        self._record(
            "payment_intent", rental_id=rental.id, amount=amount, currency=currency, metadata=metadata, replaces=replaces
        )
        intent_id = self._next_id(f"pi_rental_{rental.id}") if replaces else f"pi_rental_{rental.id}"
        self.intent_status[intent_id] = "requires_payment_method"
        return SimpleNamespace(id=intent_id, client_secret=f"{intent_id}_secret", status="requires_payment_method")

    def retrieve_payment_intent(self, payment_intent_id):
        self._record("payment_intent_retrieve", payment_intent_id=payment_intent_id)
        status = self.intent_status.get(payment_intent_id, "requires_payment_method")
        return SimpleNamespace(id=payment_intent_id, client_secret=f"{payment_intent_id}_secret", status=status)

    def create_payee_account(self, *, owner_id, email, display_name, country):
        self._record("payee_account", owner_id=owner_id, email=email, country=country)
        # Stripe's idempotency key makes repeated creates for one owner return one account.
        return SimpleNamespace(
            id=f"acct_owner_{owner_id}",
            charges_enabled=False,
            payouts_enabled=False,
            details_submitted=False,
        )

    def create_onboarding_link(self, account_id, *, refresh_url, return_url):
        self._record("onboarding_link", account_id=account_id, refresh_url=refresh_url, return_url=return_url)
        return SimpleNamespace(url=f"https://connect.stripe.test/setup/{account_id}", expires_at=int(time.time()) + 300)


@pytest.fixture
def fake_gateway(monkeypatch) -> FakeGateway:
    gateway = FakeGateway()
    monkeypatch.setattr("minerpay.services.checkout.StripeGateway", gateway)
    monkeypatch.setattr("minerpay.services.payees.StripeGateway", gateway)
    return gateway


def sign_payload(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a ``Stripe-Signature`` header value for ``body``."""

    timestamp = timestamp if timestamp is not None else int(time.time())
    signed = f"{timestamp}.{body.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: dict[str, Any], event_id: str | None = None) -> dict[str, Any]:
    return {
        "id": event_id or f"evt_{uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


@pytest.fixture
def post_event(client: AsyncClient):
    """Send a signed webhook; pass ``signature`` to override the header."""

    async def _post(event: dict[str, Any], *, signature: str | None = None):
        body = json.dumps(event).encode("utf-8")
        header = signature if signature is not None else sign_payload(body)
        return await client.post(
            "/webhooks",
            content=body,
            headers={"Content-Type": "application/json", "Stripe-Signature": header},
        )

    return _post


def money(value: str) -> Decimal:
    return pricing.to_decimal(value)
