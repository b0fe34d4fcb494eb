"""Pytest configuration and shared fixtures."""

import json
import os

os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import boxoffice.models  # noqa: F401
from boxoffice.database import Base, get_db
from boxoffice.errors import ErrorCode, GatewayError
from boxoffice.main import app
from boxoffice.middleware.security import limiter
from boxoffice.models.discount import Discount, DiscountKind
from boxoffice.models.event import Event
from boxoffice.models.reservation import Reservation
from boxoffice.schemas.identity import CurrentUser
from boxoffice.schemas.reservation import Attendee
from boxoffice.services.auth import AuthService
from boxoffice.services.gateway import GatewayEvent, GatewaySession, PaymentGateway, get_gateway

VALID_SIGNATURE = "t=1,v1=fake-signature"


class FakeGateway(PaymentGateway):
    """In-memory stand-in for the payment provider."""

    def __init__(self):
        self.sessions: dict[str, GatewaySession] = {}
        self.created: list[dict] = []
        self.fail_create = False
        self.fail_retrieve = False
        self._ids = count(1)

    def create_checkout_session(self, line_items, success_url, cancel_url, metadata,
                                customer_email=None, discount_amount=0, discount_label=None):
        if self.fail_create:
            raise GatewayError(ErrorCode.GATEWAY_UNAVAILABLE, "Could not start checkout, please try again")

        session_id = f"cs_test_{next(self._ids)}"
        session = GatewaySession(
            id=session_id,
            url=f"https://checkout.example.test/{session_id}",
            status="open",
            payment_status="unpaid",
            metadata=dict(metadata)
        )
        self.sessions[session_id] = session
        self.created.append({
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "customer_email": customer_email,
            "discount_amount": discount_amount,
            "discount_label": discount_label,
        })
        return session

    def retrieve_session(self, session_id):
        if self.fail_retrieve or session_id not in self.sessions:
            raise GatewayError(ErrorCode.GATEWAY_UNAVAILABLE, "Could not check payment status, please try again")
        return self.sessions[session_id]

    def construct_event(self, payload, signature):
        if signature != VALID_SIGNATURE:
            raise GatewayError(ErrorCode.SIGNATURE_INVALID, "Invalid signature")
        event = json.loads(payload)
        return GatewayEvent(
            type=event["type"],
            session=GatewaySession.from_stripe(event["data"]["object"])
        )

    def mark_paid(self, session_id, payment_intent="pi_test_123"):
        self.sessions[session_id] = replace(
            self.sessions[session_id],
            status="complete",
            payment_status="paid",
            payment_intent=payment_intent
        )

    def callback_payload(self, session_id, event_type="checkout.session.completed") -> bytes:
        session = self.sessions[session_id]
        return json.dumps({
            "type": event_type,
            "data": {"object": {
                "object": "checkout.session",
                "id": session.id,
                "url": session.url,
                "status": session.status,
                "payment_status": session.payment_status,
                "payment_intent": session.payment_intent,
                "metadata": session.metadata,
            }},
        }).encode()


@pytest.fixture
def engine(tmp_path):
    # File backed so worker threads each get their own connection
    engine = create_engine(
        f"sqlite:///{tmp_path / 'boxoffice-test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def buyer() -> CurrentUser:
    return CurrentUser(id="buyer-1", email="ada@example.com", name="Ada")


@pytest.fixture
def other_buyer() -> CurrentUser:
    return CurrentUser(id="buyer-2", email="grace@example.com", name="Grace")


@pytest.fixture
def admin() -> CurrentUser:
    return CurrentUser(id="admin-1", email="ops@example.com", role="admin")


@pytest.fixture
def make_event(db):
    def _make(capacity=10, price="50.00", active=True, occurs_in=timedelta(days=30),
              reserved=0, title="Midnight Concert"):
        event = Event(
            title=title,
            ticket_price=Decimal(price),
            capacity=capacity,
            reserved=reserved,
            active=active,
            occurs_at=datetime.utcnow() + occurs_in
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        return event
    return _make


@pytest.fixture
def make_discount(db):
    def _make(code="SAVE10", kind=DiscountKind.PERCENTAGE, value="10", enabled=True,
              valid_from=None, valid_until=None):
        discount = Discount(
            code=code,
            kind=kind,
            value=Decimal(value),
            enabled=enabled,
            valid_from=valid_from,
            valid_until=valid_until
        )
        db.add(discount)
        db.commit()
        db.refresh(discount)
        return discount
    return _make


def attendees(quantity: int, last_name: str = "Lovelace") -> list[Attendee]:
    return [Attendee(first_name=f"Guest{i}", last_name=last_name) for i in range(quantity)]


def reload_event(db, event_id: int) -> Event:
    return db.query(Event).filter(Event.id == event_id).populate_existing().one()


def force_overdue(db, reservation_id: int) -> None:
    db.query(Reservation).filter(Reservation.id == reservation_id).update(
        {Reservation.expires_at: datetime.utcnow() - timedelta(minutes=1)},
        synchronize_session=False
    )
    db.commit()


def auth_headers(user: CurrentUser) -> dict:
    return {"Authorization": f"Bearer {AuthService.create_token_for(user)}"}


@pytest.fixture
def client(session_factory, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()
