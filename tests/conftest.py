import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from storefront.api.deps import get_gateway, get_mailer
from storefront.core_settings import Settings
from storefront.domain.models import Base, Product, ProductVariant, SiteSetting
from storefront.infrastructure.db import SessionLocal, configure_engine
from storefront.infrastructure.email import ResendMailer
from storefront.infrastructure.gateway import RazorpayGateway
from storefront.main import create_app

KEY_ID = "rzp_test_1234567890"
KEY_SECRET = "test_key_secret"
ADMIN_PASSWORD = "s3cret-admin"

ADDRESS = {
    "full_name": "Asha Verma",
    "email": "asha@example.com",
    "phone": "9876543210",
    "address_line1": "12 MG Road, Indiranagar",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560038",
}


def make_settings(**overrides) -> Settings:
    values = dict(
        ENVIRONMENT="test",
        RAZORPAY_KEY_ID=KEY_ID,
        RAZORPAY_KEY_SECRET=KEY_SECRET,
        DATABASE_URL="sqlite://",
        RATE_LIMIT_ENABLED=False,
        RESEND_API_KEY="re_test_key",
        ADMIN_EMAIL="owner@example.com",
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        JWT_SECRET="test-jwt-secret",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def checkout_payload(items, payment_method="cod", **extra) -> Dict[str, Any]:
    payload = {"items": items, "shipping_address": dict(ADDRESS), "payment_method": payment_method}
    payload.update(extra)
    return payload


class FakeRazorpay:
    """In-memory stand-in for the Razorpay Orders API."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.error: Optional[tuple] = None

    def fail_with(self, status_code: int, description: str, code: str = "BAD_REQUEST_ERROR"):
        self.error = (status_code, {"error": {"code": code, "description": description}})

    def created_orders(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]

    def add_order(self, receipt: str, amount: int, currency: str = "INR") -> str:
        """Register a gateway order opened outside the API under test."""
        order_id = f"order_{len(self.orders) + 1:04d}"
        self.orders[order_id] = {
            "id": order_id,
            "entity": "order",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": {},
            "status": "created",
            "created_at": 1760000000,
        }
        return order_id

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error:
            status_code, body = self.error
            return httpx.Response(status_code, json=body)

        if request.method == "POST" and request.url.path == "/v1/orders":
            body = json.loads(request.content)
            order_id = f"order_{len(self.orders) + 1:04d}"
            order = {
                "id": order_id,
                "entity": "order",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "notes": body["notes"],
                "status": "created",
                "created_at": 1760000000,
            }
            self.orders[order_id] = order
            return httpx.Response(200, json=order)

        if request.method == "GET" and request.url.path.startswith("/v1/orders/"):
            order = self.orders.get(request.url.path.rsplit("/", 1)[-1])
            if order is None:
                return httpx.Response(
                    400, json={"error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"}}
                )
            return httpx.Response(200, json=order)

        return httpx.Response(404, json={"error": {"description": "Not found"}})


class FakeResend:
    def __init__(self):
        self.messages: List[Dict[str, Any]] = []
        self.fail_for: Optional[str] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        message = json.loads(request.content)
        if self.fail_for and self.fail_for in message["to"]:
            return httpx.Response(500, json={"message": "internal error"})
        self.messages.append(message)
        return httpx.Response(200, json={"id": f"email_{len(self.messages)}"})

    def sent_to(self, address: str) -> List[Dict[str, Any]]:
        return [m for m in self.messages if address in m["to"]]


@pytest.fixture
def razorpay():
    return FakeRazorpay()


@pytest.fixture
def resend():
    return FakeResend()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def app(settings, razorpay, resend):
    app = create_app(settings)
    app.dependency_overrides[get_gateway] = lambda: RazorpayGateway.from_settings(
        settings, transport=httpx.MockTransport(razorpay)
    )
    app.dependency_overrides[get_mailer] = lambda: ResendMailer.from_settings(
        settings, transport=httpx.MockTransport(resend)
    )
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
    configure_engine("")


@pytest.fixture
def db(client):
    """Session on the same in-memory database the app uses."""
    session = SessionLocal()
    yield session
    session.close()


def put_site_setting(session: Session, key: str, value: dict) -> None:
    row = session.query(SiteSetting).filter(SiteSetting.key == key).first()
    if row is None:
        session.add(SiteSetting(key=key, value=value))
    else:
        row.value = value
    session.commit()


@pytest.fixture
def catalog(db):
    """Two products, one with a variant; tax 10%, shipping 99 below 1500."""
    oud = Product(name="Oud Royale", slug="oud-royale", sku="OUD-100", price=Decimal("1000.00"),
                  images=["https://cdn.example.com/oud.jpg"], is_visible=True)
    rose = Product(name="Rose Mist", slug="rose-mist", sku="ROSE-50", price=Decimal("600.00"),
                   sale_price=Decimal("500.00"), is_visible=True)
    hidden = Product(name="Retired Blend", slug="retired-blend", price=Decimal("300.00"), is_visible=False)
    db.add_all([oud, rose, hidden])
    db.flush()
    oud_travel = ProductVariant(product_id=oud.id, size="10ml", sku="OUD-10", price=Decimal("250.00"), is_visible=True)
    db.add(oud_travel)
    db.commit()

    put_site_setting(db, "tax", {"rate": 10})
    put_site_setting(db, "shipping", {"base_price": 99, "free_threshold": 1500})
    return {"oud": oud.id, "rose": rose.id, "hidden": hidden.id, "oud_travel": oud_travel.id}


@pytest.fixture
def session():
    """Standalone session for repository tests, no application involved."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    db = Session(engine, expire_on_commit=False)
    yield db
    db.close()
    engine.dispose()
