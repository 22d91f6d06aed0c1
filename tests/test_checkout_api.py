import re

import pytest

from storefront.domain.models import ActivityLog, Coupon, Order, OrderItem

from .conftest import ADMIN_PASSWORD, checkout_payload, make_settings

ORDER_NUMBER_RE = re.compile(r"MYS-\d{8}-\d{4}")


class TestCashOnDelivery:
    """Checkout without the payment gateway"""

    def test_cod_order_is_created_priced_and_confirmed(self, client, catalog, db, razorpay, resend):
        resp = client.post("/api/orders/create", json=checkout_payload(
            [{"product_id": catalog["oud"], "quantity": 2}],
            total=2200,
        ))

        assert resp.status_code == 201
        data = resp.json()
        assert data["success"] is True
        assert ORDER_NUMBER_RE.fullmatch(data["order_number"])
        assert data["total"] == 2200.0
        assert data["payment_status"] == "pending"
        assert data["message"] == "Order created successfully"

        order = db.query(Order).filter_by(order_number=data["order_number"]).one()
        assert order.id == data["order_id"]
        assert order.status == "pending"
        assert (float(order.subtotal), float(order.shipping_amount), float(order.tax_amount)) == (2000.0, 0.0, 200.0)
        assert order.guest_email == "asha@example.com"
        assert order.shipping_address["postal_code"] == "560038"

        item = db.query(OrderItem).filter_by(order_id=order.id).one()
        assert (item.product_name, item.quantity, float(item.unit_price), float(item.total_price)) == (
            "Oud Royale", 2, 1000.0, 2000.0
        )
        assert item.product_image == "https://cdn.example.com/oud.jpg"

        assert razorpay.requests == []
        assert len(resend.sent_to("asha@example.com")) == 1
        assert len(resend.sent_to("owner@example.com")) == 1
        assert db.query(ActivityLog).filter_by(event_type="order_created", entity_id=order.order_number).count() == 1

    def test_small_order_pays_shipping_and_uses_sale_and_variant_prices(self, client, catalog):
        resp = client.post("/api/orders/create", json=checkout_payload([
            {"product_id": catalog["rose"], "quantity": 1},
            {"product_id": catalog["oud"], "variant_id": catalog["oud_travel"], "quantity": 2},
        ]))
        assert resp.status_code == 201
        # 500 + 2 * 250 = 1000, below the free shipping threshold
        assert resp.json()["total"] == 1000 + 99 + 100

    def test_order_can_be_read_back(self, client, catalog):
        number = client.post("/api/orders/create", json=checkout_payload(
            [{"product_id": catalog["rose"], "quantity": 3}]
        )).json()["order_number"]

        resp = client.get(f"/api/orders/{number}")
        assert resp.status_code == 200
        order = resp.json()["order"]
        assert order["order_number"] == number
        assert order["payment_method"] == "cod"
        assert order["total"] == 1650.0
        assert [(i["product_name"], i["quantity"], i["unit_price"]) for i in order["items"]] == [("Rose Mist", 3, 500.0)]

    def test_lookup_hides_contact_details_from_anonymous_callers(self, client, catalog):
        number = client.post("/api/orders/create", json=checkout_payload(
            [{"product_id": catalog["rose"], "quantity": 1}]
        )).json()["order_number"]

        public = client.get(f"/api/orders/{number}").json()["order"]
        assert public["guest_email"] == "a***@example.com"
        assert public["shipping_address"] == {
            "full_name": "Asha Verma", "city": "Bengaluru", "state": "Karnataka",
            "postal_code": "560038", "country": "India",
        }

        token = client.post("/api/auth/token", json={"username": "admin", "password": ADMIN_PASSWORD}).json()["access_token"]
        full = client.get(f"/api/orders/{number}", headers={"Authorization": f"Bearer {token}"}).json()["order"]
        assert full["guest_email"] == "asha@example.com"
        assert full["shipping_address"]["phone"] == "9876543210"
        assert full["shipping_address"]["address_line1"] == "12 MG Road, Indiranagar"

    def test_unknown_order(self, client):
        resp = client.get("/api/orders/MYS-20000101-0000")
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "Order not found"}

    def test_coupon_discount_is_applied_and_counted(self, client, catalog, db):
        db.add(Coupon(code="WELCOME100", discount_type="fixed", discount_value=100, used_count=0, is_active=True))
        db.commit()

        resp = client.post("/api/orders/create", json=checkout_payload(
            [{"product_id": catalog["oud"], "quantity": 2}],
            coupon_code="welcome100",
        ))
        assert resp.status_code == 201
        assert resp.json()["total"] == 2000 - 100 + 200

        order = db.query(Order).filter_by(order_number=resp.json()["order_number"]).one()
        coupon = db.query(Coupon).filter_by(code="WELCOME100").one()
        db.refresh(coupon)
        assert order.coupon_id == coupon.id
        assert coupon.used_count == 1

    def test_repeated_submission_returns_the_same_order(self, client, catalog, db, resend):
        payload = checkout_payload([{"product_id": catalog["oud"], "quantity": 2}])
        headers = {"Idempotency-Key": "checkout-7f3a"}

        first = client.post("/api/orders/create", json=payload, headers=headers)
        second = client.post("/api/orders/create", json=payload, headers=headers)

        assert first.status_code == second.status_code == 201
        assert first.json()["order_number"] == second.json()["order_number"]
        assert db.query(Order).count() == 1
        assert len(resend.sent_to("asha@example.com")) == 1


class TestCheckoutValidation:
    """Rejected before anything is written"""

    @pytest.mark.parametrize("field, value, message", [
        ("phone", "12345", "Invalid Indian phone number"),
        ("phone", "5876543210", "Invalid Indian phone number"),
        ("postal_code", "56003", "Invalid postal code"),
        ("full_name", "A", "Name must be 2-100 characters"),
        ("address_line1", "MG", "Address must be 5-200 characters"),
        ("city", "  ", "City is required"),
        ("email", "not-an-email", "Invalid email address"),
    ])
    def test_address_fields(self, client, catalog, db, field, value, message):
        payload = checkout_payload([{"product_id": catalog["oud"], "quantity": 1}])
        payload["shipping_address"][field] = value

        resp = client.post("/api/orders/create", json=payload)
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "Validation failed"
        assert {"field": f"shipping_address.{field}", "message": message} in body["details"]
        assert db.query(Order).count() == 0

    def test_empty_cart(self, client):
        resp = client.post("/api/orders/create", json=checkout_payload([]))
        assert resp.status_code == 400
        assert {"field": "items", "message": "At least one item is required"} in resp.json()["details"]

    def test_unknown_payment_method(self, client, catalog):
        resp = client.post("/api/orders/create", json=checkout_payload(
            [{"product_id": catalog["oud"], "quantity": 1}], payment_method="payu"
        ))
        assert resp.status_code == 400
        assert {"field": "payment_method", "message": "Invalid payment method"} in resp.json()["details"]

    def test_zero_quantity(self, client, catalog):
        resp = client.post("/api/orders/create", json=checkout_payload([{"product_id": catalog["oud"], "quantity": 0}]))
        assert resp.status_code == 400
        assert {"field": "items.0.quantity", "message": "Quantity must be at least 1"} in resp.json()["details"]

    def test_hidden_or_unknown_product(self, client, catalog, db):
        for product_id in (catalog["hidden"], 999):
            resp = client.post("/api/orders/create", json=checkout_payload([{"product_id": product_id, "quantity": 1}]))
            assert resp.status_code == 400
            assert resp.json()["details"] == [{"field": "items.0.product_id", "message": "Product is not available"}]
        assert db.query(Order).count() == 0

    def test_displayed_total_must_match(self, client, catalog, db):
        resp = client.post("/api/orders/create", json=checkout_payload(
            [{"product_id": catalog["oud"], "quantity": 2}], total=2000
        ))
        assert resp.status_code == 400
        assert resp.json()["error"] == "Order total has changed, please review your cart"
        assert db.query(Order).count() == 0

    def test_guest_checkout_needs_an_email(self, client, catalog):
        payload = checkout_payload([{"product_id": catalog["oud"], "quantity": 1}])
        del payload["shipping_address"]["email"]
        resp = client.post("/api/orders/create", json=payload)
        assert resp.status_code == 400
        assert resp.json()["details"] == [{"field": "guest_email", "message": "Email is required for guest checkout"}]

    def test_invalid_coupon(self, client, catalog):
        resp = client.post("/api/orders/create", json=checkout_payload(
            [{"product_id": catalog["oud"], "quantity": 1}], coupon_code="NOPE"
        ))
        assert resp.status_code == 400
        assert resp.json()["details"] == [{"field": "coupon_code", "message": "Invalid coupon code"}]


class TestWithoutDatastore:
    """DATABASE_URL unset: order numbers only"""

    @pytest.fixture
    def settings(self):
        return make_settings(DATABASE_URL="")

    def test_checkout_returns_number_only(self, client, razorpay, resend):
        resp = client.post("/api/orders/create", json=checkout_payload([{"product_id": 1, "quantity": 1}]))
        assert resp.status_code == 201
        data = resp.json()
        assert ORDER_NUMBER_RE.fullmatch(data["order_number"])
        assert data["order_id"] is None
        assert resend.messages == []

    def test_order_lookup_is_unavailable(self, client):
        resp = client.get("/api/orders/MYS-20261018-0001")
        assert resp.status_code == 503
        assert resp.json() == {"success": False, "error": "Database not configured"}

    def test_payment_cannot_start(self, client, razorpay):
        resp = client.post("/api/payment/create-order", json={"orderNumber": "MYS-20261018-0001", "amount": 500})
        assert resp.status_code == 503
        assert razorpay.requests == []


def test_failed_item_insert_still_returns_order_number(client, catalog, db, monkeypatch):
    from storefront.infrastructure.repository import OrderRepository

    def broken_item(order_id, item):
        return OrderItem(order_id=order_id, product_name=None, quantity=item.quantity,
                         unit_price=item.unit_price, total_price=item.total_price)

    monkeypatch.setattr(OrderRepository, "_build_item", staticmethod(broken_item))
    resp = client.post("/api/orders/create", json=checkout_payload([{"product_id": catalog["oud"], "quantity": 1}]))

    assert resp.status_code == 201
    number = resp.json()["order_number"]
    order = db.query(Order).filter_by(order_number=number).one()
    assert db.query(OrderItem).filter_by(order_id=order.id).count() == 0
    log = db.query(ActivityLog).filter_by(event_type="order_created", entity_id=number).one()
    assert log.details["items_persisted"] is False
