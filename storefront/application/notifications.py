"""Order confirmation emails (customer copy and admin alert).

Runs after the HTTP response has been sent, on its own session. Whatever
happens in here is logged and swallowed: a confirmed order stays confirmed
even when no email goes out.
"""

from dataclasses import dataclass
from decimal import Decimal
from html import escape
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core import get_logger
from storefront.core_settings import Settings
from storefront.domain.errors import NotificationFailure, OrderNotFoundError
from storefront.domain.models import Order
from storefront.infrastructure.db import SessionLocal, is_configured
from storefront.infrastructure.email import ResendMailer
from storefront.infrastructure.repository import OrderRepository

logger = get_logger(__name__)

CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$", "EUR": "€"}


@dataclass
class NotificationResult:
    customer_sent: bool = False
    admin_sent: bool = False


def format_amount(amount: Decimal, currency: str = "INR") -> str:
    return f"{CURRENCY_SYMBOLS.get(currency, currency + ' ')}{Decimal(amount):.2f}"


def customer_recipient(order: Order) -> Optional[str]:
    return order.guest_email or (order.shipping_address or {}).get("email")


def _address_html(address: dict) -> str:
    return (
        f"{escape(str(address.get('address_line1', '')))}<br>"
        f"{escape(str(address.get('city', '')))}, {escape(str(address.get('state', '')))} "
        f"{escape(str(address.get('postal_code', '')))}"
    )


def render_customer_email(order: Order, store_name: str) -> str:
    address = order.shipping_address or {}
    rows = "".join(
        "<tr>"
        f"<td style=\"padding: 10px; border-bottom: 1px solid #eee;\">{escape(item.product_name)}</td>"
        f"<td style=\"padding: 10px; border-bottom: 1px solid #eee; text-align: center;\">{item.quantity}</td>"
        f"<td style=\"padding: 10px; border-bottom: 1px solid #eee; text-align: right;\">"
        f"{format_amount(item.unit_price, order.currency)}</td>"
        "</tr>"
        for item in order.items
    )
    return f"""<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1>Order Confirmed!</h1>
    <p>Dear {escape(str(address.get('full_name', 'Customer')))},</p>
    <p>Thank you for your order! We're excited to prepare your items.</p>
    <p><strong>Order Number:</strong> {escape(order.order_number)}</p>
    <table style="width: 100%; border-collapse: collapse; margin: 20px 0;">
      <thead><tr><th>Item</th><th>Qty</th><th>Price</th></tr></thead>
      <tbody>{rows}</tbody>
    </table>
    <p style="font-size: 18px; font-weight: bold; text-align: right;">Total: {format_amount(order.total, order.currency)}</p>
    <p><strong>Shipping Address:</strong><br>{_address_html(address)}</p>
    <p>We'll send you a tracking number once your order ships.</p>
    <p style="font-size: 12px; color: #666;">{escape(store_name)}</p>
  </div>
</body>
</html>"""


def render_admin_email(order: Order, admin_orders_url: str) -> str:
    address = order.shipping_address or {}
    return f"""<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <p><strong>New Order Received!</strong></p>
    <h2>Order {escape(order.order_number)}</h2>
    <p><strong>Customer:</strong> {escape(str(address.get('full_name', '')))}</p>
    <p><strong>Email:</strong> {escape(customer_recipient(order) or '')}</p>
    <p><strong>Payment:</strong> {escape(order.payment_method)} ({escape(order.payment_status)})</p>
    <p><strong>Total:</strong> {format_amount(order.total, order.currency)}</p>
    <p><strong>Items:</strong> {len(order.items)}</p>
    <p><strong>Shipping Address:</strong><br>{_address_html(address)}</p>
    <p><a href="{escape(admin_orders_url, quote=True)}">View Order in Admin</a></p>
  </div>
</body>
</html>"""


class NotificationDispatcher:
    def __init__(
        self,
        mailer: ResendMailer,
        settings: Settings,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.mailer = mailer
        self.settings = settings
        self.session_factory = session_factory

    def send_order_confirmation(self, order_number: str) -> NotificationResult:
        result = NotificationResult()
        if not self.mailer.enabled:
            logger.info("RESEND_API_KEY not configured - skipping email notifications")
            return result
        if self.session_factory is SessionLocal and not is_configured():
            logger.info(f"No datastore; confirmation emails for {order_number} skipped")
            return result

        db = self.session_factory()
        try:
            order = OrderRepository(db).get_order_by_number(order_number)
            customer_html = render_customer_email(order, self.settings.STORE_NAME)
            admin_html = render_admin_email(order, self.settings.ADMIN_ORDERS_URL)
            total = format_amount(order.total, order.currency)
            recipient = customer_recipient(order)
        except (OrderNotFoundError, SQLAlchemyError):
            logger.error(f"Could not load order {order_number} for notifications", exc_info=True)
            return result
        finally:
            db.close()

        if recipient:
            result.customer_sent = self._send(
                "customer", [recipient], f"Order Confirmed - {order_number}", customer_html, order_number
            )
        else:
            logger.warning(f"Order {order_number} has no customer email; customer confirmation skipped")

        result.admin_sent = self._send(
            "admin", [self.settings.ADMIN_EMAIL], f"New Order - {order_number} - {total}", admin_html, order_number
        )
        return result

    def _send(self, audience: str, to, subject: str, html: str, order_number: str) -> bool:
        try:
            message_id = self.mailer.send(to, subject, html)
        except NotificationFailure as e:
            logger.error(
                f"Failed to send {audience} email for {order_number}: {e.message}",
                extra={'extra_fields': {'order_number': order_number, 'audience': audience}}
            )
            return False
        logger.info(
            f"Sent {audience} email for {order_number}",
            extra={'extra_fields': {'order_number': order_number, 'message_id': message_id}}
        )
        return True
