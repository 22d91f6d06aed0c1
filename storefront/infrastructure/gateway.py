"""Razorpay Orders API adapter.

Creating a gateway order registers a billable payment intent on Razorpay's
side. Calls are not retried here: if a response is lost the gateway may
still have created the order. Every attempt for a local order sends the same
``receipt`` (the local order number), so duplicates stay traceable on the
gateway dashboard.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

import httpx

from storefront.core import get_logger
from storefront.core_settings import Settings
from storefront.domain.errors import GatewayConfigurationError, GatewayRequestError

logger = get_logger(__name__)

GATEWAY_NAME = "razorpay"

Amount = Union[Decimal, float, int, str]


def to_minor_units(amount: Amount) -> int:
    """Major to minor currency units, rounded half-up (149.999 -> 15000)."""
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class GatewayOrder:
    gateway_order_id: str
    amount_minor_units: int
    currency: str
    key_id: str
    receipt: Optional[str] = None
    status: Optional[str] = None


class RazorpayGateway:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        api_url: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.key_id = (key_id or "").strip()
        self.key_secret = (key_secret or "").strip()
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> "RazorpayGateway":
        return cls(
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            api_url=settings.RAZORPAY_API_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _client(self) -> httpx.Client:
        if not self.configured:
            logger.error("Razorpay credentials missing; refusing gateway call")
            raise GatewayConfigurationError("Payment gateway not configured")
        return httpx.Client(
            base_url=self.api_url,
            auth=(self.key_id, self.key_secret),
            timeout=self.timeout,
            transport=self._transport,
        )

    def create_order(
        self,
        order_number: str,
        amount: Amount,
        currency: str = "INR",
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        amount_minor = to_minor_units(amount)
        payload = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": order_number,
            "notes": notes or {"order_number": order_number},
        }
        with self._client() as client:
            data = self._send(client, "POST", "/orders", json=payload)

        gateway_order = GatewayOrder(
            gateway_order_id=data["id"],
            amount_minor_units=int(data.get("amount", amount_minor)),
            currency=data.get("currency", currency),
            key_id=self.key_id,
            receipt=data.get("receipt", order_number),
            status=data.get("status"),
        )
        logger.info(
            f"Razorpay order created: {gateway_order.gateway_order_id} for {order_number}",
            extra={'extra_fields': {
                'order_number': order_number,
                'gateway_order_id': gateway_order.gateway_order_id,
                'amount_minor_units': gateway_order.amount_minor_units,
                'currency': gateway_order.currency,
            }}
        )
        return gateway_order

    def fetch_order(self, gateway_order_id: str) -> Dict[str, Any]:
        with self._client() as client:
            data = self._send(client, "GET", f"/orders/{gateway_order_id}")
        return {
            "id": data.get("id"),
            "amount": data.get("amount"),
            "currency": data.get("currency"),
            "status": data.get("status"),
            "receipt": data.get("receipt"),
            "created_at": data.get("created_at"),
        }

    def _send(self, client: httpx.Client, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Razorpay request failed: {method} {path}: {e}")
            raise GatewayRequestError("Payment gateway unreachable, please try again") from e

        if response.status_code >= 400:
            description, code = self._error_description(response)
            logger.error(
                f"Razorpay API error: {description}",
                extra={'extra_fields': {
                    'path': path,
                    'status_code': response.status_code,
                    'gateway_error_code': code,
                }}
            )
            raise GatewayRequestError(description, code=code, upstream_status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise GatewayRequestError("Invalid response from payment gateway") from e

    @staticmethod
    def _error_description(response: httpx.Response):
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body, dict) else None
        error = error if isinstance(error, dict) else {}
        description = error.get("description") or "Failed to create Razorpay order"
        return description, error.get("code")
