from typing import List, Optional
import httpx
from storefront.core import get_logger
from storefront.core_settings import Settings
from storefront.domain.errors import NotificationFailure

logger = get_logger(__name__)

class ResendMailer:
    """Thin client for the Resend transactional email API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = (api_key or "").strip()
        self.sender = sender
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> "ResendMailer":
        return cls(
            api_key=settings.RESEND_API_KEY,
            sender=settings.ORDER_EMAIL_FROM,
            api_url=settings.RESEND_API_URL,
            transport=transport,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def send(self, to: List[str], subject: str, html: str) -> str:
        """Send one message and return the provider message id."""
        payload = {"from": self.sender, "to": to, "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise NotificationFailure(f"Email provider unreachable: {e}") from e

        if response.status_code >= 400:
            raise NotificationFailure(
                f"Email provider rejected message ({response.status_code}): {response.text[:200]}"
            )
        try:
            return response.json().get("id", "")
        except ValueError:
            return ""
