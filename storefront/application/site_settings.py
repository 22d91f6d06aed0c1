"""Site-wide settings rows, parsed into typed shapes at the boundary.

Each row in ``site_settings`` is a ``key`` plus an arbitrary JSON ``value``.
The key doubles as the tag of a discriminated union, so a malformed value is
caught here instead of somewhere in the middle of a price calculation.

A checkout reads the settings exactly once into a :class:`SettingsSnapshot`
and passes it down explicitly; an admin changing the tax rate mid-checkout
therefore cannot produce a total that differs from what was computed.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from storefront.core import get_logger
from storefront.infrastructure.repository import SettingsRepository

logger = get_logger(__name__)


class TaxSettings(BaseModel):
    kind: Literal["tax"] = "tax"
    rate: Decimal = Field(default=Decimal("18"), ge=0, le=100)


class ShippingSettings(BaseModel):
    kind: Literal["shipping"] = "shipping"
    base_price: Decimal = Field(default=Decimal("99"), ge=0)
    free_threshold: Decimal = Field(default=Decimal("1500"), ge=0)


class GatewaySettings(BaseModel):
    """Non-secret gateway switches. Key id and secret come from the environment only."""

    kind: Literal["razorpay"] = "razorpay"
    enabled: bool = True
    test_mode: bool = False


SiteSettingValue = Annotated[
    Union[TaxSettings, ShippingSettings, GatewaySettings],
    Field(discriminator="kind"),
]
_adapter = TypeAdapter(SiteSettingValue)

KNOWN_KEYS = ("tax", "shipping", "razorpay")


def parse_setting(key: str, value: Any) -> SiteSettingValue:
    if not isinstance(value, dict):
        raise ValueError(f"Setting '{key}' must be a JSON object")
    # secrets stored in the table by older admin screens are dropped here
    payload = {k: v for k, v in value.items() if k not in ("key_id", "key_secret")}
    payload["kind"] = key
    return _adapter.validate_python(payload)


@dataclass(frozen=True)
class SettingsSnapshot:
    tax: TaxSettings = field(default_factory=TaxSettings)
    shipping: ShippingSettings = field(default_factory=ShippingSettings)
    gateway: GatewaySettings = field(default_factory=GatewaySettings)


def load_snapshot(db: Optional[Session]) -> SettingsSnapshot:
    """Read tax, shipping and gateway settings once; unknown or broken rows fall back to defaults."""
    if db is None:
        return SettingsSnapshot()

    parsed: Dict[str, Any] = {}
    for key, value in SettingsRepository(db).values(list(KNOWN_KEYS)).items():
        try:
            parsed[key] = parse_setting(key, value)
        except (PydanticValidationError, ValueError) as e:
            logger.warning(
                f"Ignoring malformed site setting '{key}', using defaults",
                extra={'extra_fields': {'setting': key, 'reason': str(e)}}
            )

    return SettingsSnapshot(
        tax=parsed.get("tax", TaxSettings()),
        shipping=parsed.get("shipping", ShippingSettings()),
        gateway=parsed.get("razorpay", GatewaySettings()),
    )
