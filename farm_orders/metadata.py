"""
Order Service — metadata bag

Payment correspondence, courier references, the cancellation reason, the
customer's phone and the checkout cart token all travel in one flat
str -> str mapping attached to the order. The known keys are typed fields;
anything else a payment gateway sends along is kept as an extra.

Merging is non-destructive: keys that an update does not mention survive,
and blank values in an update never overwrite what is already stored.
"""

import json
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

# extras accepted by a status update
STATUS_EXTRA_KEYS = (
    "payment_info",
    "payment_message",
    "payment_reference",
    "courier_contact",
    "courier_ref_id",
)


class OrderMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment_info: str | None = None
    payment_message: str | None = None
    payment_reference: str | None = None
    courier_contact: str | None = None
    courier_ref_id: str | None = None
    cancellation_reason: str | None = None
    customer_phone: str | None = None
    temp_cart_id: str | None = None

    @classmethod
    def decode(cls, raw: Any) -> "OrderMetadata":
        """Build from the stored column value (dict, JSON text or nothing)."""
        if not raw:
            return cls()
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Ignoring unparseable order metadata: %.80r", raw)
                return cls()
        if not isinstance(raw, Mapping):
            return cls()
        return cls.model_validate(
            {str(k): str(v) for k, v in raw.items() if v is not None}
        )

    def encode(self) -> dict[str, str]:
        return self.model_dump(exclude_none=True)

    def merged(self, updates: Mapping[str, Any] | None) -> "OrderMetadata":
        data = self.encode()
        for key, value in (updates or {}).items():
            if value is None:
                continue
            value = str(value)
            if not value.strip():
                continue
            data[key] = value
        return type(self).decode(data)

    @property
    def has_payment_info(self) -> bool:
        return bool(self.payment_info and self.payment_info.strip())
