"""
Validated, immutable inputs for the order lifecycle services.

Callers may pass plain dicts (as a REST layer would) or the dataclasses
themselves; the ``build_*`` factories validate either form and raise
ValidationError with a message naming the offending field.
"""

import uuid
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Iterable, List, Optional, Union

from marketplace.domain.exceptions import ValidationError

from .models.order import PaymentStatus


@dataclass(frozen=True)
class RequestedItem:
    listing_id: uuid.UUID
    quantity: int


@dataclass(frozen=True)
class PaymentDetails:
    status: str
    method: str = ""
    transaction_id: str = ""


@dataclass(frozen=True)
class ShippingDetails:
    recipient_name: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""
    tracking_number: str = ""
    carrier: str = ""
    estimated_delivery: Optional[datetime] = None

    @property
    def has_tracking(self) -> bool:
        return bool(self.tracking_number and self.tracking_number.strip())


def parse_id(value, field_name: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{field_name} must be a valid UUID, got {value!r}")


def _positive_int(value, field_name: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer, got {value!r}")
    if value <= 0:
        raise ValidationError(f"{field_name} must be positive, got {value}")
    return value


def build_requested_items(raw_items: Iterable[Union[RequestedItem, dict]]) -> List[RequestedItem]:
    """
    Validate the items of a purchase request.

    Lines naming the same listing are merged into one (quantities summed,
    position of the first occurrence kept).
    """
    if raw_items is None:
        raise ValidationError("items are required")

    merged = {}
    for index, raw in enumerate(raw_items):
        if isinstance(raw, RequestedItem):
            listing_id, quantity = raw.listing_id, raw.quantity
        elif isinstance(raw, dict):
            listing_id, quantity = raw.get("listing_id"), raw.get("quantity")
        else:
            raise ValidationError(f"items[{index}] must be a mapping with listing_id and quantity")

        listing_id = parse_id(listing_id, f"items[{index}].listing_id")
        quantity = _positive_int(quantity, f"items[{index}].quantity")
        merged[listing_id] = merged.get(listing_id, 0) + quantity

    if not merged:
        raise ValidationError("Cannot create an order without items")

    return [RequestedItem(listing_id=listing_id, quantity=quantity) for listing_id, quantity in merged.items()]


def build_payment_details(raw: Union[PaymentDetails, dict, None]) -> Optional[PaymentDetails]:
    if raw is None or isinstance(raw, PaymentDetails):
        details = raw
    elif isinstance(raw, dict):
        details = PaymentDetails(
            status=raw.get("status") or PaymentStatus.PENDING,
            method=raw.get("method") or "",
            transaction_id=raw.get("transaction_id") or "",
        )
    else:
        raise ValidationError("payment_details must be a mapping")

    if details is not None and details.status not in PaymentStatus.values:
        raise ValidationError(f"Unknown payment status {details.status!r}")
    return details


def build_shipping_details(raw: Union[ShippingDetails, dict, None]) -> Optional[ShippingDetails]:
    if raw is None:
        return None
    if isinstance(raw, ShippingDetails):
        raw = asdict(raw)
    elif isinstance(raw, dict):
        known = {f.name for f in fields(ShippingDetails)}
        unknown = set(raw) - known
        if unknown:
            raise ValidationError(f"Unknown shipping fields: {sorted(unknown)}")
    else:
        raise ValidationError("shipping_details must be a mapping")

    cleaned = {key: ("" if value is None and key != "estimated_delivery" else value) for key, value in raw.items()}
    details = ShippingDetails(**cleaned)

    if details.estimated_delivery is not None:
        if not isinstance(details.estimated_delivery, datetime):
            raise ValidationError("estimated_delivery must be a datetime")
    return details

