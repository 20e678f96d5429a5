from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from .models import DiscountType, LineType, PaymentMethod
from .time_utils import parse_iso_datetime


# Maximum price: 9,999,999.99 (999,999,999 cents)
# Keeps totals inside a 32-bit integer column
MAX_PRICE_CENTS = 999_999_999
MAX_TAX_RATE_BPS = 10_000


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class LineInput:
    line_type: LineType
    item_id: str
    unit_price_cents: int
    quantity: int = 1
    name: str | None = None
    staff_id: str | None = None
    staff_name: str | None = None

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class BillInput:
    """
    Client-supplied part of a bill. Totals are never accepted from the
    caller; they are recomputed from the lines.
    """
    branch_id: str
    payment_method: PaymentMethod
    lines: list[LineInput] = field(default_factory=list)
    client_id: str | None = None
    client_name: str | None = None
    appointment_id: str | None = None
    discount_type: DiscountType = DiscountType.FIXED
    discount_value: int = 0
    promotion_code: str | None = None
    promotion_id: str | None = None
    promotion_discount_cents: int = 0
    loyalty_points_used: int = 0
    tax_rate_bps: int = 0
    payment_reference: str | None = None
    receipt_number: str | None = None
    notes: str | None = None

    @property
    def is_guest(self) -> bool:
        return not self.client_id


def coerce_int(name: str, value: Any, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion.

    Rejects bools, floats, decimals and scientific notation so that money
    and quantities never pass through float arithmetic.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{name} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{name} cannot exceed {maximum}")
    return result


def optional_str(value: Any, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"value exceeds max length {max_length}")
    return text


def required_str(name: str, value: Any, *, max_length: int = 64) -> str:
    text = optional_str(value, max_length=max_length)
    if not text:
        raise ValidationError(f"{name} is required")
    return text


def parse_enum(name: str, enum_cls: type[enum.Enum], value: Any, default=None):
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{name} is required")
        return default
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{name} must be one of: {allowed}")


def parse_date(name: str, value: Any) -> date | None:
    """Accepts YYYY-MM-DD or a full ISO-8601 datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        dt = parse_iso_datetime(text)
    except ValueError:
        dt = None
    if dt is None:
        raise ValidationError(f"{name} must be an ISO-8601 date")
    return dt.date()


def parse_line_input(raw: Any, index: int) -> LineInput:
    if not isinstance(raw, dict):
        raise ValidationError(f"lines[{index}] must be an object")

    label = f"lines[{index}]"
    line_type = parse_enum(f"{label}.type", LineType, raw.get("type", raw.get("line_type")))
    item_id = required_str(f"{label}.item_id", raw.get("item_id", raw.get("id")))
    price = coerce_int(
        f"{label}.unit_price_cents",
        raw.get("unit_price_cents", raw.get("price_cents")),
        minimum=0,
        maximum=MAX_PRICE_CENTS,
    )
    quantity = coerce_int(f"{label}.quantity", raw.get("quantity", 1), minimum=1)

    staff_id = optional_str(raw.get("staff_id"), max_length=64)
    if line_type == LineType.PRODUCT:
        staff_id = None

    return LineInput(
        line_type=line_type,
        item_id=item_id,
        unit_price_cents=price,
        quantity=quantity,
        name=optional_str(raw.get("name")),
        staff_id=staff_id,
        staff_name=optional_str(raw.get("staff_name")) if staff_id else None,
    )


def parse_bill_input(payload: Any) -> BillInput:
    """
    Validates + normalizes a create-bill payload.

    Raises ValidationError for any malformed field; nothing is persisted
    by this function.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    branch_id = required_str("branch_id", payload.get("branch_id"))

    raw_lines = payload.get("lines", payload.get("items"))
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("At least one line is required")
    lines = [parse_line_input(raw, i) for i, raw in enumerate(raw_lines)]

    discount_type = parse_enum("discount_type", DiscountType, payload.get("discount_type"), DiscountType.FIXED)
    discount_value = coerce_int("discount_value", payload.get("discount_value", 0), minimum=0)
    if discount_type == DiscountType.PERCENTAGE and discount_value > 100:
        raise ValidationError("discount_value cannot exceed 100 for percentage discounts")

    client_id = optional_str(payload.get("client_id"), max_length=64)
    loyalty_points_used = coerce_int("loyalty_points_used", payload.get("loyalty_points_used", 0), minimum=0)
    if loyalty_points_used and not client_id:
        raise ValidationError("Guest bills cannot redeem loyalty points")

    return BillInput(
        branch_id=branch_id,
        payment_method=parse_enum("payment_method", PaymentMethod, payload.get("payment_method")),
        lines=lines,
        client_id=client_id,
        client_name=optional_str(payload.get("client_name")) if client_id else None,
        appointment_id=optional_str(payload.get("appointment_id"), max_length=64),
        discount_type=discount_type,
        discount_value=discount_value,
        promotion_code=optional_str(payload.get("promotion_code"), max_length=64),
        promotion_id=optional_str(payload.get("promotion_id"), max_length=64),
        promotion_discount_cents=coerce_int(
            "promotion_discount_cents", payload.get("promotion_discount_cents", 0), minimum=0
        ),
        loyalty_points_used=loyalty_points_used,
        tax_rate_bps=coerce_int(
            "tax_rate_bps", payload.get("tax_rate_bps", 0), minimum=0, maximum=MAX_TAX_RATE_BPS
        ),
        payment_reference=optional_str(payload.get("payment_reference"), max_length=128),
        receipt_number=optional_str(payload.get("receipt_number"), max_length=64),
        notes=optional_str(payload.get("notes"), max_length=2000),
    )
