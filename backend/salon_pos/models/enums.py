"""
Closed status and classification enums.

Stored as their string value (non-native enum) so the schema stays
portable between SQLite and server databases. Allowed status transitions
are declared here and checked by the models, not by string comparison at
call sites.
"""

from __future__ import annotations

import enum

from ..extensions import db


class BillStatus(str, enum.Enum):
    PAID = "paid"
    REFUNDED = "refunded"
    VOIDED = "voided"

    @property
    def is_terminal(self) -> bool:
        return not BILL_TRANSITIONS[self]


BILL_TRANSITIONS: dict[BillStatus, frozenset[BillStatus]] = {
    BillStatus.PAID: frozenset({BillStatus.REFUNDED, BillStatus.VOIDED}),
    BillStatus.REFUNDED: frozenset(),
    BillStatus.VOIDED: frozenset(),
}


class SalesType(str, enum.Enum):
    SERVICE = "service"
    PRODUCT = "product"
    MIXED = "mixed"


class LineType(str, enum.Enum):
    SERVICE = "service"
    PRODUCT = "product"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    VOUCHER = "voucher"
    GIFT_CARD = "gift_card"


class DiscountType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class UsageType(str, enum.Enum):
    OTC = "otc"
    SALON_USE = "salon-use"


class BatchStatus(str, enum.Enum):
    ACTIVE = "active"
    DEPLETED = "depleted"


BATCH_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.ACTIVE: frozenset({BatchStatus.DEPLETED}),
    BatchStatus.DEPLETED: frozenset(),
}


class LoyaltyEntryType(str, enum.Enum):
    EARNED = "earned"
    REDEEMED = "redeemed"


class AuditOutcome(str, enum.Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"


def enum_column_type(enum_cls: type[enum.Enum], length: int = 16) -> db.Enum:
    """String-backed column type that persists enum values, not names."""
    return db.Enum(
        enum_cls,
        native_enum=False,
        length=length,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )
