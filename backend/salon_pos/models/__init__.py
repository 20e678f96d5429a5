from .enums import (
    BillStatus, SalesType, LineType, PaymentMethod, DiscountType,
    UsageType, BatchStatus, LoyaltyEntryType, AuditOutcome,
)
from .billing import Bill, BillLine, InvalidBillTransition
from .inventory import StockBatch, StockMovement, ServiceProductMapping
from .loyalty import ClientProfile, LoyaltyAccount, LoyaltyLogEntry
from .referrals import ReferralCode, ReferralRecord
from .audit import AuditLogEntry, DocumentSequence

__all__ = [
    'BillStatus', 'SalesType', 'LineType', 'PaymentMethod', 'DiscountType',
    'UsageType', 'BatchStatus', 'LoyaltyEntryType', 'AuditOutcome',
    'Bill', 'BillLine', 'InvalidBillTransition',
    'StockBatch', 'StockMovement', 'ServiceProductMapping',
    'ClientProfile', 'LoyaltyAccount', 'LoyaltyLogEntry',
    'ReferralCode', 'ReferralRecord',
    'AuditLogEntry', 'DocumentSequence',
]
