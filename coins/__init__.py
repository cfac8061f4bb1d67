"""
Coin Ledger for Partner Rewards and Daily Check-ins

This module provides:
- Signed partner reward callbacks (MD5 partner signature, 5 minute window)
- Idempotent crediting: one ledger change per order_id / per user per day
- Running balance snapshot plus an append-only audit log
- Daily check-in streaks with tiered rewards
- Read-only coin statistics
"""

from .models import (
    ChangeType,
    CallbackStatus,
    UserBalance,
    CoinRecordEntry,
    CreditResult,
    CallbackOutcome,
    CheckinResult,
    CheckinStatus,
    CoinStatistics,
)
from .service import CoinService
from .store import LedgerStore
from .signature import SignatureVerifier
from .callbacks import CallbackIngestor
from .checkin import CheckinEngine
from .statistics import StatisticsReader

__all__ = [
    "ChangeType",
    "CallbackStatus",
    "UserBalance",
    "CoinRecordEntry",
    "CreditResult",
    "CallbackOutcome",
    "CheckinResult",
    "CheckinStatus",
    "CoinStatistics",
    "CoinService",
    "LedgerStore",
    "SignatureVerifier",
    "CallbackIngestor",
    "CheckinEngine",
    "StatisticsReader",
]
