"""
Download-Credit Ledger for AI Book Covers

This module provides:
- Per-visitor free download credits, provisioned on first use
- Atomic check-and-decrement on every download
- Download flow: credit check -> delivered / payment required
- Two-phase card payment settlement with idempotent verification
- In-memory and SQL storage backends
"""

from .models import (
    Cover,
    DownloadState,
    PaymentRecord,
    PaymentStatus,
    PendingPayment,
    UserBalance,
)
from .payments import PaymentService
from .service import CreditService, DownloadController

__all__ = [
    "Cover",
    "DownloadState",
    "PaymentRecord",
    "PaymentStatus",
    "PendingPayment",
    "UserBalance",
    "CreditService",
    "DownloadController",
    "PaymentService",
]
