"""
Referral Earning Ledger

This package provides:
- Account ledger: balances plus an append-only transaction history
- Approval workflow for deposits and withdrawals: pending → approved / rejected
- Withdrawal holds taken at submission and released on rejection
- Referral commission cascade on deposit approval
- Settings store for commission rate, minimum withdrawal and deposit amount
"""

from .errors import (
    LedgerServiceError,
    ValidationError,
    NotFoundError,
    AlreadyProcessedError,
    InsufficientBalanceError,
)
from .models import (
    EntryKind,
    RequestStatus,
    UserRole,
    PayoutMethod,
    Identity,
    LedgerConfig,
    TransactionEntry,
)
from .service import AccountLedger
from .referral import ReferralCascade
from .settings_store import SettingsStore
from .workflow import ApprovalWorkflow

__all__ = [
    "LedgerServiceError",
    "ValidationError",
    "NotFoundError",
    "AlreadyProcessedError",
    "InsufficientBalanceError",
    "EntryKind",
    "RequestStatus",
    "UserRole",
    "PayoutMethod",
    "Identity",
    "LedgerConfig",
    "TransactionEntry",
    "AccountLedger",
    "ReferralCascade",
    "SettingsStore",
    "ApprovalWorkflow",
]
