"""
Data models for storage layer.

Defines the account, purchase and ledger-journal records, plus the tagged
results returned by store mutations.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from genledger.core.errors import DeltaStatus, InsertStatus


@dataclass(frozen=True)
class Account:
    """A credit-holding account.

    Balance is only ever changed through CreditLedger operations.
    """
    id: str
    credits: int
    starter_granted: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class PurchaseRecord:
    """One completed external payment.

    At most one record exists per idempotency_key; its existence proves the
    credits for that payment were already granted.
    """
    idempotency_key: str
    account_id: str
    credits_granted: int
    amount: Optional[int]
    currency: Optional[str]
    created_at: datetime

    def __post_init__(self):
        """Validate key and credit amount."""
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.account_id:
            raise ValueError("account_id is required")
        if self.credits_granted <= 0:
            raise ValueError("credits_granted must be > 0")


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable journal row written alongside every applied balance delta."""
    account_id: str
    delta: int
    reason: str
    balance_after: int
    timestamp: datetime
    reference: Optional[str] = None


@dataclass(frozen=True)
class DeltaResult:
    """Tagged result of a conditional balance update.

    ``balance`` is the balance after the update when APPLIED, or the balance
    observed at the time of the rejected write when REJECTED.
    """
    status: DeltaStatus
    balance: int

    @property
    def applied(self) -> bool:
        return self.status is DeltaStatus.APPLIED


@dataclass(frozen=True)
class PurchaseResult:
    """Tagged result of recording a purchase together with its credit."""
    status: InsertStatus
    balance: int

    @property
    def inserted(self) -> bool:
        return self.status is InsertStatus.INSERTED
