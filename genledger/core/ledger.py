"""
Credit ledger.

Owns the integer balance per account. Every change goes through one atomic
store primitive; nothing here reads a balance and writes it back.

Invariant: for any interleaving of debits and credits on one account, the
final balance equals the initial balance plus the applied deltas, and no
committed balance is ever negative.
"""

import logging
from typing import List, Optional, Protocol

from genledger.storage.models import DeltaResult, LedgerEntry, PurchaseRecord, PurchaseResult

from .errors import InsertStatus, InsufficientCredits

logger = logging.getLogger("genledger.ledger")


class Store(Protocol):
    """Durable balance store consumed by CreditLedger."""

    def ensure_account(self, account_id: str) -> bool: ...

    def read_balance(self, account_id: str) -> int: ...

    def apply_delta(
        self,
        account_id: str,
        delta: int,
        reason: str,
        reference: Optional[str] = None,
        floor: int = 0,
    ) -> DeltaResult: ...

    def insert_if_absent(self, record: PurchaseRecord) -> InsertStatus: ...

    def record_purchase(self, record: PurchaseRecord, reason: str = "purchase") -> PurchaseResult: ...

    def grant_once(self, account_id: str, amount: int, reason: str = "starter") -> DeltaResult: ...

    def fetch_ledger_entries(self, account_id: str, limit: int = 100) -> List[LedgerEntry]: ...


def _require_positive(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"amount must be a positive integer, got {amount!r}")
    return amount


class CreditLedger:
    """Atomic debit/credit operations over a Store.

    Usage:
        ledger = CreditLedger(SqliteStore("genledger.db"))
        ledger.open_account(account_id)
        ledger.debit(account_id, 1)      # raises InsufficientCredits
        ledger.refund(account_id, 1)     # compensate a failed generation
    """

    def __init__(self, store: Store):
        self.store = store

    def open_account(self, account_id: str) -> bool:
        """Create the account on first access. Idempotent."""
        if not account_id:
            raise ValueError("account_id is required")
        created = self.store.ensure_account(account_id)
        if created:
            logger.info(f"Opened account {account_id}")
        return created

    def get_balance(self, account_id: str) -> int:
        """Current credits; never negative, zero for unknown accounts."""
        return self.store.read_balance(account_id)

    def try_debit(self, account_id: str, amount: int = 1, reference: Optional[str] = None) -> DeltaResult:
        """Decrement only if the balance covers ``amount``.

        Returns:
            DeltaResult; REJECTED means nothing changed
        """
        _require_positive(amount)
        result = self.store.apply_delta(account_id, -amount, "debit", reference=reference)
        if result.applied:
            logger.debug(f"Debited {amount} from {account_id}, balance {result.balance}")
        else:
            logger.info(
                f"Debit of {amount} rejected for {account_id}: balance {result.balance}"
            )
        return result

    def debit(self, account_id: str, amount: int = 1, reference: Optional[str] = None) -> int:
        """Debit ``amount`` credits.

        Returns:
            The new balance

        Raises:
            InsufficientCredits: If the balance is below ``amount``
        """
        result = self.try_debit(account_id, amount, reference=reference)
        if not result.applied:
            raise InsufficientCredits(account_id, amount, result.balance)
        return result.balance

    def credit(
        self,
        account_id: str,
        amount: int,
        reason: str = "grant",
        reference: Optional[str] = None,
    ) -> int:
        """Unconditional increase.

        Only call once idempotency has been settled elsewhere; purchases go
        through credit_purchase instead.

        Returns:
            The new balance
        """
        _require_positive(amount)
        result = self.store.apply_delta(account_id, amount, reason, reference=reference)
        logger.info(f"Credited {amount} to {account_id} ({reason}), balance {result.balance}")
        return result.balance

    def refund(self, account_id: str, amount: int = 1, reference: Optional[str] = None) -> int:
        """Give back a debit whose paired generation failed.

        A compensating credit, not a rollback: the journal keeps both rows.
        """
        return self.credit(account_id, amount, reason="refund", reference=reference)

    def credit_purchase(self, record: PurchaseRecord) -> PurchaseResult:
        """Insert the purchase record and credit its account as one unit.

        The uniqueness of ``record.idempotency_key`` is the only guard against
        double-crediting; a CONFLICT result means nothing was changed.
        """
        result = self.store.record_purchase(record)
        if result.inserted:
            logger.info(
                f"Credited {record.credits_granted} to {record.account_id} "
                f"for purchase {record.idempotency_key}, balance {result.balance}"
            )
        return result

    def grant_starter(self, account_id: str, amount: int) -> bool:
        """Grant the starter credits at most once per account.

        Returns:
            True if this call granted the credits
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValueError(f"amount must be a non-negative integer, got {amount!r}")
        result = self.store.grant_once(account_id, amount)
        if result.applied:
            logger.info(f"Granted {amount} starter credits to {account_id}")
        return result.applied

    def history(self, account_id: str, limit: int = 100) -> List[LedgerEntry]:
        """Journal entries for the account, newest first."""
        return self.store.fetch_ledger_entries(account_id, limit=limit)
