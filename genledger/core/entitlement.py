"""
Entitlement view.

Read-only "can generate" flag derived from the current balance.
"""

from dataclasses import dataclass
from typing import Optional

from .ledger import CreditLedger


@dataclass(frozen=True)
class Entitlement:
    """Snapshot of what an account may do right now."""
    account_id: str
    credits: int
    cost: int

    @property
    def can_generate(self) -> bool:
        return self.credits >= self.cost


class EntitlementView:
    """Derives entitlements from CreditLedger balances. Never mutates them."""

    def __init__(self, ledger: CreditLedger, credits_per_generation: int = 1):
        if credits_per_generation <= 0:
            raise ValueError("credits_per_generation must be > 0")
        self.ledger = ledger
        self.credits_per_generation = credits_per_generation

    def snapshot(self, account_id: str, cost: Optional[int] = None) -> Entitlement:
        """Current entitlement for ``account_id``.

        A snapshot is advisory; only CreditLedger.debit decides whether a
        generation is actually paid for.
        """
        return Entitlement(
            account_id=account_id,
            credits=self.ledger.get_balance(account_id),
            cost=self.credits_per_generation if cost is None else cost,
        )

    def can_generate(self, account_id: str, cost: Optional[int] = None) -> bool:
        return self.snapshot(account_id, cost).can_generate
