"""
Charged generation.

Debits before any model call and gives the credits back if the paired unit
of work fails. Cancellation is not handled here: a caller that abandons a
request after the debit owns the refund.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from .entitlement import EntitlementView
from .errors import InsufficientCredits
from .ledger import CreditLedger

logger = logging.getLogger("genledger.generation")

R = TypeVar("R")


class ChargedGeneration:
    """Wraps a unit of generation work in a debit/refund pair."""

    def __init__(self, ledger: CreditLedger, entitlements: EntitlementView):
        self.ledger = ledger
        self.entitlements = entitlements

    @contextmanager
    def charge(self, account_id: str, cost: Optional[int] = None, reference: Optional[str] = None) -> Iterator[int]:
        """Debit ``cost`` credits for the duration of the block.

        Yields the balance after the debit. If the block raises, the debit is
        refunded and the exception propagates.

        Raises:
            InsufficientCredits: Before the block runs, if the balance is short
        """
        entitlement = self.entitlements.snapshot(account_id, cost)
        if not entitlement.can_generate:
            raise InsufficientCredits(account_id, entitlement.cost, entitlement.credits)

        balance = self.ledger.debit(account_id, entitlement.cost, reference=reference)
        try:
            yield balance
        except Exception:
            logger.warning(f"Generation for {account_id} failed; refunding {entitlement.cost}")
            self.ledger.refund(account_id, entitlement.cost, reference=reference)
            raise

    def run(
        self,
        account_id: str,
        work: Callable[[], R],
        cost: Optional[int] = None,
        reference: Optional[str] = None,
    ) -> R:
        """Debit, run ``work``, refund if it raises."""
        with self.charge(account_id, cost, reference=reference):
            return work()
