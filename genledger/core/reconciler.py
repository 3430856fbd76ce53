"""
Purchase reconciliation.

Turns a payment-session identifier into at most one credit grant. Reachable
from the processor's push notification and from the client's confirmation
pull after redirect; both may race or repeat freely.

State machine per session:
    PENDING_FETCH -> {PAID, NOT_PAID} -> {CREDITED, ALREADY_CREDITED, SKIPPED_NO_ACCOUNT}
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol

from genledger.storage.models import PurchaseRecord

from .ledger import CreditLedger

logger = logging.getLogger("genledger.reconciler")

PAID_STATUS = "paid"
CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class PaymentSession:
    """Authoritative view of a payment session as reported by the processor."""
    session_id: str
    status: str
    account_id: Optional[str]
    credits: Optional[int]
    amount: Optional[int]
    currency: Optional[str]


class PaymentProcessor(Protocol):
    """External payment processor consumed by the reconciler."""

    def fetch_session(self, session_id: str) -> PaymentSession: ...


class ReconcileState(Enum):
    """Terminal states of one reconciliation."""
    NOT_PAID = "not_paid"
    SKIPPED_NO_ACCOUNT = "skipped_no_account"
    CREDITED = "credited"
    ALREADY_CREDITED = "already_credited"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome reported to both triggers."""
    state: ReconcileState
    session_id: str
    payment_status: Optional[str] = None
    account_id: Optional[str] = None
    credits_added: int = 0

    @property
    def ok(self) -> bool:
        return self.state in (ReconcileState.CREDITED, ReconcileState.ALREADY_CREDITED)

    @property
    def already_processed(self) -> bool:
        return self.state is ReconcileState.ALREADY_CREDITED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "already_processed": self.already_processed,
            "credits_added": self.credits_added,
            "payment_status": self.payment_status,
        }


class PurchaseReconciler:
    """Grants purchased credits exactly once per payment session.

    The purchase-record insert is the sole idempotency guard; there is no
    "already processed?" read before it.
    """

    def __init__(
        self,
        processor: PaymentProcessor,
        ledger: CreditLedger,
        default_credits: int = 30,
    ):
        """Initialize the reconciler.

        Args:
            processor: Payment processor capability
            ledger: Ledger that applies the credit
            default_credits: Credits granted when the session carries none

        Raises:
            ValueError: If default_credits is not positive
        """
        if default_credits <= 0:
            raise ValueError("default_credits must be > 0")
        self.processor = processor
        self.ledger = ledger
        self.default_credits = default_credits

    def reconcile(self, session_id: str) -> ReconcileResult:
        """Reconcile one payment session.

        Args:
            session_id: Processor session identifier (the idempotency key)

        Returns:
            ReconcileResult describing the terminal state

        Raises:
            ValueError: If session_id is empty
            PaymentProcessorError: If the processor lookup fails
        """
        session_id = (session_id or "").strip()
        if not session_id:
            raise ValueError("session_id is required")

        session = self.processor.fetch_session(session_id)
        logger.info(
            f"Reconciling session {session_id}: payment_status={session.status} "
            f"account={session.account_id}"
        )

        if session.status != PAID_STATUS:
            return ReconcileResult(
                state=ReconcileState.NOT_PAID,
                session_id=session_id,
                payment_status=session.status,
                account_id=session.account_id,
            )

        if not session.account_id:
            # Not retryable; the caller still acknowledges the event.
            logger.error(f"Paid session {session_id} has no target account; needs operator follow-up")
            return ReconcileResult(
                state=ReconcileState.SKIPPED_NO_ACCOUNT,
                session_id=session_id,
                payment_status=session.status,
            )

        credits = session.credits if session.credits and session.credits > 0 else self.default_credits
        record = PurchaseRecord(
            idempotency_key=session_id,
            account_id=session.account_id,
            credits_granted=credits,
            amount=session.amount,
            currency=session.currency,
            created_at=datetime.now(timezone.utc),
        )

        result = self.ledger.credit_purchase(record)
        if not result.inserted:
            logger.info(f"Session {session_id} already processed")
            return ReconcileResult(
                state=ReconcileState.ALREADY_CREDITED,
                session_id=session_id,
                payment_status=session.status,
                account_id=session.account_id,
            )

        return ReconcileResult(
            state=ReconcileState.CREDITED,
            session_id=session_id,
            payment_status=session.status,
            account_id=session.account_id,
            credits_added=credits,
        )

    def handle_event(self, event: Mapping[str, Any]) -> Optional[ReconcileResult]:
        """Handle a verified push notification from the processor.

        Completed checkouts are reconciled by session id; every other event
        type is acknowledged without action.

        Returns:
            The reconciliation result, or None for ignored event types
        """
        event_type = event.get("type")
        if event_type != CHECKOUT_COMPLETED:
            logger.debug(f"Ignoring payment event type {event_type}")
            return None

        session_obj = (event.get("data") or {}).get("object") or {}
        session_id = session_obj.get("id")
        if not session_id:
            logger.error(f"{CHECKOUT_COMPLETED} event {event.get('id')} carries no session id")
            return None
        return self.reconcile(session_id)
