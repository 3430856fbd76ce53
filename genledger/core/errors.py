"""
Error taxonomy and tagged outcomes.

Only InsufficientCredits and ServerMisconfigured are meant to reach callers
of the core. Upstream (model) failures are absorbed by the extractor.
"""

from enum import Enum
from typing import Iterable, Optional


class GenLedgerError(Exception):
    """Base class for all genledger errors."""


class InsufficientCredits(GenLedgerError):
    """Raised when a debit would take the balance below zero.

    Equivalent to HTTP 402. Recoverable by the caller (buy more credits),
    never retried automatically.
    """

    def __init__(self, account_id: str, requested: int, balance: int):
        super().__init__(
            f"Insufficient credits for {account_id}: requested {requested}, balance {balance}"
        )
        self.account_id = account_id
        self.requested = requested
        self.balance = balance


class ServerMisconfigured(GenLedgerError):
    """Required credentials or configuration are absent. Always fatal."""

    def __init__(self, missing: Iterable[str]):
        self.missing = sorted(set(missing))
        super().__init__(f"Server misconfigured, missing: {', '.join(self.missing)}")


class UpstreamError(GenLedgerError):
    """A call to the external model failed or produced unusable output."""


class UpstreamTimeout(UpstreamError):
    """The external call did not answer within its timeout."""


class UpstreamTransportFailure(UpstreamError):
    """Network, HTTP or SDK level failure while calling upstream."""


class UpstreamMalformedOutput(UpstreamError):
    """Raw text could not be turned into schema-conforming structure."""

    def __init__(self, message: str, raw_text: Optional[str] = None):
        super().__init__(message)
        self.raw_text = raw_text


class PaymentProcessorError(GenLedgerError):
    """The payment processor could not be reached or rejected the lookup.

    Propagated so that push notifications are redelivered.
    """


class InvalidWebhook(GenLedgerError):
    """Webhook payload failed signature verification or could not be parsed."""


class DeltaStatus(Enum):
    """Outcome of a conditional balance update."""
    APPLIED = "applied"
    REJECTED = "rejected"  # predicate (balance >= 0) failed, nothing changed


class InsertStatus(Enum):
    """Outcome of an insert keyed by an idempotency key."""
    INSERTED = "inserted"
    CONFLICT = "conflict"
