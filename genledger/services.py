"""
Service wiring.

Builds every capability once at process start and exposes the operations
consumed by routes: GetBalance, TryDebit, Refund, ReconcilePurchase and
Extract, plus the charged generate flow and webhook handling. No component
reaches for a global client; everything is passed in here.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Type, TypeVar

from .config.loader import (
    OPENAI_API_KEY,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    AppConfig,
    Secrets,
    default_config,
    load_secrets,
)
from .core.entitlement import Entitlement, EntitlementView
from .core.errors import ServerMisconfigured
from .core.extractor import ExtractionResult, ModelClient, PromptContext, RetryingExtractor
from .core.generation import ChargedGeneration
from .core.ledger import CreditLedger
from .core.pricing import generation_cost
from .core.reconciler import PaymentProcessor, PurchaseReconciler, ReconcileResult
from .core.schemas import ExtractionSchema
from .storage.repository import SqliteStore

logger = logging.getLogger("genledger.services")

T = TypeVar("T", bound=ExtractionSchema)


class WebhookVerifier(Protocol):
    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]: ...


class DebitOutcome(Enum):
    OK = "ok"
    INSUFFICIENT_CREDITS = "insufficient_credits"


@dataclass(frozen=True)
class DebitResult:
    outcome: DebitOutcome
    balance: int

    @property
    def ok(self) -> bool:
        return self.outcome is DebitOutcome.OK


@dataclass
class Services:
    """The wired core. One instance per process."""
    config: AppConfig
    store: SqliteStore
    ledger: CreditLedger
    entitlements: EntitlementView
    generation: ChargedGeneration
    extractor: Optional[RetryingExtractor] = None
    reconciler: Optional[PurchaseReconciler] = None
    webhook_verifier: Optional[WebhookVerifier] = None

    def open_account(self, account_id: str) -> Entitlement:
        """First authenticated access: open the account, grant starter credits once."""
        self.ledger.open_account(account_id)
        self.ledger.grant_starter(account_id, self.config.ledger.starter_credits)
        return self.entitlements.snapshot(account_id)

    def get_balance(self, account_id: str) -> int:
        return self.ledger.get_balance(account_id)

    def try_debit(self, account_id: str, amount: int = 1) -> DebitResult:
        result = self.ledger.try_debit(account_id, amount)
        outcome = DebitOutcome.OK if result.applied else DebitOutcome.INSUFFICIENT_CREDITS
        return DebitResult(outcome, result.balance)

    def refund(self, account_id: str, amount: int = 1) -> int:
        return self.ledger.refund(account_id, amount)

    def reconcile_purchase(self, session_id: str) -> ReconcileResult:
        """Client-initiated confirmation after the payment redirect."""
        return self._require_reconciler().reconcile(session_id)

    def handle_payment_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Processor push notification.

        Returns the acknowledgement body. Signature failures raise
        InvalidWebhook; processor lookup failures propagate so the event is
        redelivered.
        """
        reconciler = self._require_reconciler()
        if self.webhook_verifier is None:
            raise ServerMisconfigured([STRIPE_WEBHOOK_SECRET])
        event = self.webhook_verifier.verify_webhook(payload, signature)
        result = reconciler.handle_event(event)
        ack: Dict[str, Any] = {"received": True}
        if result is not None:
            ack.update(result.to_dict())
        return ack

    def extract(self, context: PromptContext, schema: Type[T], max_attempts: Optional[int] = None) -> ExtractionResult[T]:
        if self.extractor is None:
            raise ServerMisconfigured([OPENAI_API_KEY])
        return self.extractor.extract(context, schema, max_attempts=max_attempts)

    def generate(
        self,
        account_id: str,
        context: PromptContext,
        schema: Type[T],
        image_count: int = 0,
    ) -> ExtractionResult[T]:
        """Charge for one generation, then extract.

        Configuration is checked before the debit, and the debit happens
        before any model call. The debit is refunded if extraction raises.

        Raises:
            ServerMisconfigured: If no model client is configured
            InsufficientCredits: If the balance does not cover the cost
            ValueError: If image_count exceeds the largest pricing tier
        """
        if self.extractor is None:
            raise ServerMisconfigured([OPENAI_API_KEY])
        cost = generation_cost(image_count, self.config.ledger.credits_per_generation)
        return self.generation.run(
            account_id,
            lambda: self.extractor.extract(context, schema),
            cost=cost,
        )

    def _require_reconciler(self) -> PurchaseReconciler:
        if self.reconciler is None:
            raise ServerMisconfigured([STRIPE_SECRET_KEY])
        return self.reconciler


def build_services(
    config: Optional[AppConfig] = None,
    secrets: Optional[Secrets] = None,
    model_client: Optional[ModelClient] = None,
    payment_processor: Optional[PaymentProcessor] = None,
    initialize: bool = True,
) -> Services:
    """Construct every capability once.

    The OpenAI and Stripe adapters are built only when their credentials are
    present; operations needing a missing one raise ServerMisconfigured
    before doing any work.

    Args:
        config: Application configuration (defaults when omitted)
        secrets: Credentials (read from the environment when omitted)
        model_client: Injected ModelClient, bypassing the OpenAI adapter
        payment_processor: Injected PaymentProcessor, bypassing the Stripe adapter
        initialize: Create the storage schema if missing

    Returns:
        Wired Services
    """
    config = config or default_config()
    secrets = secrets or load_secrets()

    store = SqliteStore(config.storage.db_path)
    if initialize:
        store.initialize_schema()

    ledger = CreditLedger(store)
    entitlements = EntitlementView(ledger, config.ledger.credits_per_generation)
    services = Services(
        config=config,
        store=store,
        ledger=ledger,
        entitlements=entitlements,
        generation=ChargedGeneration(ledger, entitlements),
    )

    if model_client is None and secrets.openai_api_key:
        from .sdk.openai_client import OpenAIModelClient
        model_client = OpenAIModelClient(config.extractor.model, api_key=secrets.openai_api_key)
    if model_client is not None:
        services.extractor = RetryingExtractor(model_client, config.extractor.retry_policy())
    else:
        logger.warning(f"{OPENAI_API_KEY} not set; extraction disabled")

    if payment_processor is None and secrets.stripe_secret_key:
        from .sdk.stripe_processor import StripePaymentProcessor
        payment_processor = StripePaymentProcessor(
            secrets.stripe_secret_key,
            webhook_secret=secrets.stripe_webhook_secret,
            timeout=config.payments.timeout_seconds,
        )
    if payment_processor is not None:
        services.reconciler = PurchaseReconciler(
            payment_processor,
            ledger,
            default_credits=config.ledger.default_purchase_credits,
        )
        if hasattr(payment_processor, "verify_webhook"):
            services.webhook_verifier = payment_processor
    else:
        logger.warning(f"{STRIPE_SECRET_KEY} not set; purchase reconciliation disabled")

    return services
