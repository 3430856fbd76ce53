"""
Stripe-backed payment processor.

Looks up checkout sessions and verifies webhook signatures. Credentials are
passed in explicitly; nothing is stored on the stripe module globally.
"""

import json
import math
from typing import Any, Dict, Optional

import stripe

from ..config.loader import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from ..core.errors import InvalidWebhook, PaymentProcessorError, ServerMisconfigured
from ..core.reconciler import PaymentSession


def _parse_credits(raw: Any) -> Optional[int]:
    """Positive integer credits from session metadata, else None."""
    if raw is None:
        return None
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    credits = int(value)
    return credits if credits > 0 else None


def session_from_stripe(session: Any) -> PaymentSession:
    """Map a Stripe checkout session onto PaymentSession.

    The target account is ``client_reference_id``, falling back to the
    ``account_id`` then ``user_id`` metadata keys.
    """
    metadata = dict(session.metadata) if getattr(session, "metadata", None) else {}
    account_id = (
        getattr(session, "client_reference_id", None)
        or metadata.get("account_id")
        or metadata.get("user_id")
        or ""
    )
    account_id = str(account_id).strip()
    return PaymentSession(
        session_id=session.id,
        status=str(getattr(session, "payment_status", "") or ""),
        account_id=account_id or None,
        credits=_parse_credits(metadata.get("credits")),
        amount=getattr(session, "amount_total", None),
        currency=getattr(session, "currency", None),
    )


class StripePaymentProcessor:
    """PaymentProcessor over the Stripe API."""

    def __init__(
        self,
        api_key: Optional[str],
        webhook_secret: Optional[str] = None,
        timeout: float = 15.0,
        client: Optional[Any] = None,
    ):
        """Initialize the processor.

        Args:
            api_key: Stripe secret key; required unless ``client`` is given
            webhook_secret: Signing secret for push notifications
            timeout: Seconds before an API call is abandoned
            client: Pre-built StripeClient

        Raises:
            ServerMisconfigured: If no secret key is available
        """
        if client is None:
            if not api_key:
                raise ServerMisconfigured([STRIPE_SECRET_KEY])
            client = stripe.StripeClient(
                api_key,
                http_client=stripe.RequestsClient(timeout=timeout),
            )
        self.client = client
        self.webhook_secret = webhook_secret

    def fetch_session(self, session_id: str) -> PaymentSession:
        """Retrieve the authoritative state of a checkout session.

        Raises:
            PaymentProcessorError: If Stripe cannot be reached or rejects the lookup
        """
        try:
            session = self.client.v1.checkout.sessions.retrieve(session_id)
        except stripe.StripeError as e:
            raise PaymentProcessorError(f"Stripe session lookup failed for {session_id}: {e}") from e
        return session_from_stripe(session)

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify a webhook signature and return the event as a plain dict.

        Raises:
            ServerMisconfigured: If no webhook secret is configured
            InvalidWebhook: If the signature or payload is invalid
        """
        if not self.webhook_secret:
            raise ServerMisconfigured([STRIPE_WEBHOOK_SECRET])
        if not signature:
            raise InvalidWebhook("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise InvalidWebhook(f"Webhook verification failed: {e}") from e
        return json.loads(payload)
