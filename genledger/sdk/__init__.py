"""
SDK adapters for genledger.

Concrete ModelClient and PaymentProcessor implementations over the OpenAI
and Stripe client libraries.
"""

from .openai_client import OpenAIModelClient
from .stripe_processor import StripePaymentProcessor

__all__ = ["OpenAIModelClient", "StripePaymentProcessor"]
