"""
genledger - credit ledger and model-output normalization core.

Owns per-account generation credits, reconciles purchases from the payment
processor exactly once, and turns free-form model output into validated,
typed values.
"""

__version__ = "0.1.0"
