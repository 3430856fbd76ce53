"""
Core modules for genledger.

This package contains the credit ledger, purchase reconciliation,
entitlement checks, and the model-output repair and extraction pipeline.
"""
