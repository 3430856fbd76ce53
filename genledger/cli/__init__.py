"""
Operator CLI for genledger.
"""
