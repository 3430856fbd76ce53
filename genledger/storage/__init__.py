"""
Storage layer for genledger.

sqlite3-backed balance store, purchase records and the ledger journal.
"""
