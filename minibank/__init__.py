"""
MiniBank

A minimal banking ledger: one account per user, deposits and transfers,
with balances that always match the transaction history they came from.
"""

__version__ = "1.0.0"
