"""
Wallet Ledger Service

Credits and debits user balances through idempotent transactions with
exact Decimal arithmetic, per-account serialization and a unique ledger
row per external transaction id.
"""

__version__ = "1.0.0"
