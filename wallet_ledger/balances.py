"""
Balance Query Module

Read-only access to balances and ledger history. No caching: every call
reads the store.
"""

from typing import List

from .models import LedgerEntry
from .money import Money
from .storage import LedgerStore


class BalanceQuery:
    """Read side of the wallet"""

    def __init__(self, store: LedgerStore):
        self.store = store

    def query(self, account_id: int) -> Money:
        """Current balance; raises AccountNotFound"""
        return self.store.get_balance(account_id)

    def history(self, account_id: int, limit: int = 50, offset: int = 0) -> List[LedgerEntry]:
        """Ledger entries of an account, newest first"""
        return self.store.list_entries(account_id, limit=limit, offset=offset)
