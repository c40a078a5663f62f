"""
Wallet Error Taxonomy

Every failure the balance-mutation core can report. Validation errors are
raised before storage is touched; storage errors are raised only after the
unit of work has been rolled back.
"""

from typing import Optional


class WalletError(Exception):
    """Base class for all wallet ledger errors"""


class InvalidRequest(WalletError):
    """Malformed input; never reaches storage"""


class InvalidAmount(InvalidRequest):
    """Amount is not a well-formed, strictly positive decimal"""

    def __init__(self, value, reason: str = "invalid amount"):
        self.value = value
        self.reason = reason
        super().__init__(f"{reason}: {value!r}")


class InvalidState(InvalidRequest):
    """Transaction state is not one of win/lose"""

    def __init__(self, state):
        self.state = state
        super().__init__(f"state must be 'win' or 'lose', got {state!r}")


class AccountNotFound(WalletError):
    def __init__(self, account_id: int):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class InsufficientBalance(WalletError):
    """Raised when a debit would take the balance below zero."""

    def __init__(self, account_id: int, requested, available):
        self.account_id = account_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Account {account_id}: requested {requested}, available {available}"
        )


class DuplicateTransaction(WalletError):
    """Raised when the external transaction id has already been applied."""

    def __init__(self, external_transaction_id: str):
        self.external_transaction_id = external_transaction_id
        super().__init__(
            f"Transaction already processed: {external_transaction_id}"
        )


class PersistenceError(WalletError):
    """
    Storage or transport failure. The transaction was not applied and the
    identical request may be resubmitted safely.
    """

    def __init__(self, message: str, account_id: Optional[int] = None):
        self.account_id = account_id
        super().__init__(message)


class TransactionTimeout(PersistenceError):
    """The unit of work exceeded its deadline and was rolled back"""

    def __init__(self, account_id: Optional[int], timeout: Optional[float]):
        self.timeout = timeout
        target = f" for account {account_id}" if account_id is not None else ""
        super().__init__(
            f"Unit of work{target} exceeded {timeout}s deadline",
            account_id=account_id,
        )
