"""
Transaction Processing Module

Validates win/lose requests and applies them through the ledger store.
The processor keeps no state of its own: atomicity, per-account ordering
and exactly-once application are guaranteed by the store's unit of work.
"""

from typing import Optional, Union

from .errors import (
    InvalidAmount, InvalidRequest, InvalidState, DuplicateTransaction,
)
from .logging_config import get_logger, log_action
from .models import (
    Direction, SourceType, TransactionRequest, TransactionState,
    TransactionOutcome, TransactionResult, MAX_ACCOUNT_ID, MAX_TRANSACTION_ID_LENGTH,
)
from .money import Money
from .storage import LedgerStore


class TransactionProcessor:
    """
    Balance mutation engine.

    Rejects malformed requests before any storage interaction, then delegates
    to LedgerStore.apply_transaction. A replayed external transaction id is
    reported as ALREADY_APPLIED rather than as an error.
    """

    def __init__(self, store: LedgerStore, timeout: Optional[float] = None):
        self.store = store
        self.timeout = timeout
        self.logger = get_logger("wallet_ledger.transactions")

    def process(self, account_id: int, request: TransactionRequest) -> TransactionResult:
        """
        Apply a transaction request to an account

        Raises:
            InvalidRequest: account id, transaction id or source type is invalid
            InvalidAmount: amount is malformed or not strictly positive
            InvalidState: state is not win/lose
            AccountNotFound, InsufficientBalance, PersistenceError: from the store
        """
        account_id = self._validate_account_id(account_id)
        amount = self._validate_amount(request.amount)
        direction = self._validate_direction(request.state)
        transaction_id = self._validate_transaction_id(request.transaction_id)
        source_type = self._validate_source_type(request.source_type)

        try:
            new_balance = self.store.apply_transaction(
                account_id=account_id,
                external_transaction_id=transaction_id,
                direction=direction,
                amount=amount,
                source_type=source_type,
                timeout=self.timeout,
            )
        except DuplicateTransaction:
            log_action(
                self.logger, "info", f"Transaction already processed: {transaction_id}",
                account_id=account_id, action="replay_transaction",
                resource=f"transaction:{transaction_id}",
            )
            return TransactionResult(
                outcome=TransactionOutcome.ALREADY_APPLIED,
                account_id=account_id,
                transaction_id=transaction_id,
            )

        log_action(
            self.logger, "info", f"Transaction applied: {direction.value}",
            account_id=account_id, action="apply_transaction",
            resource=f"transaction:{transaction_id}",
            extra={
                "direction": direction.value,
                "amount": amount.to_string(),
                "source_type": source_type.value,
                "balance": new_balance.to_string(),
            }
        )
        return TransactionResult(
            outcome=TransactionOutcome.APPLIED,
            account_id=account_id,
            transaction_id=transaction_id,
            balance=new_balance,
        )

    @staticmethod
    def _validate_account_id(account_id) -> int:
        if isinstance(account_id, bool) or not isinstance(account_id, int):
            raise InvalidRequest(f"invalid account id: {account_id!r}")
        if not 0 < account_id <= MAX_ACCOUNT_ID:
            raise InvalidRequest(f"invalid account id: {account_id!r}")
        return account_id

    @staticmethod
    def _validate_amount(amount: Union[str, Money]) -> Money:
        money = amount if isinstance(amount, Money) else Money.parse(amount)
        if not money.is_positive():
            raise InvalidAmount(amount, "amount must be positive")
        return money

    @staticmethod
    def _validate_direction(state: Union[str, TransactionState, Direction]) -> Direction:
        if isinstance(state, Direction):
            return state
        if isinstance(state, TransactionState):
            return state.direction
        try:
            return TransactionState(state).direction
        except ValueError:
            raise InvalidState(state)

    @staticmethod
    def _validate_transaction_id(transaction_id: str) -> str:
        if not isinstance(transaction_id, str) or not transaction_id.strip():
            raise InvalidRequest("transactionId is required")
        if len(transaction_id) > MAX_TRANSACTION_ID_LENGTH:
            raise InvalidRequest(
                f"transactionId exceeds {MAX_TRANSACTION_ID_LENGTH} characters"
            )
        return transaction_id

    @staticmethod
    def _validate_source_type(source_type: Union[str, SourceType]) -> SourceType:
        if isinstance(source_type, SourceType):
            return source_type
        try:
            return SourceType(source_type)
        except ValueError:
            raise InvalidRequest(f"invalid Source-Type: {source_type!r}")
