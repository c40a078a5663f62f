"""
Domain Records

Accounts, ledger entries and the request/result types exchanged with the
balance mutation engine. All monetary values are Money, never float.
"""

from datetime import datetime
from dataclasses import dataclass
from typing import Dict, Any, Optional, Union
from enum import Enum

from .money import Money


# Account ids are BIGINT / SQLite INTEGER
MAX_ACCOUNT_ID = 2 ** 63 - 1

# ledger_entries.external_transaction_id is VARCHAR(255)
MAX_TRANSACTION_ID_LENGTH = 255


class Direction(Enum):
    """Effect of a ledger entry on the balance"""
    CREDIT = "credit"
    DEBIT = "debit"


class TransactionState(Enum):
    """Inbound transaction state as sent by callers"""
    WIN = "win"
    LOSE = "lose"

    @property
    def direction(self) -> Direction:
        return Direction.CREDIT if self is TransactionState.WIN else Direction.DEBIT


class SourceType(Enum):
    """Where a transaction originated"""
    GAME = "game"
    SERVER = "server"
    PAYMENT = "payment"


@dataclass
class Account:
    """User balance holder. Rows are seeded externally and never deleted."""
    id: int
    balance: Money
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "balance": self.balance.to_string(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class LedgerEntry:
    """
    Immutable record of one applied credit or debit.

    external_transaction_id is unique across all entries; the store enforces
    it as a constraint, not only as an application check.
    """
    id: int
    account_id: int
    external_transaction_id: str
    source_type: SourceType
    direction: Direction
    amount: Money
    applied_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "transaction_id": self.external_transaction_id,
            "source_type": self.source_type.value,
            "direction": self.direction.value,
            "amount": self.amount.to_string(),
            "applied_at": self.applied_at.isoformat(),
        }


@dataclass
class TransactionRequest:
    """Raw inbound mutation request; validated by TransactionProcessor"""
    state: Union[str, TransactionState, Direction]
    amount: Union[str, Money]
    transaction_id: str
    source_type: Union[str, SourceType]


class TransactionOutcome(Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


@dataclass(frozen=True)
class TransactionResult:
    """Successful outcome of TransactionProcessor.process"""
    outcome: TransactionOutcome
    account_id: int
    transaction_id: str
    balance: Optional[Money] = None

    @property
    def is_applied(self) -> bool:
        return self.outcome == TransactionOutcome.APPLIED
