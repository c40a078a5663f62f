"""
Ledger Storage Module

Provides the abstract ledger store and implementations for in-memory
(testing), SQLite (single node persistence) and PostgreSQL (production).

Every store exposes one mutating operation, apply_transaction, which locks
the account, computes the new balance, writes the balance together with its
ledger entry and commits, all as a single unit of work. Amounts are stored
as exact decimals (TEXT in SQLite, NUMERIC(20,2) in PostgreSQL).
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import threading
import logging
import dataclasses
from pathlib import Path
from contextlib import contextmanager

from .errors import (
    WalletError, AccountNotFound, InsufficientBalance, DuplicateTransaction,
    InvalidAmount, PersistenceError, TransactionTimeout,
)
from .models import Account, LedgerEntry, Direction, SourceType, MAX_ACCOUNT_ID
from .money import Money


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _acquire(lock, timeout: Optional[float]) -> bool:
    """Acquire a lock or semaphore, waiting at most timeout seconds"""
    if timeout is None:
        return lock.acquire()
    return lock.acquire(timeout=max(timeout, 0))


def compute_new_balance(account_id: int, current: Money, direction: Direction,
                        amount: Money) -> Money:
    """
    Candidate balance after applying amount in the given direction

    Raises:
        InsufficientBalance: If the candidate balance would be negative
    """
    if direction == Direction.CREDIT:
        candidate = current + amount
    else:
        candidate = current - amount

    if candidate.is_negative():
        logger.warning(
            "Insufficient balance: account=%s requested=%s available=%s",
            account_id, amount, current,
        )
        raise InsufficientBalance(account_id, amount, current)
    return candidate


class LedgerStore(ABC):
    """Abstract interface for ledger backends"""

    dialect = "abstract"

    @abstractmethod
    def get_account(self, account_id: int) -> Account:
        """Load an account; raises AccountNotFound"""
        pass

    def get_balance(self, account_id: int) -> Money:
        """Current balance of an account; raises AccountNotFound"""
        return self.get_account(account_id).balance

    @abstractmethod
    def apply_transaction(self, account_id: int, external_transaction_id: str,
                          direction: Direction, amount: Money,
                          source_type: SourceType,
                          timeout: Optional[float] = None) -> Money:
        """
        Atomically apply a credit or debit and record its ledger entry

        Args:
            account_id: Target account
            external_transaction_id: Caller supplied id, unique across the ledger
            direction: CREDIT or DEBIT
            amount: Strictly positive amount
            source_type: Origin of the transaction
            timeout: Deadline in seconds for the whole unit of work

        Returns:
            The committed balance

        Raises:
            AccountNotFound, InsufficientBalance, DuplicateTransaction,
            PersistenceError (TransactionTimeout on deadline expiry)
        """
        pass

    @abstractmethod
    def get_entry(self, external_transaction_id: str) -> Optional[LedgerEntry]:
        """Find the ledger entry for an external transaction id"""
        pass

    @abstractmethod
    def list_entries(self, account_id: int, limit: int = 50,
                     offset: int = 0) -> List[LedgerEntry]:
        """Ledger entries of an account, newest first"""
        pass

    @abstractmethod
    def ensure_account(self, account_id: int, opening_balance: Money) -> bool:
        """
        Bootstrap helper: create the account if absent.
        Never changes the balance of an existing account.

        Returns:
            True if the account was created
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release connections"""
        pass

    @staticmethod
    def _check_amount(amount: Money) -> None:
        if not isinstance(amount, Money) or not amount.is_positive():
            raise InvalidAmount(amount, "amount must be positive")

    @staticmethod
    def _check_addressable(account_id: int) -> None:
        """Ids beyond the 64-bit key range cannot exist in any store"""
        if account_id > MAX_ACCOUNT_ID:
            raise AccountNotFound(account_id)


class InMemoryLedgerStore(LedgerStore):
    """
    In-memory store for testing.

    A lock per account serializes mutations of that account only. The store
    lock guards the tables and makes the uniqueness check and the writes of
    balance and entry a single step.
    """

    dialect = "memory"

    def __init__(self):
        self._accounts: Dict[int, Account] = {}
        self._entries: List[LedgerEntry] = []
        self._entries_by_external_id: Dict[str, LedgerEntry] = {}
        self._account_locks: Dict[int, threading.Lock] = {}
        self._lock = threading.RLock()

    def _account_lock(self, account_id: int) -> threading.Lock:
        with self._lock:
            if account_id not in self._accounts:
                raise AccountNotFound(account_id)
            return self._account_locks.setdefault(account_id, threading.Lock())

    def get_account(self, account_id: int) -> Account:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise AccountNotFound(account_id)
            return dataclasses.replace(account)

    def apply_transaction(self, account_id: int, external_transaction_id: str,
                          direction: Direction, amount: Money,
                          source_type: SourceType,
                          timeout: Optional[float] = None) -> Money:
        self._check_amount(amount)
        account_lock = self._account_lock(account_id)

        if not _acquire(account_lock, timeout):
            logger.warning("Deadline expired waiting for account %s", account_id)
            raise TransactionTimeout(account_id, timeout)
        try:
            current = self.get_account(account_id).balance
            new_balance = compute_new_balance(account_id, current, direction, amount)

            with self._lock:
                if external_transaction_id in self._entries_by_external_id:
                    raise DuplicateTransaction(external_transaction_id)

                now = _utcnow()
                entry = LedgerEntry(
                    id=len(self._entries) + 1,
                    account_id=account_id,
                    external_transaction_id=external_transaction_id,
                    source_type=source_type,
                    direction=direction,
                    amount=amount,
                    applied_at=now,
                )
                account = self._accounts[account_id]
                account.balance = new_balance
                account.updated_at = now
                self._entries.append(entry)
                self._entries_by_external_id[external_transaction_id] = entry
        finally:
            account_lock.release()

        return new_balance

    def get_entry(self, external_transaction_id: str) -> Optional[LedgerEntry]:
        with self._lock:
            return self._entries_by_external_id.get(external_transaction_id)

    def list_entries(self, account_id: int, limit: int = 50,
                     offset: int = 0) -> List[LedgerEntry]:
        with self._lock:
            if account_id not in self._accounts:
                raise AccountNotFound(account_id)
            entries = [e for e in reversed(self._entries) if e.account_id == account_id]
            return entries[offset:offset + limit]

    def ensure_account(self, account_id: int, opening_balance: Money) -> bool:
        with self._lock:
            if account_id in self._accounts:
                return False
            now = _utcnow()
            self._accounts[account_id] = Account(
                id=account_id, balance=opening_balance,
                created_at=now, updated_at=now,
            )
            return True

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLLedgerStore(LedgerStore):
    """
    Shared unit-of-work protocol for SQL backends.

    Subclasses provide the driver specifics: parameter placeholder, row lock
    clause, cursor contexts and classification of driver errors.
    """

    placeholder = "?"
    lock_clause = ""

    driver_errors: tuple = ()

    @abstractmethod
    def atomic(self, timeout: Optional[float] = None,
               account_id: Optional[int] = None):
        """Context manager yielding a cursor inside a write transaction"""
        pass

    @abstractmethod
    def _read_cursor(self):
        """Context manager yielding a cursor for read-only queries"""
        pass

    @abstractmethod
    def _is_unique_violation(self, error: Exception) -> bool:
        pass

    @abstractmethod
    def _is_timeout(self, error: Exception) -> bool:
        pass

    @abstractmethod
    def _to_db_amount(self, money: Money) -> Any:
        pass

    @abstractmethod
    def _to_db_timestamp(self, value: datetime) -> Any:
        pass

    @staticmethod
    def _from_db_amount(value: Any) -> Money:
        return Money(Decimal(str(value)))

    @staticmethod
    def _from_db_timestamp(value: Any) -> datetime:
        if isinstance(value, datetime):
            parsed = value
        else:
            parsed = datetime.fromisoformat(str(value))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _account_from_row(self, row) -> Account:
        return Account(
            id=int(row["id"]),
            balance=self._from_db_amount(row["balance"]),
            created_at=self._from_db_timestamp(row["created_at"]),
            updated_at=self._from_db_timestamp(row["updated_at"]),
        )

    def _entry_from_row(self, row) -> LedgerEntry:
        return LedgerEntry(
            id=int(row["id"]),
            account_id=int(row["account_id"]),
            external_transaction_id=row["external_transaction_id"],
            source_type=SourceType(row["source_type"]),
            direction=Direction(row["direction"]),
            amount=self._from_db_amount(row["amount"]),
            applied_at=self._from_db_timestamp(row["applied_at"]),
        )

    def _query(self, sql: str, params: tuple = ()) -> List[Any]:
        try:
            with self._read_cursor() as cursor:
                cursor.execute(sql, params)
                return cursor.fetchall()
        except self.driver_errors as e:
            logger.exception("Query failed: %s", sql.split()[0])
            raise PersistenceError(f"query failed: {e}") from e

    def get_account(self, account_id: int) -> Account:
        self._check_addressable(account_id)
        ph = self.placeholder
        rows = self._query(
            f"SELECT id, balance, created_at, updated_at FROM accounts WHERE id = {ph}",
            (account_id,),
        )
        if not rows:
            raise AccountNotFound(account_id)
        return self._account_from_row(rows[0])

    def get_balance(self, account_id: int) -> Money:
        self._check_addressable(account_id)
        ph = self.placeholder
        rows = self._query(f"SELECT balance FROM accounts WHERE id = {ph}", (account_id,))
        if not rows:
            raise AccountNotFound(account_id)
        return self._from_db_amount(rows[0]["balance"])

    def apply_transaction(self, account_id: int, external_transaction_id: str,
                          direction: Direction, amount: Money,
                          source_type: SourceType,
                          timeout: Optional[float] = None) -> Money:
        self._check_amount(amount)
        self._check_addressable(account_id)
        ph = self.placeholder

        try:
            with self.atomic(timeout=timeout, account_id=account_id) as cursor:
                cursor.execute(
                    f"SELECT balance FROM accounts WHERE id = {ph}{self.lock_clause}",
                    (account_id,),
                )
                row = cursor.fetchone()
                if row is None:
                    raise AccountNotFound(account_id)

                current = self._from_db_amount(row["balance"])
                new_balance = compute_new_balance(account_id, current, direction, amount)
                now = self._to_db_timestamp(_utcnow())

                cursor.execute(
                    f"UPDATE accounts SET balance = {ph}, updated_at = {ph} WHERE id = {ph}",
                    (self._to_db_amount(new_balance), now, account_id),
                )
                try:
                    cursor.execute(
                        f"""
                        INSERT INTO ledger_entries (
                            account_id, external_transaction_id, source_type,
                            direction, amount, applied_at
                        ) VALUES ({ph}, {ph}, {ph}, {ph}, {ph}, {ph})
                        """,
                        (
                            account_id,
                            external_transaction_id,
                            source_type.value,
                            direction.value,
                            self._to_db_amount(amount),
                            now,
                        ),
                    )
                except self.driver_errors as e:
                    if self._is_unique_violation(e):
                        raise DuplicateTransaction(external_transaction_id) from e
                    raise
        except WalletError:
            raise
        except self.driver_errors as e:
            if self._is_timeout(e):
                logger.warning("Deadline expired for account %s: %s", account_id, e)
                raise TransactionTimeout(account_id, timeout) from e
            logger.exception(
                "Failed to apply transaction %s to account %s",
                external_transaction_id, account_id,
            )
            raise PersistenceError(
                f"failed to apply transaction: {e}", account_id=account_id
            ) from e

        return new_balance

    def get_entry(self, external_transaction_id: str) -> Optional[LedgerEntry]:
        ph = self.placeholder
        rows = self._query(
            f"""
            SELECT id, account_id, external_transaction_id, source_type,
                   direction, amount, applied_at
            FROM ledger_entries WHERE external_transaction_id = {ph}
            """,
            (external_transaction_id,),
        )
        return self._entry_from_row(rows[0]) if rows else None

    def list_entries(self, account_id: int, limit: int = 50,
                     offset: int = 0) -> List[LedgerEntry]:
        self._check_addressable(account_id)
        ph = self.placeholder
        if not self._query(f"SELECT 1 FROM accounts WHERE id = {ph}", (account_id,)):
            raise AccountNotFound(account_id)

        rows = self._query(
            f"""
            SELECT id, account_id, external_transaction_id, source_type,
                   direction, amount, applied_at
            FROM ledger_entries WHERE account_id = {ph}
            ORDER BY id DESC LIMIT {ph} OFFSET {ph}
            """,
            (account_id, limit, offset),
        )
        return [self._entry_from_row(row) for row in rows]

    def ensure_account(self, account_id: int, opening_balance: Money) -> bool:
        ph = self.placeholder
        now = self._to_db_timestamp(_utcnow())
        try:
            with self.atomic() as cursor:
                cursor.execute(
                    f"""
                    INSERT INTO accounts (id, balance, created_at, updated_at)
                    VALUES ({ph}, {ph}, {ph}, {ph})
                    ON CONFLICT (id) DO NOTHING
                    """,
                    (account_id, self._to_db_amount(opening_balance), now, now),
                )
                return cursor.rowcount == 1
        except self.driver_errors as e:
            logger.exception("Failed to seed account %s", account_id)
            raise PersistenceError(f"failed to seed account: {e}", account_id=account_id) from e


class SQLiteLedgerStore(SQLLedgerStore):
    """
    SQLite store for single node persistence.

    One shared connection guarded by a lock; each unit of work runs under
    BEGIN IMMEDIATE. SQLite serializes writers database-wide, which is a
    stronger ordering than the per-account guarantee required.
    """

    dialect = "sqlite"
    placeholder = "?"
    lock_clause = ""
    driver_errors = (sqlite3.Error,)

    def __init__(self, db_path: Union[str, Path] = ":memory:", busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        # isolation_level=None: transactions are opened explicitly with BEGIN IMMEDIATE
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None,
            timeout=busy_timeout,
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self._lock:
            self._connection.execute("PRAGMA foreign_keys = ON")
            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    @contextmanager
    def atomic(self, timeout: Optional[float] = None,
               account_id: Optional[int] = None):
        if not _acquire(self._lock, timeout):
            logger.warning("Deadline expired waiting for the database lock")
            raise TransactionTimeout(account_id, timeout)
        try:
            cursor = self._connection.cursor()
            try:
                cursor.execute("BEGIN IMMEDIATE")
                try:
                    yield cursor
                    cursor.execute("COMMIT")
                except BaseException:
                    if self._connection.in_transaction:
                        self._connection.execute("ROLLBACK")
                    raise
            finally:
                cursor.close()
        finally:
            self._lock.release()

    @contextmanager
    def _read_cursor(self):
        with self._lock:
            cursor = self._connection.cursor()
            try:
                yield cursor
            finally:
                cursor.close()

    def _is_unique_violation(self, error: Exception) -> bool:
        return isinstance(error, sqlite3.IntegrityError) and "UNIQUE" in str(error)

    def _is_timeout(self, error: Exception) -> bool:
        return isinstance(error, sqlite3.OperationalError) and "locked" in str(error)

    def _to_db_amount(self, money: Money) -> str:
        return money.to_string()

    def _to_db_timestamp(self, value: datetime) -> str:
        return value.isoformat()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLLedgerStore(SQLLedgerStore):
    """
    PostgreSQL store with row-level locking.

    The account row is locked with SELECT ... FOR UPDATE so mutations of one
    account are serialized while other accounts proceed in parallel. The
    deadline is enforced with SET LOCAL lock_timeout / statement_timeout.
    """

    dialect = "postgresql"
    placeholder = "%s"
    lock_clause = " FOR UPDATE"

    def __init__(self, connection_string: str, pool_size: int = 5):
        try:
            import psycopg2
            import psycopg2.extras
            import psycopg2.pool
            import psycopg2.errorcodes
            self.psycopg2 = psycopg2
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self.driver_errors = (psycopg2.Error,)
        self._unique_violation = psycopg2.errorcodes.UNIQUE_VIOLATION
        self._timeout_codes = {
            psycopg2.errorcodes.LOCK_NOT_AVAILABLE,
            psycopg2.errorcodes.QUERY_CANCELED,
        }
        # ThreadedConnectionPool fails instead of waiting when exhausted
        self._slots = threading.BoundedSemaphore(pool_size)
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            1, pool_size, connection_string,
            cursor_factory=psycopg2.extras.RealDictCursor,
        )

    @contextmanager
    def _connection(self, timeout: Optional[float] = None,
                    account_id: Optional[int] = None):
        if not _acquire(self._slots, timeout):
            logger.warning("Deadline expired waiting for a database connection")
            raise TransactionTimeout(account_id, timeout)
        try:
            conn = self._pool.getconn()
            try:
                yield conn
            finally:
                self._pool.putconn(conn, close=bool(conn.closed))
        finally:
            self._slots.release()

    def _rollback(self, conn) -> None:
        try:
            conn.rollback()
        except self.psycopg2.Error as e:
            logger.warning("Rollback failed, discarding connection: %s", e)
            conn.close()

    @contextmanager
    def atomic(self, timeout: Optional[float] = None,
               account_id: Optional[int] = None):
        with self._connection(timeout, account_id) as conn:
            try:
                with conn.cursor() as cursor:
                    if timeout is not None:
                        millis = f"{max(int(timeout * 1000), 1)}ms"
                        cursor.execute("SET LOCAL lock_timeout = %s", (millis,))
                        cursor.execute("SET LOCAL statement_timeout = %s", (millis,))
                    yield cursor
                conn.commit()
            except BaseException:
                self._rollback(conn)
                raise

    @contextmanager
    def _read_cursor(self):
        with self._connection() as conn:
            try:
                with conn.cursor() as cursor:
                    yield cursor
            finally:
                self._rollback(conn)

    def _is_unique_violation(self, error: Exception) -> bool:
        return getattr(error, "pgcode", None) == self._unique_violation

    def _is_timeout(self, error: Exception) -> bool:
        return getattr(error, "pgcode", None) in self._timeout_codes

    def _to_db_amount(self, money: Money) -> Decimal:
        return money.amount

    def _to_db_timestamp(self, value: datetime) -> datetime:
        return value

    def close(self) -> None:
        """Close all pooled PostgreSQL connections"""
        if self._pool:
            self._pool.closeall()
            self._pool = None


def create_store(database_url: str, pool_size: int = 5,
                 busy_timeout: float = 5.0) -> LedgerStore:
    """
    Select a backend from a database URL

    memory://                 in-memory store
    sqlite:///path/to/file.db SQLite (sqlite:///:memory: for a private database)
    postgresql://...          PostgreSQL
    """
    if database_url.startswith("memory:"):
        return InMemoryLedgerStore()
    if database_url.startswith("sqlite:///"):
        path = database_url[len("sqlite:///"):] or ":memory:"
        return SQLiteLedgerStore(path, busy_timeout=busy_timeout)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLLedgerStore(database_url, pool_size=pool_size)
    raise ValueError(f"Unsupported database URL: {database_url}")
