"""
Database Migration System

Simple migration system for managing the ledger schema without external
dependencies. Supports both PostgreSQL and SQLite backends; the in-memory
store has no schema and every migration is a no-op for it.
"""

from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
import hashlib
import logging

from .errors import InvalidAmount
from .models import MAX_ACCOUNT_ID
from .money import Money
from .storage import LedgerStore, SQLLedgerStore


logger = logging.getLogger(__name__)


class Migration:
    """Represents a single database migration"""

    def __init__(self, version: int, name: str, statements: Dict[str, List[str]]):
        self.version = version
        self.name = name
        self.statements = statements
        self.applied_at: Optional[datetime] = None

    def statements_for(self, dialect: str) -> List[str]:
        return self.statements.get(dialect, [])

    def checksum(self, dialect: str) -> str:
        """md5 of the statements run for a dialect"""
        return hashlib.md5(";".join(self.statements_for(dialect)).encode()).hexdigest()

    def __str__(self) -> str:
        return f"Migration v{self.version:03d}: {self.name}"

    def __repr__(self) -> str:
        return f"Migration(version={self.version}, name='{self.name}')"


class MigrationManager:
    """Manages database migrations"""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.migrations: List[Migration] = []
        self._migration_table = "schema_migrations"
        self._init_migrations()
        if self.has_schema:
            self._ensure_migration_table()

    @property
    def has_schema(self) -> bool:
        return isinstance(self.store, SQLLedgerStore)

    def _init_migrations(self) -> None:
        """Initialize built-in migrations"""

        # v001: accounts, balance never negative
        self.add_migration(1, "Create accounts table", {
            "sqlite": ["""
                CREATE TABLE IF NOT EXISTS accounts (
                    id         INTEGER PRIMARY KEY CHECK (id > 0),
                    balance    TEXT    NOT NULL DEFAULT '0.00',
                    created_at TEXT    NOT NULL,
                    updated_at TEXT    NOT NULL
                )
            """],
            "postgresql": ["""
                CREATE TABLE IF NOT EXISTS accounts (
                    id         BIGINT        PRIMARY KEY CHECK (id > 0),
                    balance    NUMERIC(20,2) NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    created_at TIMESTAMPTZ   NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ   NOT NULL DEFAULT NOW()
                )
            """],
        })

        # v002: ledger entries, one row per applied external transaction id
        self.add_migration(2, "Create ledger_entries table", {
            "sqlite": ["""
                CREATE TABLE IF NOT EXISTS ledger_entries (
                    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id              INTEGER NOT NULL REFERENCES accounts(id),
                    external_transaction_id TEXT    NOT NULL UNIQUE,
                    source_type             TEXT    NOT NULL
                        CHECK (source_type IN ('game', 'server', 'payment')),
                    direction               TEXT    NOT NULL
                        CHECK (direction IN ('credit', 'debit')),
                    amount                  TEXT    NOT NULL,
                    applied_at              TEXT    NOT NULL
                )
            """],
            "postgresql": ["""
                CREATE TABLE IF NOT EXISTS ledger_entries (
                    id                      BIGSERIAL     PRIMARY KEY,
                    account_id              BIGINT        NOT NULL REFERENCES accounts(id),
                    external_transaction_id VARCHAR(255)  NOT NULL UNIQUE,
                    source_type             VARCHAR(50)   NOT NULL
                        CHECK (source_type IN ('game', 'server', 'payment')),
                    direction               VARCHAR(10)   NOT NULL
                        CHECK (direction IN ('credit', 'debit')),
                    amount                  NUMERIC(20,2) NOT NULL CHECK (amount > 0),
                    applied_at              TIMESTAMPTZ   NOT NULL DEFAULT NOW()
                )
            """],
        })

        # v003: history lookups by account
        index_sql = """
            CREATE INDEX IF NOT EXISTS idx_ledger_entries_account_id
            ON ledger_entries(account_id)
        """
        self.add_migration(3, "Index ledger entries by account", {
            "sqlite": [index_sql],
            "postgresql": [index_sql],
        })

    def _ensure_migration_table(self) -> None:
        """Ensure the migration tracking table exists"""
        with self.store.atomic() as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._migration_table} (
                    version    INTEGER PRIMARY KEY,
                    name       TEXT NOT NULL,
                    checksum   TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
            """)

    def add_migration(self, version: int, name: str, statements: Dict[str, List[str]]) -> None:
        """Add a migration to the manager"""
        migration = Migration(version, name, statements)
        self.migrations.append(migration)
        # Keep migrations sorted by version
        self.migrations.sort(key=lambda m: m.version)

    def get_applied_migrations(self) -> List[Dict[str, Any]]:
        """Get list of applied migrations"""
        if not self.has_schema:
            return []
        with self.store.atomic() as cursor:
            cursor.execute(f"""
                SELECT version, name, checksum, applied_at
                FROM {self._migration_table} ORDER BY version
            """)
            return [dict(row) for row in cursor.fetchall()]

    def get_current_version(self) -> int:
        """Get the current database version"""
        versions = [m["version"] for m in self.get_applied_migrations()]
        return max(versions) if versions else 0

    def get_pending_migrations(self, target_version: Optional[int] = None) -> List[Migration]:
        """Get list of pending migrations"""
        if not self.has_schema:
            return []

        current_version = self.get_current_version()
        max_version = target_version or max((m.version for m in self.migrations), default=0)

        return [
            migration for migration in self.migrations
            if current_version < migration.version <= max_version
        ]

    def migrate_up(self, target_version: Optional[int] = None) -> List[Migration]:
        """Apply pending migrations up to target version"""
        if not self.has_schema:
            logger.info("Store %s has no schema, skipping migrations", self.store.dialect)
            return []

        pending = self.get_pending_migrations(target_version)
        applied = []

        if not pending:
            logger.info("No pending migrations to apply")
            return applied

        logger.info(f"Applying {len(pending)} pending migrations")
        dialect = self.store.dialect
        ph = self.store.placeholder

        for migration in pending:
            try:
                logger.info(f"Applying {migration}")

                with self.store.atomic() as cursor:
                    for statement in migration.statements_for(dialect):
                        cursor.execute(statement)

                    cursor.execute(
                        f"""
                        INSERT INTO {self._migration_table} (version, name, checksum, applied_at)
                        VALUES ({ph}, {ph}, {ph}, {ph})
                        """,
                        (
                            migration.version,
                            migration.name,
                            migration.checksum(dialect),
                            datetime.now(timezone.utc).isoformat(),
                        ),
                    )

                migration.applied_at = datetime.now(timezone.utc)
                applied.append(migration)
                logger.info(f"Successfully applied {migration}")

            except Exception as e:
                logger.error(f"Failed to apply {migration}: {e}")
                raise RuntimeError(f"Migration failed: {migration}") from e

        logger.info(f"Successfully applied {len(applied)} migrations")
        return applied

    def validate_migrations(self) -> bool:
        """Validate that applied migrations match expected checksums"""
        dialect = self.store.dialect

        for applied_migration in self.get_applied_migrations():
            version = applied_migration["version"]
            stored_checksum = applied_migration.get("checksum", "")

            migration = next((m for m in self.migrations if m.version == version), None)
            if not migration:
                logger.warning(f"Applied migration v{version} not found in definitions")
                continue

            expected_checksum = migration.checksum(dialect)
            if stored_checksum != expected_checksum:
                logger.error(f"Checksum mismatch for v{version}: expected {expected_checksum}, got {stored_checksum}")
                return False

        logger.info("All applied migrations validated successfully")
        return True

    def get_migration_status(self) -> Dict[str, Any]:
        """Get detailed migration status"""
        pending = self.get_pending_migrations()

        return {
            "dialect": self.store.dialect,
            "current_version": self.get_current_version(),
            "latest_version": max((m.version for m in self.migrations), default=0),
            "pending_count": len(pending),
            "applied_count": len(self.get_applied_migrations()),
            "pending_migrations": [
                {"version": m.version, "name": m.name} for m in pending
            ],
            "needs_migration": self.has_schema and len(pending) > 0,
        }


def parse_seed_accounts(value: str) -> Dict[int, Money]:
    """
    Parse "1:100.00,2:50.00" into {1: Money("100.00"), 2: Money("50.00")}

    Raises:
        ValueError: On a malformed pair, a non-positive id or a negative balance
    """
    accounts: Dict[int, Money] = {}
    for pair in filter(None, (p.strip() for p in value.split(","))):
        account_id, sep, balance = pair.partition(":")
        if not sep:
            raise ValueError(f"Seed account must be 'id:balance', got {pair!r}")
        parsed_id = int(account_id)
        try:
            opening = Money.parse(balance)
        except InvalidAmount as e:
            raise ValueError(f"Invalid seed balance in {pair!r}") from e
        if not 0 < parsed_id <= MAX_ACCOUNT_ID or opening.is_negative():
            raise ValueError(f"Invalid seed account {pair!r}")
        accounts[parsed_id] = opening
    return accounts


def bootstrap(store: LedgerStore, auto_migrate: bool = True,
              seed_accounts: str = "") -> Dict[str, Any]:
    """Run pending migrations and create the configured seed accounts"""
    manager = MigrationManager(store)
    applied = manager.migrate_up() if auto_migrate else []

    created = []
    for account_id, opening in parse_seed_accounts(seed_accounts).items():
        if store.ensure_account(account_id, opening):
            created.append(account_id)

    logger.info(
        "Bootstrap complete: %d migrations applied, seeded accounts %s",
        len(applied), created,
    )
    return {"migrations_applied": len(applied), "accounts_created": created}
