"""
Tests for schema migrations and bootstrap seeding
"""

import pytest
import sqlite3

from wallet_ledger.migrations import MigrationManager, bootstrap, parse_seed_accounts
from wallet_ledger.money import Money
from wallet_ledger.storage import InMemoryLedgerStore, SQLiteLedgerStore


class TestMigrationManager:
    """Test migrations against SQLite"""

    def setup_method(self):
        self.store = SQLiteLedgerStore(":memory:")
        self.manager = MigrationManager(self.store)

    def teardown_method(self):
        self.store.close()

    def test_fresh_database_has_all_pending(self):
        assert self.manager.get_current_version() == 0
        assert [m.version for m in self.manager.get_pending_migrations()] == [1, 2, 3]

    def test_migrate_up(self):
        applied = self.manager.migrate_up()

        assert [m.version for m in applied] == [1, 2, 3]
        assert self.manager.get_current_version() == 3
        assert self.manager.get_pending_migrations() == []
        assert self.manager.migrate_up() == []

    def test_migrate_to_target_version(self):
        applied = self.manager.migrate_up(target_version=1)
        assert [m.version for m in applied] == [1]
        assert self.manager.get_current_version() == 1
        assert [m.version for m in self.manager.get_pending_migrations()] == [2, 3]

    def test_validate_migrations(self):
        self.manager.migrate_up()
        assert self.manager.validate_migrations() is True

        with self.store.atomic() as cursor:
            cursor.execute("UPDATE schema_migrations SET checksum = 'tampered' WHERE version = 2")
        assert self.manager.validate_migrations() is False

    def test_migration_status(self):
        status = self.manager.get_migration_status()
        assert status["dialect"] == "sqlite"
        assert status["needs_migration"] is True
        assert status["pending_count"] == 3

        self.manager.migrate_up()
        status = self.manager.get_migration_status()
        assert status["current_version"] == 3
        assert status["latest_version"] == 3
        assert status["needs_migration"] is False

    def test_external_transaction_id_is_unique_in_schema(self):
        self.manager.migrate_up()
        self.store.ensure_account(1, Money.parse("1.00"))

        insert = """
            INSERT INTO ledger_entries (account_id, external_transaction_id, source_type,
                                        direction, amount, applied_at)
            VALUES (1, 'tx-1', 'game', 'credit', '1.00', '2024-01-01T00:00:00+00:00')
        """
        with self.store.atomic() as cursor:
            cursor.execute(insert)
        with pytest.raises(sqlite3.IntegrityError):
            with self.store.atomic() as cursor:
                cursor.execute(insert)

    def test_failed_migration_is_rolled_back(self):
        self.manager.add_migration(4, "Broken migration", {
            "sqlite": ["CREATE TABLE extra (id INTEGER)", "NOT VALID SQL"],
        })

        with pytest.raises(RuntimeError, match="Migration failed"):
            self.manager.migrate_up()

        assert self.manager.get_current_version() == 3
        with self.store.atomic() as cursor:
            cursor.execute("SELECT name FROM sqlite_master WHERE name = 'extra'")
            assert cursor.fetchone() is None

    def test_in_memory_store_has_no_schema(self):
        manager = MigrationManager(InMemoryLedgerStore())
        assert manager.migrate_up() == []
        assert manager.get_current_version() == 0
        assert manager.get_migration_status()["needs_migration"] is False


class TestSeedAccounts:

    def test_parse(self):
        accounts = parse_seed_accounts("1:100.00, 2:50.00,3:75")
        assert {k: v.to_string() for k, v in accounts.items()} == {
            1: "100.00", 2: "50.00", 3: "75.00"
        }

    def test_parse_empty(self):
        assert parse_seed_accounts("") == {}

    @pytest.mark.parametrize("value", [
        "1", "x:1.00", "0:1.00", "1:-5.00", "1:abc", f"{2 ** 63}:1.00",
    ])
    def test_parse_invalid(self, value):
        with pytest.raises(ValueError):
            parse_seed_accounts(value)

    def test_bootstrap_sqlite(self):
        store = SQLiteLedgerStore(":memory:")
        result = bootstrap(store, seed_accounts="1:100.00,2:50.00,3:75.00")

        assert result == {"migrations_applied": 3, "accounts_created": [1, 2, 3]}
        assert store.get_balance(3).to_string() == "75.00"
        store.close()

    def test_bootstrap_is_idempotent(self):
        store = InMemoryLedgerStore()
        bootstrap(store, seed_accounts="1:100.00")
        assert store.ensure_account(1, Money.parse("999.00")) is False

        result = bootstrap(store, seed_accounts="1:100.00,2:50.00")
        assert result["accounts_created"] == [2]
        assert store.get_balance(1).to_string() == "100.00"
