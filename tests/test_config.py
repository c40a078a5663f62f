"""
Tests for configuration and structured logging
"""

import json
import logging

from wallet_ledger import config as config_module
from wallet_ledger.config import WalletConfig, get_config, reload_config
from wallet_ledger.logging_config import JSONFormatter, log_action, setup_logging


class TestWalletConfig:

    def test_defaults(self, monkeypatch):
        for name in ("WALLET_DATABASE_URL", "WALLET_API_PORT", "WALLET_SEED_ACCOUNTS"):
            monkeypatch.delenv(name, raising=False)

        cfg = WalletConfig(_env_file=None)
        assert cfg.database_url == "sqlite:///wallet.db"
        assert cfg.api_port == 8000
        assert cfg.seed_accounts == "1:100.00,2:50.00,3:75.00"
        assert cfg.auto_migrate is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("WALLET_DATABASE_URL", "memory://")
        monkeypatch.setenv("WALLET_API_PORT", "9090")
        monkeypatch.setenv("WALLET_TRANSACTION_TIMEOUT_SECONDS", "0.5")

        cfg = WalletConfig(_env_file=None)
        assert cfg.database_url == "memory://"
        assert cfg.api_port == 9090
        assert cfg.transaction_timeout_seconds == 0.5

    def test_reload_config(self, monkeypatch):
        original = config_module.config
        monkeypatch.setenv("WALLET_ENV", "test")
        try:
            reloaded = reload_config()
            assert reloaded.env == "test"
            assert get_config() is reloaded
        finally:
            config_module.config = original


class TestStructuredLogging:

    def make_record(self, **extra):
        record = logging.LogRecord(
            "wallet_ledger.test", logging.INFO, __file__, 1, "applied %s", ("tx-1",), None
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter(self):
        output = json.loads(JSONFormatter().format(self.make_record(
            account_id=1, action="apply_transaction", extra={"amount": "1.00"}
        )))

        assert output["message"] == "applied tx-1"
        assert output["level"] == "INFO"
        assert output["account_id"] == 1
        assert output["extra"] == {"amount": "1.00"}
        assert "correlation_id" not in output

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging("DEBUG", logger_name="wallet_ledger.test_setup")
        logger = setup_logging("WARNING", logger_name="wallet_ledger.test_setup", log_format="text")

        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.WARNING
        assert logger.propagate is False

    def test_log_action_attaches_fields(self, caplog):
        logger = logging.getLogger("tests.log_action")
        with caplog.at_level(logging.INFO, logger="tests.log_action"):
            log_action(logger, "info", "Transaction applied", account_id=7,
                       action="apply_transaction", resource="transaction:tx-9")

        record = caplog.records[-1]
        assert record.account_id == 7
        assert record.resource == "transaction:tx-9"
        assert not hasattr(record, "correlation_id")
