"""
Tests for configuration loading and structured logging
"""

import json
import logging
import sys

from sales_cms import config as config_module
from sales_cms.config import SalesCMSConfig, get_config, reload_config
from sales_cms.logging_config import JSONFormatter, setup_logging, log_action


class TestConfig:

    def test_defaults(self):
        config = SalesCMSConfig()
        assert config.case_id_prefix == "MANA88-AK-"
        assert config.case_id_width == 4
        assert config.default_reservation_amount == "50000.00"
        assert config.allocation_max_retries == 3
        assert config.base_currency == "MXN"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SALES_CMS_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("SALES_CMS_ALLOCATION_MAX_RETRIES", "5")
        monkeypatch.setenv("sales_cms_case_id_prefix", "LOT-")

        config = SalesCMSConfig()
        assert config.storage_backend == "memory"
        assert config.allocation_max_retries == 5
        assert config.case_id_prefix == "LOT-"

    def test_reload_config(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("SALES_CMS_API_PORT", "9100")
        try:
            assert reload_config().api_port == 9100
            assert get_config().api_port == 9100
        finally:
            config_module.config = original


class TestLogging:

    def _read_lines(self, logger, path):
        for handler in logger.handlers:
            handler.flush()
        return [json.loads(line) for line in path.read_text().splitlines()]

    def test_json_lines_with_extra(self, tmp_path):
        log_file = tmp_path / "app.log"
        logger = setup_logging("DEBUG", logger_name="sales_cms_test_json", log_file=str(log_file))

        logger.info("Case created", extra={"extra": {"case_id": "c1"}})
        entry = self._read_lines(logger, log_file)[0]

        assert entry["level"] == "INFO"
        assert entry["logger"] == "sales_cms_test_json"
        assert entry["message"] == "Case created"
        assert entry["extra"] == {"case_id": "c1"}
        assert "user_id" not in entry

    def test_log_action(self, tmp_path):
        log_file = tmp_path / "app.log"
        logger = setup_logging("INFO", logger_name="sales_cms_test_action", log_file=str(log_file))

        log_action(logger, "warning", "Payment verified", user_id="finance-1",
                   action="verify", resource="payment/p1", correlation_id="req-9")
        entry = self._read_lines(logger, log_file)[0]

        assert entry["level"] == "WARNING"
        assert entry["user_id"] == "finance-1"
        assert entry["action"] == "verify"
        assert entry["resource"] == "payment/p1"
        assert entry["correlation_id"] == "req-9"

    def test_log_action_respects_level(self, tmp_path):
        log_file = tmp_path / "app.log"
        logger = setup_logging("WARNING", logger_name="sales_cms_test_action_level",
                               log_file=str(log_file))

        log_action(logger, "info", "Case status changed", user_id="agent-1")
        log_action(logger, "error", "Approval reviewed", user_id="manager-1")

        entries = self._read_lines(logger, log_file)
        assert [e["message"] for e in entries] == ["Approval reviewed"]
        assert entries[0]["user_id"] == "manager-1"

    def test_level_filters_records(self, tmp_path):
        log_file = tmp_path / "app.log"
        logger = setup_logging("WARNING", logger_name="sales_cms_test_level", log_file=str(log_file))

        logger.info("hidden")
        logger.warning("shown")
        assert [e["message"] for e in self._read_lines(logger, log_file)] == ["shown"]

    def test_setup_replaces_handlers(self):
        logger = setup_logging(logger_name="sales_cms_test_handlers")
        logger = setup_logging(logger_name="sales_cms_test_handlers", log_format="text")

        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert not logger.propagate

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.getLogger("sales_cms_test_exc").makeRecord(
                "sales_cms_test_exc", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )

        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "failed"
        assert "RuntimeError: boom" in entry["exception"]
