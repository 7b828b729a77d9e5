"""Tests for stackpilot.core.logging."""

import logging

from stackpilot.core.logging import configure_logging, get_logger


class TestConfigureLogging:
    def teardown_method(self):
        configure_logging(level="WARNING", format="console", force=True)

    def test_debug_level(self):
        configure_logging(level="DEBUG", force=True)
        assert logging.getLogger("stackpilot").isEnabledFor(logging.DEBUG)

    def test_noop_without_force(self):
        configure_logging(level="WARNING", force=True)
        configure_logging(level="DEBUG")
        assert logging.getLogger("stackpilot").level == logging.WARNING

    def test_env_level(self, monkeypatch):
        monkeypatch.setenv("STACKPILOT_LOG_LEVEL", "info")
        configure_logging(force=True)
        assert logging.getLogger("stackpilot").level == logging.INFO

    def test_invalid_level_falls_back(self):
        configure_logging(level="LOUD", force=True)  # type: ignore[arg-type]
        assert logging.getLogger("stackpilot").level == logging.WARNING

    def test_json_output(self, capsys):
        configure_logging(level="INFO", format="json", force=True)
        get_logger("stackpilot.test").info("deploy.start", stack="redis")
        err = capsys.readouterr().err
        assert '"event": "deploy.start"' in err
        assert '"stack": "redis"' in err
