"""Tests for logging setup."""

import logging

import pytest

from focustm.logs import console_level, get_logger, log_dir, setup_logging


class TestLogging:
    """Test logger naming and environment-driven configuration."""

    def test_child_loggers(self):
        """Test module loggers hang below the package logger."""
        assert get_logger("store").name == "focustm.store"
        assert get_logger("data.migrate").parent is get_logger("data")
        assert get_logger().name == "focustm"

    @pytest.mark.parametrize("env, expected", [
        ({}, logging.WARNING),
        ({"FOCUSTM_LOG_LEVEL": "info"}, logging.INFO),
        ({"FOCUSTM_LOG_LEVEL": "nonsense"}, logging.WARNING),
        ({"FOCUSTM_LOG_LEVEL": "error", "FOCUSTM_DEBUG": "yes"}, logging.DEBUG),
    ])
    def test_console_level(self, monkeypatch, env, expected):
        """Test the console level follows FOCUSTM_DEBUG, then FOCUSTM_LOG_LEVEL."""
        monkeypatch.delenv("FOCUSTM_LOG_LEVEL", raising=False)
        monkeypatch.delenv("FOCUSTM_DEBUG", raising=False)
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        assert console_level() == expected

    def test_file_log_in_configured_dir(self, monkeypatch, tmp_path):
        """Test the file handler writes below FOCUSTM_LOG_DIR."""
        monkeypatch.setenv("FOCUSTM_LOG_DIR", str(tmp_path / "logs"))
        assert log_dir() == tmp_path / "logs"
        try:
            logger = setup_logging()
            logger.getChild("store").info("hello")
            for handler in logger.handlers:
                handler.flush()
            assert "hello" in (tmp_path / "logs" / "focustm.log").read_text(encoding="utf-8")
            assert not logger.propagate
        finally:
            for handler in logging.getLogger("focustm").handlers:
                handler.close()
            monkeypatch.delenv("FOCUSTM_LOG_DIR")
            setup_logging()
