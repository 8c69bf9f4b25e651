"""Tests for logger_config module."""

import logging
from pathlib import Path

import pytest

from phone_archive.logger_config import (
    QUIET_LOGGERS,
    build_logging_config,
    get_log_level,
    setup_logging,
)


@pytest.fixture(autouse=True)
def restore_logging(monkeypatch: pytest.MonkeyPatch):
    """Put the root and third-party loggers back after each test."""
    monkeypatch.delenv("PHONE_ARCHIVE_LOG_FILE", raising=False)
    root = logging.getLogger()
    saved_level = root.level
    saved_handlers = list(root.handlers)
    saved_quiet = {name: logging.getLogger(name).level for name in QUIET_LOGGERS}
    yield
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)
    for name, level in saved_quiet.items():
        logging.getLogger(name).setLevel(level)


class TestGetLogLevel:
    """Tests for get_log_level function."""

    def test_default_is_info(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        assert get_log_level() == logging.INFO

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("DEBUG", logging.DEBUG),
            ("warning", logging.WARNING),
            ("Error", logging.ERROR),
            ("CRITICAL", logging.CRITICAL),
        ],
    )
    def test_levels_case_insensitive(self, monkeypatch: pytest.MonkeyPatch, name, expected):
        monkeypatch.setenv("LOG_LEVEL", name)
        assert get_log_level() == expected

    @pytest.mark.parametrize("name", ["VERBOSE", "", "getLogger"])
    def test_invalid_falls_back_to_info(self, monkeypatch: pytest.MonkeyPatch, name):
        monkeypatch.setenv("LOG_LEVEL", name)
        assert get_log_level() == logging.INFO


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_explicit_level(self):
        setup_logging(level=logging.DEBUG)
        assert logging.getLogger().level == logging.DEBUG

    def test_env_level(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging()
        assert logging.getLogger().level == logging.ERROR

    def test_http_client_loggers_quieted(self):
        setup_logging(level=logging.DEBUG)
        for name in QUIET_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_http_client_loggers_follow_higher_level(self):
        setup_logging(level=logging.ERROR)
        assert logging.getLogger("httpx").level == logging.ERROR

    def test_log_file(self, tmp_path: Path):
        log_file = tmp_path / "archive.log"
        setup_logging(level=logging.INFO, log_file=str(log_file))

        logging.getLogger("phone_archive.test").info("ingest finished")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "ingest finished" in log_file.read_text()

    def test_log_file_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        log_file = tmp_path / "env.log"
        monkeypatch.setenv("PHONE_ARCHIVE_LOG_FILE", str(log_file))
        setup_logging(level=logging.INFO)

        logging.getLogger("phone_archive.test").warning("sync failed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "sync failed" in log_file.read_text()


class TestBuildLoggingConfig:
    """Tests for the dictConfig mapping."""

    def test_console_only(self):
        config = build_logging_config(logging.INFO)
        assert list(config["handlers"]) == ["console"]
        assert config["root"]["handlers"] == ["console"]

    def test_file_handler_rotates(self):
        config = build_logging_config(logging.INFO, log_file="archive.log")
        handler = config["handlers"]["file"]
        assert handler["class"] == "logging.handlers.RotatingFileHandler"
        assert handler["maxBytes"] > 0
        assert config["root"]["handlers"] == ["console", "file"]
