from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog

from console_memories.app.config import AppSettings, load_settings
from console_memories.app.logging_config import LOG_FILE_NAME, configure_application_logging


def test_load_settings_defaults_paths_under_data_dir(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CONSOLE_MEMORIES_DATA_DIR", str(tmp_path / "data"))

    settings = load_settings()

    assert settings.data_dir == (tmp_path / "data").resolve()
    assert settings.db_path == (tmp_path / "data" / "console-memories.db").resolve()
    assert settings.log_dir == (tmp_path / "data" / "logs").resolve()
    assert settings.max_title_length == 200
    assert settings.max_content_length == 100_000
    assert settings.slug_max_attempts == 50
    assert settings.visitor_cookie_name == "cm_visitor"
    assert settings.visitor_cookie_secure is False
    assert settings.admin_token is None


def test_load_settings_reads_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONSOLE_MEMORIES_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CONSOLE_MEMORIES_DB_PATH", str(tmp_path / "elsewhere.db"))
    monkeypatch.setenv("CONSOLE_MEMORIES_MAX_TITLE_LENGTH", "80")
    monkeypatch.setenv("CONSOLE_MEMORIES_SLUG_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("CONSOLE_MEMORIES_ADMIN_TOKEN", "  s3cret  ")
    monkeypatch.setenv("CONSOLE_MEMORIES_VISITOR_COOKIE_SECURE", "yes")
    monkeypatch.setenv("CONSOLE_MEMORIES_TELEMETRY_ENABLED", "off")
    monkeypatch.setenv("CONSOLE_MEMORIES_TELEMETRY_SINK", " LOG ")
    monkeypatch.setenv("CONSOLE_MEMORIES_LOG_LEVEL", "DEBUG")

    settings = load_settings()

    assert settings.db_path == (tmp_path / "elsewhere.db").resolve()
    assert settings.max_title_length == 80
    assert settings.slug_max_attempts == 5
    assert settings.admin_token == "s3cret"
    assert settings.visitor_cookie_secure is True
    assert settings.telemetry_enabled is False
    assert settings.telemetry_sink == "log"
    assert settings.log_level == "DEBUG"


def test_load_settings_unrecognized_bool_keeps_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONSOLE_MEMORIES_TELEMETRY_ENABLED", "maybe")
    monkeypatch.setenv("CONSOLE_MEMORIES_VISITOR_COOKIE_SECURE", "maybe")

    settings = load_settings()

    assert settings.telemetry_enabled is True
    assert settings.visitor_cookie_secure is False


def test_load_settings_blank_admin_token_is_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONSOLE_MEMORIES_ADMIN_TOKEN", "   ")

    assert load_settings().admin_token is None


def test_load_settings_rejects_invalid_telemetry_sink(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONSOLE_MEMORIES_TELEMETRY_SINK", "kafka")

    with pytest.raises(ValueError, match="CONSOLE_MEMORIES_TELEMETRY_SINK"):
        load_settings()


def test_load_settings_rejects_invalid_cookie_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONSOLE_MEMORIES_VISITOR_COOKIE_NAME", "bad name;")

    with pytest.raises(ValueError, match="CONSOLE_MEMORIES_VISITOR_COOKIE_NAME"):
        load_settings()


def test_load_settings_rejects_out_of_range_limits(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONSOLE_MEMORIES_SLUG_MAX_ATTEMPTS", "0")

    with pytest.raises(ValueError):
        load_settings()


def test_configure_application_logging_writes_json_lines(tmp_path: Path) -> None:
    settings = AppSettings(
        data_dir=tmp_path,
        db_path=tmp_path / "state.db",
        log_dir=tmp_path / "logs",
        log_level="WARNING",
    )

    log_file = configure_application_logging(settings)
    logging.getLogger("console_memories.test").debug("runtime-log-test")
    structlog.get_logger("console_memories.telemetry").info(
        "telemetry",
        telemetry_event="view.recorded",
    )

    app_logger = logging.getLogger("console_memories")
    assert app_logger.propagate is False
    assert {handler.level for handler in app_logger.handlers} == {
        logging.WARNING,
        logging.DEBUG,
    }
    for handler in app_logger.handlers:
        handler.flush()

    assert log_file == tmp_path / "logs" / LOG_FILE_NAME
    records = [
        json.loads(line)
        for line in log_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    assert all("timestamp" in record for record in records)

    runtime = next(record for record in records if record.get("event") == "runtime-log-test")
    assert runtime["logger"] == "console_memories.test"
    assert runtime["level"] == "debug"
    assert runtime["func_name"] == "test_configure_application_logging_writes_json_lines"

    telemetry = next(record for record in records if record.get("event") == "telemetry")
    assert telemetry["telemetry_event"] == "view.recorded"
    assert telemetry["logger"] == "console_memories.telemetry"


def test_configure_application_logging_is_repeatable(tmp_path: Path) -> None:
    settings = AppSettings(data_dir=tmp_path, log_dir=tmp_path / "logs")

    configure_application_logging(settings)
    configure_application_logging(settings)

    assert len(logging.getLogger("console_memories").handlers) == 2
    assert logging.getLogger("console_memories.telemetry").handlers == []
