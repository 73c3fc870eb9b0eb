"""Tests for logging configuration."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator

import pytest
from loguru import logger

from extrabatch.config import Settings
from extrabatch.logging import configure_logging


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    yield
    logger.remove()
    logger.add(sys.stderr)


class TestJsonLogging:
    """Tests for JSON log output."""

    def test_extra_fields_flattened(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, log_level="INFO")

        logger.info(
            "Batch execution completed",
            extra={"spreadsheet_id": "abc", "request_count": 2},
        )

        entry = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert entry["severity"] == "INFO"
        assert entry["message"] == "Batch execution completed"
        assert entry["spreadsheet_id"] == "abc"
        assert entry["request_count"] == 2
        assert "sourceLocation" not in entry

    def test_errors_carry_source_location(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        configure_logging(json_output=True)

        logger.error("Batch update failed", extra={"error_code": "RATE_LIMITED"})

        entry = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert entry["severity"] == "ERROR"
        assert entry["sourceLocation"]["function"] == (
            "test_errors_carry_source_location"
        )

    def test_level_filters(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(json_output=True, log_level="WARNING")

        logger.info("Payload sizes")

        assert capsys.readouterr().out == ""

    def test_standard_logging_intercepted(
        self, capsys: pytest.CaptureFixture[str]
    ) -> None:
        configure_logging(json_output=True)

        logging.getLogger("httpx").info("HTTP Request: POST https://example.com")

        entry = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert entry["message"] == "HTTP Request: POST https://example.com"


class TestSettingsLogging:
    """Tests for Settings.configure_logging."""

    def test_applies_json_and_level(self, capsys: pytest.CaptureFixture[str]) -> None:
        settings = Settings(_env_file=None, json_logs=True, log_level="warning")
        settings.configure_logging()

        logger.info("Compiled requests")
        logger.warning("Payload size approaching limit", extra={"payload_mb": 7.5})

        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["severity"] == "WARNING"
        assert entry["payload_mb"] == 7.5
