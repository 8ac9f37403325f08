"""
Unit tests for structured logging.

Tests cover:
- Bound context fields on ScanLogger
- JSON and human readable formatting
- configure_logging handler setup
"""

from __future__ import annotations

import json
import logging
import os
from unittest.mock import MagicMock, patch

from kubestig.observability import (
    HumanReadableFormatter,
    ScanLogger,
    StructuredFormatter,
    configure_logging,
    configure_logging_from_env,
    get_logger,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="kubestig.rule",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Rule completed",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestScanLogger:
    """Tests for ScanLogger."""

    def test_get_logger_namespace(self):
        """Test loggers live under the kubestig namespace."""
        assert get_logger("ruleset").logger.name == "kubestig.ruleset"

    def test_bind_adds_context(self):
        """Test bound fields are passed as extra."""
        underlying = MagicMock()
        scan_logger = ScanLogger("kubestig.test", logger=underlying).bind(rule="242393")

        scan_logger.info("Retrying rule", retry_attempt=1)

        underlying.log.assert_called_once_with(
            logging.INFO,
            "Retrying rule",
            exc_info=False,
            extra={"rule": "242393", "retry_attempt": 1},
        )

    def test_bind_does_not_modify_parent(self):
        """Test binding returns a new logger."""
        parent = ScanLogger("kubestig.test", context={"ruleset": "disa"})

        child = parent.bind(rule="242400")

        assert parent.context == {"ruleset": "disa"}
        assert child.context == {"ruleset": "disa", "rule": "242400"}

    def test_rule_completed_event(self):
        """Test rule completion carries count and rounded duration."""
        underlying = MagicMock()

        ScanLogger("kubestig.test", logger=underlying).rule_completed("242400", 3, 1.23456)

        extra = underlying.log.call_args.kwargs["extra"]
        assert extra["event_type"] == "rule.completed"
        assert extra["check_count"] == 3
        assert extra["duration_seconds"] == 1.235


class TestFormatters:
    """Tests for log formatters."""

    def test_structured_formatter(self):
        """Test JSON output includes extra fields."""
        formatter = StructuredFormatter(extra_fields={"cluster": "prod"})

        data = json.loads(formatter.format(make_record(rule="242393")))

        assert data["level"] == "info"
        assert data["logger"] == "kubestig.rule"
        assert data["message"] == "Rule completed"
        assert data["rule"] == "242393"
        assert data["cluster"] == "prod"

    def test_human_readable_formatter(self):
        """Test human output appends context fields."""
        formatter = HumanReadableFormatter(use_colors=False, include_timestamp=False)

        output = formatter.format(make_record(rule="242393"))

        assert "INFO" in output
        assert "kubestig.rule: Rule completed" in output
        assert "rule=242393" in output


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_configures_json_handler(self):
        """Test a single handler with the requested formatter is installed."""
        configure_logging(level="DEBUG", format="json")
        configure_logging(level="DEBUG", format="json")

        root = logging.getLogger("kubestig")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

        configure_logging()
        assert isinstance(root.handlers[0].formatter, HumanReadableFormatter)

    def test_environment_fallback(self):
        """Test unset options are read from the environment."""
        env = {"KUBESTIG_LOG_LEVEL": "warning", "KUBESTIG_LOG_FORMAT": "json"}
        with patch.dict(os.environ, env, clear=True):
            configure_logging_from_env()

        root = logging.getLogger("kubestig")
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

        with patch.dict(os.environ, env, clear=True):
            configure_logging_from_env("DEBUG", "human")

        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, HumanReadableFormatter)
