"""Tests for logging configuration."""

import io
import json
from decimal import Decimal

import structlog

from daybook.config import configure_logging


def test_json_lines_with_decimal_context():
    """Money context is written as a plain string."""
    buffer = io.StringIO()
    configure_logging(level="INFO", format="json", stream=buffer)

    structlog.get_logger("daybook.test").info("payment_recorded", amount=Decimal("10.50"))

    line = json.loads(buffer.getvalue().strip().splitlines()[-1])
    assert line["event"] == "payment_recorded"
    assert line["amount"] == "10.50"
    assert line["level"] == "info"


def test_level_filters_debug():
    buffer = io.StringIO()
    configure_logging(level="WARNING", format="json", stream=buffer)

    structlog.get_logger("daybook.test").info("hidden")

    assert buffer.getvalue() == ""
