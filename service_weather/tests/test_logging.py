"""
Unit tests for the logging processors.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.logging import (
    add_correlation_context,
    add_service_context,
    clear_context,
    get_request_id,
    set_request_id,
)


class TestLoggingProcessors:
    """Test cases for the structlog processors."""

    @pytest.fixture(autouse=True)
    def reset_context(self):
        clear_context()
        yield
        clear_context()

    def test_request_id_added_while_set(self):
        set_request_id("req-1")

        event = add_correlation_context(None, "info", {"event": "Cache hit"})

        assert event["request_id"] == "req-1"

    def test_no_request_id_after_clear(self):
        set_request_id("req-1")
        clear_context()

        event = add_correlation_context(None, "info", {"event": "Cache hit"})

        assert "request_id" not in event
        assert get_request_id() is None

    def test_request_id_generated_when_missing(self):
        request_id = set_request_id()

        assert request_id
        assert get_request_id() == request_id

    def test_service_taken_from_logger_name(self):
        event = add_service_context(None, "info", {"logger": "weather.cache.weather"})

        assert event["service"] == "weather"

    def test_service_omitted_for_plain_logger_name(self):
        event = add_service_context(None, "info", {"logger": "uvicorn"})

        assert "service" not in event
