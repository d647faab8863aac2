"""
Unit tests for correlation id handling.
"""

import pytest

from src.monitoring.logging import (
    MAX_CORRELATION_ID_LENGTH,
    CorrelationManager,
    create_correlation_processor,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def reset_correlation_id():
    yield
    CorrelationManager().clear_correlation_id()


@pytest.mark.unit
class TestCorrelationManager:

    def test_caller_id_is_reused(self):
        assert set_correlation_id("req-42.a") == "req-42.a"
        assert get_correlation_id() == "req-42.a"

    @pytest.mark.parametrize("candidate", [
        None,
        "",
        "has spaces",
        "newline\ninjection",
        "x" * (MAX_CORRELATION_ID_LENGTH + 1),
    ])
    def test_unsafe_ids_are_replaced(self, candidate):
        correlation_id = set_correlation_id(candidate)

        assert correlation_id != candidate
        assert len(correlation_id) == 32

    def test_processor_adds_context(self):
        set_correlation_id("corr-1")
        event = create_correlation_processor()(None, "info", {"event": "x"})

        assert event["correlation_id"] == "corr-1"
        assert event["service"] == "portal-access-control"

    def test_processor_without_correlation_id(self):
        CorrelationManager().clear_correlation_id()
        event = create_correlation_processor()(None, "info", {"event": "x"})
        assert "correlation_id" not in event
