"""Tests for the OpenTelemetry tracing module."""

from unittest.mock import MagicMock

import pytest
from opentelemetry import trace

import aws_auth_payload.tracing as tracing_module
from aws_auth_payload.tracing import (
    add_identity_span_attributes,
    get_tracer,
    init_tracing,
    traced,
)


@pytest.fixture(autouse=True)
def reset_tracing():
    """Reset global tracing state for a clean test."""
    tracing_module._tracer = None
    tracing_module._initialized = False
    yield


class TestTracingInitialization:
    """Tests for tracing initialization."""

    def test_init_tracing_returns_tracer(self):
        tracer = init_tracing(service_name="test-service")

        assert isinstance(tracer, trace.Tracer)

    def test_init_tracing_is_idempotent(self):
        """Test that calling init_tracing multiple times returns same tracer."""
        assert init_tracing(service_name="test-service") is init_tracing(service_name="test-service")

    def test_get_tracer_initializes_if_needed(self):
        assert get_tracer() is not None
        assert tracing_module._initialized

    def test_init_with_console_export(self):
        assert init_tracing(service_name="test-service", enable_console_export=True) is not None


class TestTracedDecorator:
    """Tests for the @traced decorator."""

    def test_traced_sync_function(self):
        @traced(name="test_operation", attributes={"custom.key": "custom_value"})
        def double(x: int) -> int:
            return x * 2

        assert double(5) == 10
        assert double.__name__ == "double"

    def test_traced_sync_function_with_exception(self):
        """Test that traced decorator re-raises exceptions."""
        @traced()
        def failing_function():
            raise ValueError("Test error")

        with pytest.raises(ValueError, match="Test error"):
            failing_function()

    @pytest.mark.asyncio
    async def test_traced_async_function(self):
        @traced(name="async_operation")
        async def triple(x: int) -> int:
            return x * 3

        assert await triple(4) == 12


class TestIdentitySpanHelpers:
    """Tests for identity span helpers."""

    def test_add_identity_span_attributes(self):
        span = MagicMock()

        add_identity_span_attributes(
            span,
            sts_host="sts.amazonaws.com",
            region="us-east-1",
            account_id="123456789012",
            arn="arn:aws:iam::123456789012:user/alice",
            outcome="accepted",
        )

        recorded = {call.args[0]: call.args[1] for call in span.set_attribute.call_args_list}
        assert recorded == {
            "aws.sts.host": "sts.amazonaws.com",
            "aws.region": "us-east-1",
            "aws.account_id": "123456789012",
            "aws.principal_arn": "arn:aws:iam::123456789012:user/alice",
            "identity.outcome": "accepted",
        }

    def test_partial_attributes(self):
        tracer = get_tracer()
        with tracer.start_as_current_span("test_span") as span:
            # Should not raise with partial attributes
            add_identity_span_attributes(span, outcome="PolicyRejectedError")

    def test_unknown_attribute_rejected(self):
        with pytest.raises(TypeError, match="principal"):
            add_identity_span_attributes(MagicMock(), principal="alice")

    def test_empty_values_skipped(self):
        span = MagicMock()

        add_identity_span_attributes(span, sts_host="", region=None, outcome="stale")

        span.set_attribute.assert_called_once_with("identity.outcome", "stale")
