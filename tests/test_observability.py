"""
Tests for span wrapping and metric recorders.
"""

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from movecar import observability
from movecar.errors import ForbiddenError
from movecar.observability import record_http_metrics, record_transition_metrics, trace_function


@pytest.fixture
def spans(monkeypatch):
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setattr(observability, "tracer", provider.get_tracer("tests"))
    return exporter


class TestTraceFunction:
    """Test cases for the span decorator."""

    @pytest.mark.asyncio
    async def test_passthrough_without_tracer(self, monkeypatch):
        monkeypatch.setattr(observability, "tracer", None)

        @trace_function("owner.lookup")
        async def lookup(owner_id):
            return owner_id.upper()

        assert await lookup("abc") == "ABC"
        assert lookup.__name__ == "lookup"

    @pytest.mark.asyncio
    async def test_records_success(self, spans):
        @trace_function("owner.lookup")
        async def lookup():
            return 1

        assert await lookup() == 1

        finished = spans.get_finished_spans()
        assert [span.name for span in finished] == ["owner.lookup"]
        assert finished[0].attributes["success"] is True

    @pytest.mark.asyncio
    async def test_records_domain_error(self, spans):
        @trace_function()
        async def guarded():
            raise ForbiddenError("Invalid admin token")

        with pytest.raises(ForbiddenError):
            await guarded()

        span = spans.get_finished_spans()[0]
        assert span.name.endswith(".guarded")
        assert span.attributes["success"] is False
        assert span.attributes["error.type"] == "ForbiddenError"
        assert span.attributes["error.code"] == "FORBIDDEN"


class TestRecorders:
    """Test cases for metric recorders before setup."""

    def test_noop_without_instruments(self, monkeypatch):
        monkeypatch.setattr(observability, "request_counter", None)
        monkeypatch.setattr(observability, "transition_counter", None)

        record_http_metrics("GET", "/api/ping", 500, 0.01)
        record_transition_metrics("confirmed")
