"""OpenTelemetry setup for the HTTP service."""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

logger = logging.getLogger(__name__)


def setup_telemetry(app: FastAPI, sample_rate: float = 0.1) -> None:
    """Configure OpenTelemetry tracing and instrument the FastAPI application."""
    resource = Resource(attributes={"service.name": "local-llm-service"})
    sampler = ParentBased(root=TraceIdRatioBased(sample_rate))

    provider = TracerProvider(resource=resource, sampler=sampler)
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app)
    logger.info("Exporting traces to %s", endpoint)
