from __future__ import annotations

import logging

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from exam_engine.settings import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Driver chatter drowns out session events at INFO.
NOISY_LOGGERS = ("pymongo", "motor", "httpx", "httpcore")

_tracing_ready = False


def init_logging(level: str = "INFO") -> None:
    level = level.upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
    if level != "DEBUG":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def init_otel(app: FastAPI, cfg: Settings) -> bool:
    """Install the tracer provider and instrument the app. Returns whether tracing is on."""
    global _tracing_ready
    if not cfg.observability_enabled:
        return False

    if not _tracing_ready:
        resource = Resource.create(
            {
                "service.name": cfg.otel_service_name,
                "deployment.environment": cfg.env,
                "exam.storage_backend": cfg.storage_backend,
            }
        )
        provider = TracerProvider(resource=resource, sampler=ParentBased(TraceIdRatioBased(cfg.otel_sample_rate)))
        if cfg.otel_exporter_console:
            provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        if cfg.otel_exporter_otlp_endpoint:
            provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=cfg.otel_exporter_otlp_endpoint)))
        trace.set_tracer_provider(provider)
        HTTPXClientInstrumentor().instrument()
        _tracing_ready = True

    FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
    return True


def get_tracer(component: str) -> trace.Tracer:
    return trace.get_tracer(f"exam_engine.{component}")
