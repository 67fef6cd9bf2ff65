# telemetry.py — Optional OpenTelemetry tracing for Residency Desk
"""
Lifecycle transitions and recurring-problem scans open spans through
``get_tracer`` / ``start_span``. Spans are exported only when
OTEL_EXPORTER_OTLP_ENDPOINT is set and the ``telemetry`` extra is
installed; otherwise every call here is a no-op.
"""
import logging
from contextlib import contextmanager

import config

logger = logging.getLogger("residency-desk.telemetry")

# (instrumentation module, instrumentor class) applied after the provider is set
INSTRUMENTORS = (
    ("opentelemetry.instrumentation.sqlalchemy", "SQLAlchemyInstrumentor"),
    ("opentelemetry.instrumentation.httpx", "HTTPXClientInstrumentor"),
)


def _instrument(provider, module_name: str, class_name: str) -> None:
    try:
        module = __import__(module_name, fromlist=[class_name])
    except ImportError:
        logger.warning(f"{module_name} not installed; skipping")
        return
    getattr(module, class_name)().instrument(tracer_provider=provider)


def setup_telemetry(app=None):
    """Install an OTLP tracer provider and instrument the app, DB and outbound HTTP."""
    endpoint = config.OTEL_EXPORTER_OTLP_ENDPOINT
    if not endpoint:
        logger.info("Tracing disabled (OTEL_EXPORTER_OTLP_ENDPOINT not set)")
        return None

    try:
        from opentelemetry import trace
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.info("OpenTelemetry SDK not installed, tracing disabled")
        return None

    provider = TracerProvider(resource=Resource.create({
        "service.name": config.SERVICE_NAME,
        "service.version": config.SERVICE_VERSION,
        "deployment.environment": config.ENVIRONMENT,
    }))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    trace.set_tracer_provider(provider)

    if app is not None:
        try:
            from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
            FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
        except ImportError:
            logger.warning("opentelemetry-instrumentation-fastapi not installed; skipping")
    for module_name, class_name in INSTRUMENTORS:
        _instrument(provider, module_name, class_name)

    logger.info(f"Tracing lifecycle and recurring scans to {endpoint}")
    return provider


def get_tracer(name: str = "residency-desk"):
    """Tracer for ``name``, or None when the OpenTelemetry API is absent."""
    try:
        from opentelemetry import trace
    except ImportError:
        return None
    return trace.get_tracer(name, config.SERVICE_VERSION)


@contextmanager
def start_span(tracer, name: str, **attributes):
    """Span around a block of work; a plain passthrough when tracing is off."""
    if tracer is None:
        yield None
        return
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span
