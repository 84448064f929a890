import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

# Set up logger for this module
logger = logging.getLogger(__name__)

_configured = False


def setup_tracing(service_name: Optional[str] = None) -> Optional[TracerProvider]:
    """
    Install an OpenTelemetry tracer provider for the relay service.

    Spans are exported to the console only when OTEL_CONSOLE_EXPORTER is true;
    otherwise the provider still creates real span contexts so that log records
    carry trace and span ids.

    Args:
        service_name (str, optional): Service name resource attribute. Defaults to
            the OTEL_SERVICE_NAME environment variable or 'gemini-live-relay'.

    Returns:
        TracerProvider | None: The installed provider, or None if tracing was
        already configured in this process.
    """
    global _configured
    if _configured:
        logger.debug("Tracing already configured, skipping")
        return None

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "gemini-live-relay")
    resource_attrs = {
        "service.name": service_name,
        "service.namespace": "gemini-live",
    }
    env_name = os.getenv("ENVIRONMENT")
    if env_name:
        resource_attrs["service.environment"] = env_name

    tracer_provider = TracerProvider(resource=Resource.create(resource_attrs))

    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console span exporter enabled")

    trace.set_tracer_provider(tracer_provider)
    _configured = True
    logger.info(f"Tracing configured with resource attributes: {resource_attrs}")
    return tracer_provider
