"""OpenTelemetry helpers shared by the watcher components."""

from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode, Tracer, TracerProvider

TRACER_NAME = "querynotify"
MESSAGING_SYSTEM = "mssql_service_broker"


def get_tracer(tracer_provider: TracerProvider | None = None) -> Tracer:
    """Get the querynotify tracer. Uses the global provider if not set."""
    provider = tracer_provider or trace.get_tracer_provider()
    return provider.get_tracer(TRACER_NAME)


def messaging_attributes(queue: str, operation: str) -> dict[str, Any]:
    return {
        "messaging.system": MESSAGING_SYSTEM,
        "messaging.destination.name": queue,
        "messaging.operation.name": operation,
    }


def record_error(span: Span, error: BaseException) -> None:
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.set_attribute("error.type", type(error).__name__)
