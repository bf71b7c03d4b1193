"""OpenTelemetry spans around sweeps and completion reports.

Attributes are namespaced under ``ctrlsys.``; ``None`` values are skipped so
callers can pass optional fields straight through.
"""

import contextlib
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from ctrlsys import config

TRACER_NAME = "ctrlsys"


def init_tracer(service_name: str, *, mode: str = "shared", version: str = "0.1.0") -> bool:
    """Install the OTLP exporter when ENABLE_OTEL is set; returns whether it did.

    ``mode`` is ``shared`` for the control plane and sweeper, ``job`` for a
    standalone timer job.
    """
    if not config.ENABLE_OTEL:
        return False

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": version,
            "ctrlsys.mode": mode,
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=config.OTEL_EXPORTER_ENDPOINT)))
    trace.set_tracer_provider(provider)
    return True


def annotate(span: Optional[Any], **attrs: Any) -> None:
    """Set ``ctrlsys.*`` attributes on a span yielded by :func:`traced_span`."""
    if span is None:
        return
    for key, value in attrs.items():
        if value is not None:
            span.set_attribute(f"ctrlsys.{key}", value)


@contextlib.asynccontextmanager
async def traced_span(name: str, **attrs: Any):
    """Span named ``name`` when tracing is enabled, otherwise yields ``None``."""
    if not config.ENABLE_OTEL:
        yield None
        return

    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        annotate(span, **attrs)
        yield span
