"""OpenTelemetry wiring for the working-memory service.

``store`` and ``retrieve`` open spans through ``get_tracer``; until
``init_tracing`` installs an exporting provider those spans are dropped.
"""

from __future__ import annotations

import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import NoOpTracerProvider

from xerus.config import TelemetryConfig

logger = logging.getLogger(__name__)

SERVICE_NAME = "xerus-working-memory"

_provider: TracerProvider | NoOpTracerProvider | None = None


def _service_version() -> str:
    try:
        return pkg_version(SERVICE_NAME)
    except PackageNotFoundError:
        return "0.0.0"


def _attach_otlp_exporter(provider: TracerProvider, endpoint: str) -> None:
    # The gRPC exporter ships in the optional "otlp" extra.
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )
    except Exception:
        logger.warning("No OTLP exporter for %s; spans will be dropped", endpoint, exc_info=True)
        return
    logger.info("Exporting spans to %s", endpoint)


def init_tracing(
    config: TelemetryConfig | None = None,
    *,
    service_name: str = SERVICE_NAME,
) -> TracerProvider | NoOpTracerProvider:
    """Install the global tracer provider described by ``config``.

    Disabled telemetry, the default, installs a no-op provider.
    """
    global _provider  # noqa: PLW0603

    config = config if config is not None else TelemetryConfig()
    if not config.enabled or not config.endpoint:
        _provider = NoOpTracerProvider()
        logger.info("Tracing disabled")
    else:
        _provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": service_name,
                    "service.version": _service_version(),
                    "deployment.environment": config.env,
                }
            )
        )
        _attach_otlp_exporter(_provider, config.endpoint)

    trace.set_tracer_provider(_provider)
    return _provider


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def shutdown_tracing() -> None:
    """Flush pending spans. A no-op when no exporting provider was installed."""
    global _provider  # noqa: PLW0603

    if isinstance(_provider, TracerProvider):
        _provider.shutdown()
    _provider = None


__all__ = ["SERVICE_NAME", "get_tracer", "init_tracing", "shutdown_tracing"]
