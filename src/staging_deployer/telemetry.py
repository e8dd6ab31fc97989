"""
OpenTelemetry configuration and instrumentation for the staging deployer.

Tracing and metrics are only exported when an OTLP endpoint (or console
export) is configured; otherwise the global no-op providers are used and the
spans and counters below cost nothing.
"""

import os

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
    OTLPMetricExporter,
)
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
    OTLPSpanExporter,
)
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
)

from . import __version__

logger = structlog.get_logger(__name__)


class TelemetryConfig:
    """Configuration for OpenTelemetry setup."""

    def __init__(self) -> None:
        """Initialize telemetry configuration from environment variables."""
        self.service_name = os.getenv("OTEL_SERVICE_NAME", "staging-deployer")
        self.service_version = os.getenv("OTEL_SERVICE_VERSION", __version__)
        self.deployment_environment = os.getenv(
            "OTEL_DEPLOYMENT_ENVIRONMENT", "ci"
        )

        self.otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        self.otlp_traces_endpoint = os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        self.otlp_metrics_endpoint = os.getenv("OTEL_EXPORTER_OTLP_METRICS_ENDPOINT")
        self.otlp_headers = os.getenv("OTEL_EXPORTER_OTLP_HEADERS", "")

        self.enable_console_export = (
            os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"
        )
        self.instrument_httpx = (
            os.getenv("OTEL_INSTRUMENT_HTTPX", "true").lower() == "true"
        )
        self.instrument_logging = (
            os.getenv("OTEL_INSTRUMENT_LOGGING", "false").lower() == "true"
        )

    @property
    def export_enabled(self) -> bool:
        """Check if anything would receive exported telemetry."""
        return bool(
            self.otlp_endpoint
            or self.otlp_traces_endpoint
            or self.otlp_metrics_endpoint
            or self.enable_console_export
        )

    @property
    def resource(self) -> Resource:
        """Create OpenTelemetry resource with service metadata."""
        return Resource.create(
            {
                "service.name": self.service_name,
                "service.version": self.service_version,
                "deployment.environment": self.deployment_environment,
                "service.namespace": "staging",
            }
        )

    def get_otlp_headers_dict(self) -> dict[str, str]:
        """Parse OTLP headers from string format."""
        if not self.otlp_headers:
            return {}

        headers = {}
        for header in self.otlp_headers.split(","):
            if "=" in header:
                key, value = header.split("=", 1)
                headers[key.strip()] = value.strip()
        return headers


class TelemetryManager:
    """Manages OpenTelemetry instrumentation lifecycle."""

    def __init__(self, config: TelemetryConfig | None = None):
        """Initialize telemetry manager."""
        self.config = config or TelemetryConfig()
        self._tracer_provider: TracerProvider | None = None
        self._meter_provider: MeterProvider | None = None
        self._instrumented = False

    def setup_tracing(self) -> None:
        """Set up distributed tracing."""
        self._tracer_provider = TracerProvider(resource=self.config.resource)

        if self.config.enable_console_export:
            console_processor = BatchSpanProcessor(ConsoleSpanExporter())
            self._tracer_provider.add_span_processor(console_processor)

        if self.config.otlp_endpoint or self.config.otlp_traces_endpoint:
            endpoint = self.config.otlp_traces_endpoint or self.config.otlp_endpoint
            try:
                otlp_exporter = OTLPSpanExporter(
                    endpoint=endpoint,
                    headers=self.config.get_otlp_headers_dict(),
                )
                self._tracer_provider.add_span_processor(
                    BatchSpanProcessor(otlp_exporter)
                )
                logger.info("OTLP trace exporter configured", endpoint=endpoint)
            except Exception as e:
                logger.warning("Failed to configure OTLP trace exporter", error=str(e))

        trace.set_tracer_provider(self._tracer_provider)

    def setup_metrics(self) -> None:
        """Set up metrics collection."""
        readers = []

        if self.config.otlp_endpoint or self.config.otlp_metrics_endpoint:
            endpoint = self.config.otlp_metrics_endpoint or self.config.otlp_endpoint
            try:
                otlp_exporter = OTLPMetricExporter(
                    endpoint=endpoint,
                    headers=self.config.get_otlp_headers_dict(),
                )
                readers.append(
                    PeriodicExportingMetricReader(
                        exporter=otlp_exporter,
                        export_interval_millis=10000,
                    )
                )
                logger.info("OTLP metrics exporter configured", endpoint=endpoint)
            except Exception as e:
                logger.warning(
                    "Failed to configure OTLP metrics exporter", error=str(e)
                )

        self._meter_provider = MeterProvider(
            resource=self.config.resource,
            metric_readers=readers,
        )
        metrics.set_meter_provider(self._meter_provider)

    def setup_instrumentation(self) -> None:
        """Set up automatic instrumentation."""
        if self._instrumented:
            logger.warning("Instrumentation already set up")
            return

        if self.config.instrument_httpx:
            try:
                HTTPXClientInstrumentor().instrument()
                logger.info("HTTPX instrumentation enabled")
            except Exception as e:
                logger.warning("Failed to instrument HTTPX", error=str(e))

        if self.config.instrument_logging:
            try:
                LoggingInstrumentor().instrument(set_logging_format=False)
                logger.info("Logging instrumentation enabled")
            except Exception as e:
                logger.warning("Failed to instrument logging", error=str(e))

        self._instrumented = True

    def initialize(self) -> None:
        """Initialize the telemetry stack if export is configured."""
        if not self.config.export_enabled:
            logger.debug("Telemetry export not configured, using no-op providers")
            return

        logger.info(
            "Initializing telemetry",
            service_name=self.config.service_name,
            environment=self.config.deployment_environment,
        )
        self.setup_tracing()
        self.setup_metrics()
        self.setup_instrumentation()

    def shutdown(self) -> None:
        """Flush and shut down telemetry providers."""
        if self._tracer_provider:
            try:
                self._tracer_provider.shutdown()
            except Exception as e:
                logger.warning("Error shutting down tracer provider", error=str(e))

        if self._meter_provider:
            try:
                self._meter_provider.shutdown()
            except Exception as e:
                logger.warning("Error shutting down meter provider", error=str(e))

    def get_tracer(self, name: str) -> trace.Tracer:
        """Get a tracer for the given name."""
        return trace.get_tracer(name, self.config.service_version)

    def get_meter(self, name: str) -> metrics.Meter:
        """Get a meter for the given name."""
        return metrics.get_meter(name, self.config.service_version)


_telemetry_manager: TelemetryManager | None = None


def get_telemetry_manager() -> TelemetryManager:
    """Get the global telemetry manager instance."""
    global _telemetry_manager
    if _telemetry_manager is None:
        _telemetry_manager = TelemetryManager()
    return _telemetry_manager


def initialize_telemetry(config: TelemetryConfig | None = None) -> TelemetryManager:
    """Initialize OpenTelemetry with the given configuration."""
    global _telemetry_manager
    _telemetry_manager = TelemetryManager(config)
    _telemetry_manager.initialize()
    return _telemetry_manager


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer for the given name."""
    return get_telemetry_manager().get_tracer(name)


class DeployerMetrics:
    """Custom metrics for deploy attempts."""

    def __init__(self) -> None:
        """Initialize custom metrics."""
        self.meter = get_telemetry_manager().get_meter("staging_deployer.metrics")

        self.deploy_duration = self.meter.create_histogram(
            name="staging_deploy_duration_seconds",
            description="Time taken by a staging deploy",
            unit="s",
        )
        self.deploys = self.meter.create_counter(
            name="staging_deploys_total",
            description="Staging deploys by final status",
        )
        self.polls = self.meter.create_counter(
            name="staging_deploy_polls_total",
            description="Status queries made while polling",
        )
        self.poll_failures = self.meter.create_counter(
            name="staging_deploy_poll_failures_total",
            description="Transient status query failures",
        )

    def record_deploy(
        self, duration: float, status: str, polls: int, failures: int
    ) -> None:
        """Record a finished deploy."""
        attributes = {"status": status}
        self.deploy_duration.record(duration, attributes)
        self.deploys.add(1, attributes)
        self.polls.add(polls)
        self.poll_failures.add(failures)
