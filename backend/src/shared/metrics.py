from opentelemetry import metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

# Console export interval; controller counters move slowly
CONSOLE_EXPORT_INTERVAL_MS = 60_000


def setup_metrics(app_name: str) -> MeterProvider:
    """Configure OpenTelemetry metrics.

    Installs a Prometheus reader (pull) and a periodic console reader, and
    returns the provider so the caller can shut it down on exit.
    """
    resource = Resource.create({"service.name": app_name})

    prometheus_reader = PrometheusMetricReader()
    console_reader = PeriodicExportingMetricReader(
        ConsoleMetricExporter(), export_interval_millis=CONSOLE_EXPORT_INTERVAL_MS
    )

    provider = MeterProvider(resource=resource, metric_readers=[prometheus_reader, console_reader])
    metrics.set_meter_provider(provider)
    return provider
