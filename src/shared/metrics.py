from opentelemetry import metrics
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from .config import settings


def setup_metrics(app_name: str, console_interval_ms: int = 60_000) -> MeterProvider:
    """Install the global MeterProvider used by pki.metrics.

    Prometheus is the pull reader scraped in production; the console reader
    dumps the same counters periodically for local runs.
    """
    resource = Resource.create(
        {"service.name": app_name, "deployment.environment": settings.APP_ENV}
    )

    prometheus_reader = PrometheusMetricReader()
    console_reader = PeriodicExportingMetricReader(
        ConsoleMetricExporter(), export_interval_millis=console_interval_ms
    )

    provider = MeterProvider(resource=resource, metric_readers=[prometheus_reader, console_reader])
    metrics.set_meter_provider(provider)
    return provider
