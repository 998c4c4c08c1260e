import logging
import sys

from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogRecordExporter
from opentelemetry.sdk.resources import Resource

from .config import settings


def setup_logging(level: str | None = None) -> None:
    """Route stdlib logging through an OpenTelemetry LoggerProvider.

    Records are exported to the console by the OTel batch processor and also
    written to stdout by a plain stream handler, so startup output (authority
    bootstrap, configuration errors) is visible before the first batch flush.
    """
    level = (level or settings.LOG_LEVEL).upper()

    resource = Resource.create(
        {"service.name": settings.APP_NAME, "deployment.environment": settings.APP_ENV}
    )
    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(ConsoleLogRecordExporter()))
    set_logger_provider(logger_provider)

    root = logging.getLogger()
    root.addHandler(LoggingHandler(level=getattr(logging, level), logger_provider=logger_provider))
    root.setLevel(level)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root.addHandler(stream_handler)

    # Silence noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


logger = logging.getLogger("private_pki")
