import logging
import sys

from opentelemetry._logs import set_logger_provider
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor, ConsoleLogRecordExporter

from .config import settings

# Loggers that log every HTTP request or poll and drown out controller events
NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "aiosqlite")


def setup_logging() -> None:
    """Configure OpenTelemetry logging with a Console exporter.

    Controller and issuer modules log snake_case event names with structured
    context passed through ``extra``; the OTel handler carries that context
    as log record attributes.
    """
    logger_provider = LoggerProvider()
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(ConsoleLogRecordExporter()))
    set_logger_provider(logger_provider)

    root = logging.getLogger()

    # Bridge standard python logging calls into OTel
    handler = LoggingHandler(
        level=getattr(logging, settings.LOG_LEVEL), logger_provider=logger_provider
    )
    root.addHandler(handler)
    root.setLevel(settings.LOG_LEVEL)

    # Plain stdout handler for immediate feedback while OTel batches
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root.addHandler(stream_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("certissuer")
