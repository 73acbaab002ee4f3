from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from certissuer.api import certificates as certificates_api
from certissuer.ca.manager import CAManager
from certissuer.ca.persistor import SecretsPersistor
from certissuer.controller.controller import CertificateController
from certissuer.controller.informer import Informer
from certissuer.repository.repositories import SqlCertificateRequestStore
from certissuer.services.bootstrap import bootstrap_issuer
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from shared.config import settings
from shared.database import AsyncSessionLocal, create_tables, engine
from shared.logging import logger, setup_logging
from shared.metrics import setup_metrics


# Setup OpenTelemetry Tracing
def setup_tracing() -> None:
    resource = Resource.create({"service.name": settings.APP_NAME})
    provider = TracerProvider(resource=resource)

    processor = BatchSpanProcessor(ConsoleSpanExporter())
    provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    setup_logging()
    setup_tracing()
    meter_provider = setup_metrics(settings.APP_NAME)

    LoggingInstrumentor().instrument(set_logging_format=True)
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    await create_tables()

    # Certificate request store, shared by the API and the controller
    store = SqlCertificateRequestStore(AsyncSessionLocal)
    certificates_api.set_store(store)

    # Load the CA and build the issuer
    ca_manager = CAManager(SecretsPersistor(AsyncSessionLocal, settings.CA_SECRET_NAME))
    issuer = await bootstrap_issuer(ca_manager, settings)

    controller = CertificateController(store, issuer)
    informer = Informer(store, controller, settings.CONTROLLER_RESYNC_SECONDS)
    await informer.start()
    logger.info("certificate_controller_started")

    yield

    # Shutdown
    await informer.stop()
    await ca_manager.unload_ca()
    await engine.dispose()
    meter_provider.shutdown()
    logger.info("certificate_controller_stopped")


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Instrument FastAPI
FastAPIInstrumentor.instrument_app(app)

# Include routers
app.include_router(certificates_api.router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok", "service": settings.APP_NAME}
