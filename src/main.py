from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from pki.api import authorities as authorities_api
from pki.api import certificates as certificates_api
from pki.api import crl as crl_api
from pki.api.dependencies import set_pki_service
from pki.api.schemas import ErrorResponse
from pki.domain.errors import CRLConflictError, PKIError
from pki.services.bootstrap import bootstrap_authority_if_needed
from pki.services.pki_service import build_sql_pki_service
from shared.config import settings
from shared.database import AsyncSessionLocal, engine, init_db
from shared.logging import logger, setup_logging
from shared.metrics import setup_metrics


# Setup OpenTelemetry Tracing
def setup_tracing() -> None:
    resource = Resource.create({"service.name": settings.APP_NAME})
    provider = TracerProvider(resource=resource)

    # Export traces to console
    processor = BatchSpanProcessor(ConsoleSpanExporter())
    provider.add_span_processor(processor)

    trace.set_tracer_provider(provider)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    setup_logging()
    setup_tracing()
    setup_metrics(settings.APP_NAME)

    LoggingInstrumentor().instrument(set_logging_format=True)
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)

    await init_db()

    service = build_sql_pki_service(AsyncSessionLocal)
    set_pki_service(service)

    await bootstrap_authority_if_needed(service)

    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Instrument FastAPI
FastAPIInstrumentor.instrument_app(app)

# Include routers
app.include_router(authorities_api.router)
app.include_router(certificates_api.router)
app.include_router(crl_api.router)


@app.exception_handler(PKIError)
async def pki_error_handler(request: Request, exc: PKIError) -> JSONResponse:
    """Map PKI failures the routers did not handle to an ErrorResponse body."""
    if isinstance(exc, CRLConflictError):
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        logger.error(
            "pki_request_failed",
            extra={"path": request.url.path, "error_type": type(exc).__name__},
        )
    body = ErrorResponse(error=str(exc), code=type(exc).__name__)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok", "service": settings.APP_NAME}
