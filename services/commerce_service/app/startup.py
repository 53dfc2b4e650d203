from loguru import logger
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from fastapi import FastAPI
from sqlalchemy.engine import make_url
import sys

from shared.startup import wait_for_db

from .settings import commerce_settings
from .alembic_helper import run_alembic_migrations
from .container import build_services


def setup_logging() -> None:
    """Configure Loguru for consistent, structured service logs."""
    logger.remove()
    logger.configure(extra={"request_id": "-"})
    logger.add(
        sink=sys.stdout,
        level=commerce_settings().log_level.upper(),
        backtrace=False,
        diagnose=False,
        colorize=False,
        serialize=False,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<yellow>{extra[request_id]}</yellow> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
               "<level>{message}</level>",
    )
    logger.info("🪵 Logging configured successfully.")


def setup_instrumentation(app: FastAPI) -> None:
    """Attach OpenTelemetry tracing to the FastAPI app when an OTLP endpoint is configured."""
    settings = commerce_settings()
    if not settings.otel_endpoint:
        logger.info("📈 OpenTelemetry disabled (no otel_endpoint configured).")
        return
    if trace.get_tracer_provider() and not isinstance(trace.get_tracer_provider(), trace.NoOpTracerProvider):
        logger.info("📈 OpenTelemetry instrumentation already initialized. Skipping reconfiguration.")
        return

    resource = Resource(attributes={SERVICE_NAME: settings.service_name})
    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=str(settings.otel_endpoint)))
    )
    trace.set_tracer_provider(tracer_provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)
    app.state.tracer_provider = tracer_provider
    logger.info("📈 OpenTelemetry instrumentation configured.")


async def init_service_startup(app: FastAPI) -> None:
    """Check the database, apply migrations and wire the services onto ``app.state``."""
    if getattr(app.state, "services", None) is not None:
        app.state.is_ready = True
        return

    app.state.is_ready = False
    settings = commerce_settings()
    tracer = trace.get_tracer(__name__)
    logger.info(f"🚀 Initializing {settings.service_name} ({settings.environment})...")

    for key, value in settings.safe_dict().items():
        logger.info(f"    {key}: {value}")

    if make_url(settings.async_db_url).get_backend_name() == "postgresql":
        with tracer.start_as_current_span("db.readiness_check"):
            await wait_for_db(settings.async_db_url)

    if settings.run_migrations_on_startup:
        with tracer.start_as_current_span("db.run_migrations"):
            await run_alembic_migrations(settings.sync_db_url)

    app.state.services = build_services(settings)
    app.state.is_ready = True
    logger.info(f"✅ {settings.service_name} startup completed successfully.")


async def shutdown_service(app: FastAPI) -> None:
    """Dispose the engine and flush span processors."""
    services = getattr(app.state, "services", None)
    if services is not None and getattr(app.state, "owns_services", True):
        await services.dispose()
    tracer_provider = getattr(app.state, "tracer_provider", None)
    if tracer_provider:
        tracer_provider.shutdown()
        logger.info("🧹 OpenTelemetry instrumentation shut down gracefully.")
