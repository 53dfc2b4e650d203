from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager

from shared.errors import http_exception_handler, unhandled_exception_handler
from shared.request_context import RequestIDMiddleware

from .container import CommerceServices
from .errors import CommerceError, commerce_exception_handler, validation_exception_handler
from .routes import register_routes
from .startup import init_service_startup, setup_instrumentation, setup_logging, shutdown_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_service_startup(app)
    yield
    await shutdown_service(app)


def create_app(services: CommerceServices | None = None) -> FastAPI:
    setup_logging()
    app = FastAPI(title="Commerce Service", version="0.1.0", lifespan=lifespan)
    if services is not None:
        # Caller-provided services (tests, embedding) are disposed by the caller
        app.state.services = services
        app.state.owns_services = False
    app.add_middleware(RequestIDMiddleware)
    app.add_exception_handler(CommerceError, commerce_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    setup_instrumentation(app)
    register_routes(app)
    return app


app = create_app()
