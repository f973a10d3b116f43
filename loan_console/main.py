from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware

from loan_console.api.v1 import api_router
from loan_console.core.errors import register_exception_handlers
from loan_console.core.health import APP_VERSION
from loan_console.core.limiter import limiter
from loan_console.core.logging import configure_logging
from loan_console.core.response_envelope import register_response_envelope
from loan_console.core.settings import settings
from loan_console.events import register_event_handlers
from loan_console.middlewares.request_context import RequestContextMiddleware


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Loan Console", version=APP_VERSION)
    register_exception_handlers(app)
    register_response_envelope(app)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(api_router, prefix="/api/v1")
    register_event_handlers(app)
    return app


app = create_app()
