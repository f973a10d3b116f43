import logging

from fastapi import FastAPI

from loan_console.services.application_directory import ApplicationDirectory
from loan_console.services.queue_session import QueueSessionRegistry

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup")
        if getattr(app.state, "directory", None) is None:
            app.state.directory = ApplicationDirectory.from_settings()
        if getattr(app.state, "queue_sessions", None) is None:
            app.state.queue_sessions = QueueSessionRegistry()

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        registry = getattr(app.state, "queue_sessions", None)
        if registry is not None:
            await registry.close_all()
        directory = getattr(app.state, "directory", None)
        if directory is not None:
            await directory.aclose()
