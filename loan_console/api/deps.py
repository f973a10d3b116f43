from fastapi import Depends, Header, HTTPException, Request, status

from loan_console.schemas.roles import RoleContext
from loan_console.services.application_directory import ApplicationDirectory
from loan_console.services.queue_session import LoanQueueSession, QueueSessionRegistry


async def get_role_context(
    role: str | None = Header(default=None, alias="X-Admin-Role"),
    sub_admin_category: str | None = Header(default=None, alias="X-Sub-Admin-Category"),
) -> RoleContext:
    if not role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Admin role missing: provide X-Admin-Role header",
        )
    return RoleContext.from_raw(role, sub_admin_category)


def get_directory(request: Request) -> ApplicationDirectory:
    directory = getattr(request.app.state, "directory", None)
    if directory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application directory not configured",
        )
    return directory


def get_registry(request: Request) -> QueueSessionRegistry:
    registry = getattr(request.app.state, "queue_sessions", None)
    if registry is None:
        registry = QueueSessionRegistry()
        request.app.state.queue_sessions = registry
    return registry


async def get_queue_session(
    session_id: str,
    role_context: RoleContext = Depends(get_role_context),
    registry: QueueSessionRegistry = Depends(get_registry),
) -> LoanQueueSession:
    return registry.get(session_id, role_context)
