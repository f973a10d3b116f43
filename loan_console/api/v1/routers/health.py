from fastapi import APIRouter, Request

from loan_console.core.health import live_payload, ready_payload
from loan_console.core.limiter import limiter

router = APIRouter(tags=["health"])


@router.get("/health/live", summary="Service liveness check")
@limiter.exempt
async def health_live(request: Request) -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Service readiness check")
@limiter.exempt
async def health_ready(request: Request) -> dict:
    registry = getattr(request.app.state, "queue_sessions", None)
    return await ready_payload(
        getattr(request.app.state, "directory", None),
        open_sessions=len(registry) if registry is not None else 0,
    )
