from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from loan_console.core.errors import RemoteError
from loan_console.core.settings import settings

APP_VERSION = "0.1.0"


async def _check_directory(directory) -> dict[str, str]:
    if directory is None:
        return {"status": "error", "error": "not configured"}
    try:
        await directory.get_application_stats()
        return {"status": "ok"}
    except RemoteError as exc:
        return {"status": "error", "error": exc.message}


async def _check_api() -> dict[str, str]:
    return {"status": "ok", "version": APP_VERSION}


def _overall_status(checks: dict[str, dict[str, Any]]) -> tuple[str, bool]:
    ready = all(check.get("status") == "ok" for check in checks.values())
    return ("ok" if ready else "degraded", ready)


async def live_payload() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def ready_payload(directory, open_sessions: int = 0) -> dict[str, Any]:
    checks = {
        "api": await _check_api(),
        "application_directory": await _check_directory(directory),
    }
    overall, ready = _overall_status(checks)
    return {
        "status": overall,
        "ready": ready,
        "environment": settings.environment,
        "version": APP_VERSION,
        "open_sessions": open_sessions,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
