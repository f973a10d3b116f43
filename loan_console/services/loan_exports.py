from __future__ import annotations

import logging
from datetime import date

from loan_console.core.errors import ExportError, RemoteError
from loan_console.core.logging import audit_event
from loan_console.schemas.loan import ALL_STATUSES
from loan_console.services.application_directory import EXPORT_FORMATS, ApplicationDirectory, ExportFile

logger = logging.getLogger(__name__)


def export_filename(status_filter: str, fmt: str, today: date | None = None) -> str:
    extension = "xlsx" if fmt == "excel" else "csv"
    stamp = (today or date.today()).isoformat()
    label = "all" if status_filter == ALL_STATUSES else status_filter
    return f"loan_applications_{label}_{stamp}.{extension}"


class ExportDispatcher:
    """Fetches server-rendered exports for a status filter.

    Holds no queue state; a failed export never touches the selection or the
    query.
    """

    def __init__(self, directory: ApplicationDirectory) -> None:
        self.directory = directory

    async def request_export(
        self,
        status_filter: str = ALL_STATUSES,
        *,
        search: str | None = None,
        fmt: str = "csv",
    ) -> ExportFile:
        if fmt not in EXPORT_FORMATS:
            raise ExportError(
                f"Unsupported export format: {fmt}",
                details={"allowed": sorted(EXPORT_FORMATS)},
            )
        try:
            exported = await self.directory.export_applications(status_filter, search=search, fmt=fmt)
        except ExportError:
            logger.warning("Export failed for status=%s format=%s", status_filter, fmt)
            raise
        except RemoteError as exc:
            raise ExportError(exc.message, status_code=exc.remote_status) from exc
        audit_event(
            "loan_applications.exported",
            status_filter=status_filter,
            format=fmt,
            size_bytes=len(exported.content),
        )
        return ExportFile(
            content=exported.content,
            filename=export_filename(status_filter, fmt),
            media_type=exported.media_type,
        )
