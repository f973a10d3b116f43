from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError as SchemaValidationError

from loan_console.core.errors import ExportError, RemoteError, RemoteTimeoutError
from loan_console.core.settings import settings
from loan_console.schemas.loan import (
    ALL_STATUSES,
    ApplicationListing,
    ApplicationStats,
    LoanApplication,
    Pagination,
    QueryState,
)
from loan_console.schemas.payout import DisbursementReceipt, LoanId
from loan_console.services import query_state

logger = logging.getLogger(__name__)

_FILENAME_RE = re.compile(r'filename="?([^";]+)"?')

EXPORT_FORMATS = {
    "csv": ("/applications/export/csv", "text/csv", "loan_applications.csv"),
    "excel": (
        "/applications/export/excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "loan_applications.xlsx",
    ),
}


@dataclass(frozen=True, slots=True)
class ExportFile:
    content: bytes
    filename: str
    media_type: str


def _envelope_failed(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    if payload.get("success") is False:
        return True
    return payload.get("status") == "error"


def _envelope_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "error", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


class ApplicationDirectory:
    """Client for the lending platform's admin and payout endpoints.

    Every method returns the unwrapped ``data`` of the response envelope or
    raises :class:`RemoteError` with the server's message.
    """

    def __init__(
        self,
        *,
        admin_base_url: str,
        payout_base_url: str,
        token: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.admin_base_url = admin_base_url.rstrip("/")
        self.payout_base_url = payout_base_url.rstrip("/")
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, transport: httpx.AsyncBaseTransport | None = None) -> ApplicationDirectory:
        return cls(
            admin_base_url=settings.admin_api_base_url,
            payout_base_url=settings.payout_api_base_url,
            token=settings.admin_api_token,
            timeout=settings.admin_api_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, url: str, *, error_message: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out", method, url)
            raise RemoteTimeoutError(f"{error_message}: request timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise RemoteError(f"{error_message}: {exc}") from exc

    async def _request_json(self, method: str, url: str, *, error_message: str, **kwargs) -> Any:
        response = await self._send(method, url, error_message=error_message, **kwargs)
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if response.is_error or _envelope_failed(payload):
            message = _envelope_message(payload, error_message)
            logger.warning("%s %s returned %s: %s", method, url, response.status_code, message)
            raise RemoteError(message, status_code=response.status_code)
        if not isinstance(payload, dict):
            raise RemoteError(f"{error_message}: malformed response", status_code=response.status_code)
        return payload.get("data")

    async def list_applications(self, state: QueryState) -> ApplicationListing:
        data = await self._request_json(
            "GET",
            f"{self.admin_base_url}/applications",
            params=query_state.to_request_params(state),
            error_message="Failed to fetch applications",
        )
        data = data or {}
        applications: list[LoanApplication] = []
        skipped = 0
        for raw in data.get("applications") or []:
            try:
                applications.append(LoanApplication.model_validate(raw))
            except SchemaValidationError as exc:
                skipped += 1
                row_id = raw.get("id") if isinstance(raw, dict) else None
                logger.warning("Skipping application row %s: %s", row_id, exc.errors()[0]["msg"])
        pagination = Pagination.model_validate(data.get("pagination") or {"limit": state.page_size})
        stats = data.get("stats")
        return ApplicationListing(
            applications=applications,
            pagination=pagination,
            stats=ApplicationStats.model_validate(stats) if isinstance(stats, dict) else None,
            skipped_rows=skipped,
        )

    async def get_application_stats(self) -> ApplicationStats:
        data = await self._request_json(
            "GET",
            f"{self.admin_base_url}/applications/stats/overview",
            error_message="Failed to fetch application stats",
        )
        return ApplicationStats.model_validate(data or {})

    async def update_application_status(
        self, loan_id: LoanId, new_status: str, reason: str | None = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"status": new_status}
        if reason:
            body["reason"] = reason
        data = await self._request_json(
            "PUT",
            f"{self.admin_base_url}/applications/{loan_id}/status",
            json=body,
            error_message="Failed to update application status",
        )
        return data or {}

    async def disburse_loan(self, loan_id: LoanId) -> DisbursementReceipt:
        data = await self._request_json(
            "POST",
            f"{self.payout_base_url}/disburse-loan",
            json={"loanApplicationId": loan_id},
            error_message="Failed to disburse loan",
        )
        data = data or {}
        return DisbursementReceipt(
            loan_id=loan_id,
            transfer_id=data.get("transferId"),
            message=data.get("message"),
            loan_status=data.get("loanStatus"),
        )

    async def export_applications(
        self,
        status_filter: str = ALL_STATUSES,
        *,
        search: str | None = None,
        fmt: str = "csv",
    ) -> ExportFile:
        try:
            path, media_type, default_name = EXPORT_FORMATS[fmt]
        except KeyError as exc:
            raise ExportError(f"Unsupported export format: {fmt}") from exc
        params = {"status": status_filter}
        if search:
            params["search"] = search
        try:
            response = await self._send(
                "GET",
                f"{self.admin_base_url}{path}",
                params=params,
                error_message="Failed to export applications",
            )
        except RemoteError as exc:
            raise ExportError(exc.message) from exc
        if response.is_error:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            raise ExportError(
                _envelope_message(payload, "Failed to export applications"),
                status_code=response.status_code,
            )
        disposition = response.headers.get("content-disposition", "")
        match = _FILENAME_RE.search(disposition)
        return ExportFile(
            content=response.content,
            filename=match.group(1) if match else default_name,
            media_type=response.headers.get("content-type", media_type).split(";")[0],
        )
