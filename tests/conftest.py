"""Shared test infrastructure.

Provides:
- Environment defaults (must be set before any loan_console import)
- make_application factory
- FakeDirectory matching the ApplicationDirectory interface
- RecordingSleep to observe payout pacing without waiting
- Fixtures for the FastAPI app with a fake directory installed
"""

from __future__ import annotations

import os

# Environment defaults: settings are read once, on first import.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ADMIN_API_BASE_URL", "http://lending.test/api/admin")
os.environ.setdefault("PAYOUT_API_BASE_URL", "http://lending.test/api/payout")
os.environ.setdefault("ADMIN_API_TOKEN", "test-token")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("PAYOUT_PACING_SECONDS", "0")
os.environ.setdefault("SEARCH_DEBOUNCE_SECONDS", "0.05")

from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient

from loan_console.core.limiter import limiter
from loan_console.main import app
from loan_console.schemas.loan import (
    ApplicationListing,
    ApplicationStats,
    LoanApplication,
    Pagination,
    QueryState,
)
from loan_console.schemas.payout import DisbursementReceipt
from loan_console.services.application_directory import ExportFile
from loan_console.services.queue_session import QueueSessionRegistry


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


_APPLICATION_DEFAULTS: dict[str, Any] = dict(
    loan_amount=Decimal("25000.00"),
    applicant_name="Asha Verma",
    mobile="9876543210",
    email="asha@example.com",
)


def make_application(loan_id: str | int, status: str, **overrides: Any) -> LoanApplication:
    fields = {
        **_APPLICATION_DEFAULTS,
        "id": loan_id,
        "application_number": f"CL{loan_id}",
        "status": status,
    }
    fields.update(overrides)
    return LoanApplication(**fields)


def make_listing(rows: list[LoanApplication], *, page: int = 1, total_pages: int = 1) -> ApplicationListing:
    return ApplicationListing(
        applications=rows,
        pagination=Pagination(
            current_page=page,
            total_pages=total_pages,
            total_applications=len(rows),
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
            limit=20,
        ),
    )


# ---------------------------------------------------------------------------
# FakeDirectory: mimics services.application_directory.ApplicationDirectory
# ---------------------------------------------------------------------------


class FakeDirectory:
    """In-memory stand-in for the lending API.

    ``listings`` maps a page number to the listing returned for it; pages
    without an entry return ``rows``. ``disburse_failures`` maps an id to the
    exception its disbursement raises.
    """

    def __init__(self, rows: list[LoanApplication] | None = None) -> None:
        self.rows: list[LoanApplication] = list(rows or [])
        self.listings: dict[int, ApplicationListing] = {}
        self.disburse_failures: dict[str, Exception] = {}
        self.stats = ApplicationStats(total=0, counts_by_status={})
        self.export_content = b"id,status\n"
        self.export_error: Exception | None = None
        self.list_error: Exception | None = None
        self.list_calls: list[QueryState] = []
        self.stats_calls = 0
        self.disburse_calls: list[Any] = []
        self.export_calls: list[tuple[str, str | None, str]] = []
        self.status_updates: list[tuple[Any, str, str | None]] = []
        self.log: list[tuple[str, Any]] = []

    async def list_applications(self, state: QueryState) -> ApplicationListing:
        self.list_calls.append(state)
        self.log.append(("list", state.page))
        if self.list_error is not None:
            raise self.list_error
        if state.page in self.listings:
            return self.listings[state.page]
        return make_listing(self.rows, page=state.page)

    async def get_application_stats(self) -> ApplicationStats:
        self.stats_calls += 1
        self.log.append(("stats", None))
        return self.stats

    async def disburse_loan(self, loan_id) -> DisbursementReceipt:
        self.disburse_calls.append(loan_id)
        self.log.append(("disburse", loan_id))
        failure = self.disburse_failures.get(str(loan_id))
        if failure is not None:
            raise failure
        return DisbursementReceipt(loan_id=loan_id, transfer_id=f"TRF-{loan_id}")

    async def update_application_status(self, loan_id, new_status: str, reason: str | None = None) -> dict:
        self.status_updates.append((loan_id, new_status, reason))
        return {"id": loan_id, "status": new_status}

    async def export_applications(self, status_filter: str = "all", *, search=None, fmt: str = "csv") -> ExportFile:
        self.export_calls.append((status_filter, search, fmt))
        if self.export_error is not None:
            raise self.export_error
        return ExportFile(content=self.export_content, filename="loan_applications.csv", media_type="text/csv")

    async def aclose(self) -> None:
        pass


class RecordingSleep:
    """Replaces asyncio.sleep; writes each pause into a shared log."""

    def __init__(self, log: list | None = None) -> None:
        self.log = log if log is not None else []
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        self.log.append(("sleep", delay))


# ---------------------------------------------------------------------------
# Shared pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    limiter.reset()
    yield


@pytest.fixture
def fake_directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def client(fake_directory):
    app.state.directory = fake_directory
    app.state.queue_sessions = QueueSessionRegistry()
    yield TestClient(app)
    app.state.directory = None
    app.state.queue_sessions = None


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Role": "admin"}

