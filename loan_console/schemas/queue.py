from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from loan_console.schemas.loan import (
    ApplicationStats,
    LoanApplication,
    Pagination,
    QueryState,
    SortField,
)
from loan_console.schemas.payout import BatchSummary, LoanId


class StatusVisibilityResponse(BaseModel):
    role: str
    sub_admin_category: str | None = None
    allowed_statuses: list[str] | None = None
    default_status: str
    restricted: bool
    nothing_visible: bool = False


class QueueSessionCreateRequest(BaseModel):
    pinned_status: str | None = Field(
        default=None, description="Status forced by a dedicated page, e.g. overdue"
    )


class QueryUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: str | None = None
    search: str | None = None
    sort_field: SortField | None = None
    page: int | None = Field(default=None, ge=1)
    page_size: int | None = Field(default=None, ge=1)
    debounce_search: bool = Field(
        default=False, description="Wait for the quiet period before committing the search"
    )


class SelectionToggleRequest(BaseModel):
    id: LoanId


class PayoutRequest(BaseModel):
    confirm: bool = False


class StatusUpdateRequest(BaseModel):
    status: str
    reason: str | None = None


class SearchState(BaseModel):
    pending: bool
    pending_value: str | None = None
    committed_value: str


class QueueSessionResponse(BaseModel):
    session_id: str
    role: str
    sub_admin_category: str | None = None
    allowed_statuses: list[str] | None = None
    default_status: str
    pinned_status: str | None = None
    query: QueryState
    search: SearchState
    applications: list[LoanApplication]
    pagination: Pagination
    stats: ApplicationStats | None = None
    selected_ids: list[LoanId]
    batch_active: bool
    last_batch: BatchSummary | None = None


class SelectionResponse(BaseModel):
    selected_ids: list[LoanId]
    changed: bool
    warning: str | None = None
    severity: Literal["info", "warning"] = "info"


class StatusUpdateResponse(BaseModel):
    id: LoanId
    status: str
    data: dict = Field(default_factory=dict)
