from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

ALL_STATUSES = "all"


class LoanApplicationStatus(str, Enum):
    APPLIED = "applied"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    FOLLOW_UP = "follow_up"
    DISBURSAL = "disbursal"
    READY_FOR_DISBURSEMENT = "ready_for_disbursement"
    REPEAT_DISBURSAL = "repeat_disbursal"
    READY_TO_REPEAT_DISBURSAL = "ready_to_repeat_disbursal"
    ACCOUNT_MANAGER = "account_manager"
    OVERDUE = "overdue"
    CLEARED = "cleared"
    REJECTED = "rejected"
    PENDING_DOCUMENTS = "pending_documents"

    @classmethod
    def parse(cls, value: str | LoanApplicationStatus | None) -> LoanApplicationStatus | None:
        if value is None:
            return None
        if isinstance(value, LoanApplicationStatus):
            return value
        normalized = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        return cls._value2member_map_.get(normalized)


PAYOUT_ELIGIBLE_STATUSES = frozenset(
    {
        LoanApplicationStatus.READY_FOR_DISBURSEMENT,
        LoanApplicationStatus.READY_TO_REPEAT_DISBURSAL,
    }
)


def is_payout_eligible(status: str | LoanApplicationStatus | None) -> bool:
    return LoanApplicationStatus.parse(status) in PAYOUT_ELIGIBLE_STATUSES


class ExtensionStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AssignmentType(str, Enum):
    PRIMARY = "primary"
    TEMP = "temp"


class SortField(str, Enum):
    APPLICATION_DATE = "applicationDate"
    APPLICANT_NAME = "applicantName"
    LOAN_AMOUNT = "loanAmount"
    STATUS = "status"
    CIBIL_SCORE = "cibilScore"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"

    def toggled(self) -> SortOrder:
        return SortOrder.DESC if self is SortOrder.ASC else SortOrder.ASC


class LoanApplication(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str | int
    application_number: str | None = None
    status: LoanApplicationStatus
    loan_amount: Decimal = Decimal("0")
    applicant_name: str = ""
    mobile: str = ""
    email: str = ""
    extension_status: ExtensionStatus = ExtensionStatus.NONE
    assignment_type: AssignmentType | None = None
    loan_type: str | None = None
    application_date: datetime | None = None
    user_id: str | int | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        parsed = LoanApplicationStatus.parse(value)
        if parsed is None:
            raise ValueError(f"Unknown loan application status: {value!r}")
        return parsed

    @field_validator("extension_status", mode="before")
    @classmethod
    def _normalize_extension(cls, value):
        if value is None or value == "":
            return ExtensionStatus.NONE
        return str(value).lower()

    @field_validator("assignment_type", mode="before")
    @classmethod
    def _normalize_assignment(cls, value):
        if value is None or value == "":
            return None
        return str(value).lower()

    @property
    def has_pending_extension(self) -> bool:
        return self.extension_status is ExtensionStatus.PENDING


class QueryState(BaseModel):
    """Listing parameters. Produced only through ``services.query_state``."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1)
    status_filter: str = ALL_STATUSES
    search_term: str = ""
    sort_field: SortField = SortField.APPLICATION_DATE
    sort_order: SortOrder = SortOrder.DESC


class Pagination(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    current_page: int = 1
    total_pages: int = 0
    total_applications: int = 0
    has_next_page: bool = False
    has_prev_page: bool = False
    limit: int = 20


class ApplicationStats(BaseModel):
    """Counters for the status tabs."""

    total: int = 0
    counts_by_status: dict[str, int] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _from_overview(cls, data: Any):
        if not isinstance(data, dict) or "counts_by_status" in data:
            return data
        counts: dict[str, int] = {}
        raw_counts = data.get("countsByStatus") or data.get("statusCounts")
        if isinstance(raw_counts, dict):
            source = raw_counts
        else:
            source = data
        for key, value in source.items():
            status = LoanApplicationStatus.parse(key)
            if status is not None and isinstance(value, (int, float)):
                counts[status.value] = int(value)
        total = data.get("total", data.get("totalApplications", sum(counts.values())))
        return {"total": int(total or 0), "counts_by_status": counts}

    def count_for(self, status_filter: str) -> int:
        if status_filter == ALL_STATUSES:
            return self.total
        return self.counts_by_status.get(status_filter, 0)


class ApplicationListing(BaseModel):
    applications: list[LoanApplication] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)
    stats: ApplicationStats | None = None
    skipped_rows: int = 0
