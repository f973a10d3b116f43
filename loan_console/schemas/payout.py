from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

LoanId = str | int


class BatchOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


class PayoutErrorKind(str, Enum):
    VALIDATION = "validation"
    REMOTE = "remote"
    TIMEOUT = "timeout"


class PayoutOutcome(BaseModel):
    id: LoanId
    success: bool
    error: str | None = None
    error_kind: PayoutErrorKind | None = None
    transfer_id: str | None = None


class PayoutFailure(BaseModel):
    id: LoanId
    error: str
    kind: PayoutErrorKind = PayoutErrorKind.REMOTE


class BatchResult(BaseModel):
    success: list[LoanId] = Field(default_factory=list)
    failed: list[PayoutFailure] = Field(default_factory=list)
    transfer_ids: dict[str, str] = Field(default_factory=dict)

    def record(self, outcome: PayoutOutcome) -> None:
        if outcome.success:
            self.success.append(outcome.id)
            if outcome.transfer_id:
                self.transfer_ids[str(outcome.id)] = outcome.transfer_id
        else:
            self.failed.append(
                PayoutFailure(
                    id=outcome.id,
                    error=outcome.error or "Failed to disburse loan",
                    kind=outcome.error_kind or PayoutErrorKind.REMOTE,
                )
            )

    @property
    def total(self) -> int:
        return len(self.success) + len(self.failed)

    @property
    def outcome(self) -> BatchOutcome:
        if not self.failed:
            return BatchOutcome.SUCCEEDED
        if not self.success:
            return BatchOutcome.FAILED
        return BatchOutcome.PARTIAL


class BatchSummary(BaseModel):
    outcome: BatchOutcome
    message: str
    succeeded: int
    failed: int
    result: BatchResult


class DisbursementReceipt(BaseModel):
    loan_id: LoanId
    transfer_id: str | None = None
    message: str | None = None
    loan_status: str | None = None
