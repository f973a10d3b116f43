from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from loan_console.core.errors import (
    BatchInProgress,
    ConfirmationRequired,
    RemoteError,
    RemoteTimeoutError,
    ValidationError,
)
from loan_console.core.logging import audit_event
from loan_console.core.settings import settings
from loan_console.schemas.loan import LoanApplicationStatus, is_payout_eligible
from loan_console.schemas.payout import (
    BatchOutcome,
    BatchResult,
    BatchSummary,
    DisbursementReceipt,
    LoanId,
    PayoutErrorKind,
    PayoutOutcome,
)
from loan_console.services.queue_events import (
    BatchCompleted,
    PayoutItemFailed,
    PayoutItemStarted,
    PayoutItemSucceeded,
    QueueEventHub,
)
from loan_console.services.selection import SelectionManager

logger = logging.getLogger(__name__)

Disburse = Callable[[LoanId], Awaitable[DisbursementReceipt]]
StatusLookup = Callable[[LoanId], LoanApplicationStatus | str | None]
Sleep = Callable[[float], Awaitable[None]]

NO_ELIGIBLE_MESSAGE = "No eligible loans selected for disbursement"
INELIGIBLE_AT_ENTRY_MESSAGE = "Loan is no longer Ready for Disbursement or Repeat Ready for Disbursal"


def _dedupe(ids: Iterable[LoanId]) -> list[LoanId]:
    seen: set[str] = set()
    ordered: list[LoanId] = []
    for loan_id in ids:
        key = str(loan_id)
        if key in seen:
            continue
        seen.add(key)
        ordered.append(loan_id)
    return ordered


class PayoutOrchestrator:
    """Runs bulk payouts one loan at a time.

    Calls are strictly sequential with ``pacing_seconds`` between the end of
    one call and the start of the next, whatever the outcome. The payment
    rail downstream is rate limited; do not parallelise this loop.
    """

    def __init__(
        self,
        *,
        pacing_seconds: float | None = None,
        events: QueueEventHub | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.pacing_seconds = settings.payout_pacing_seconds if pacing_seconds is None else pacing_seconds
        self.events = events or QueueEventHub()
        self._sleep = sleep
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    def partition(
        self, ids: Iterable[LoanId], status_lookup: StatusLookup
    ) -> tuple[list[LoanId], list[LoanId]]:
        eligible: list[LoanId] = []
        rejected: list[LoanId] = []
        for loan_id in _dedupe(ids):
            if is_payout_eligible(status_lookup(loan_id)):
                eligible.append(loan_id)
            else:
                rejected.append(loan_id)
        return eligible, rejected

    async def run(
        self,
        ids: Iterable[LoanId],
        disburse: Disburse,
        *,
        confirmed: bool,
        selection: SelectionManager | None = None,
        status_lookup: StatusLookup | None = None,
    ) -> BatchResult:
        if self._active:
            raise BatchInProgress("A payout batch is already running")
        lookup = status_lookup or (selection.known_status if selection is not None else None)
        if lookup is None:
            raise ValueError("status_lookup or selection is required to check eligibility")

        # Statuses are fixed at entry; refreshes during the batch do not affect it.
        ordered = _dedupe(ids)
        snapshot = {str(loan_id): lookup(loan_id) for loan_id in ordered}

        def entry_status(loan_id: LoanId):
            return snapshot.get(str(loan_id))

        eligible, rejected = self.partition(ordered, entry_status)
        if not eligible:
            raise ValidationError(NO_ELIGIBLE_MESSAGE, details={"rejected": rejected})
        if not confirmed:
            raise ConfirmationRequired(
                "Confirm the disbursement before starting the batch",
                details={"eligible": eligible},
            )

        result = BatchResult()
        for loan_id in rejected:
            logger.warning("Loan %s dropped from payout batch: status not eligible", loan_id)
            result.record(
                PayoutOutcome(
                    id=loan_id,
                    success=False,
                    error=INELIGIBLE_AT_ENTRY_MESSAGE,
                    error_kind=PayoutErrorKind.VALIDATION,
                )
            )

        self._active = True
        try:
            logger.info("Payout batch started: %d loans, pacing=%ss", len(eligible), self.pacing_seconds)
            total = len(eligible)
            for position, loan_id in enumerate(eligible, start=1):
                self.events.publish(PayoutItemStarted(loan_id=loan_id, position=position, total=total))
                outcome = await self._disburse_one(loan_id, disburse, entry_status)
                result.record(outcome)
                if outcome.success:
                    self.events.publish(PayoutItemSucceeded(outcome=outcome))
                else:
                    self.events.publish(PayoutItemFailed(outcome=outcome))
                if position < total:
                    await self._sleep(self.pacing_seconds)
        finally:
            self._active = False

        if selection is not None:
            selection.clear()
        logger.info(
            "Payout batch finished: %d succeeded, %d failed",
            len(result.success),
            len(result.failed),
        )
        self.events.publish(BatchCompleted(result=result))
        return result

    async def _disburse_one(
        self, loan_id: LoanId, disburse: Disburse, lookup: StatusLookup
    ) -> PayoutOutcome:
        try:
            if not is_payout_eligible(lookup(loan_id)):
                raise ValidationError(INELIGIBLE_AT_ENTRY_MESSAGE)
            receipt = await disburse(loan_id)
        except ValidationError as exc:
            outcome = PayoutOutcome(
                id=loan_id, success=False, error=exc.message, error_kind=PayoutErrorKind.VALIDATION
            )
        except RemoteTimeoutError as exc:
            outcome = PayoutOutcome(
                id=loan_id, success=False, error=exc.message, error_kind=PayoutErrorKind.TIMEOUT
            )
        except RemoteError as exc:
            outcome = PayoutOutcome(
                id=loan_id, success=False, error=exc.message, error_kind=PayoutErrorKind.REMOTE
            )
        except Exception as exc:
            logger.exception("Unexpected failure disbursing loan %s", loan_id)
            outcome = PayoutOutcome(
                id=loan_id,
                success=False,
                error=str(exc) or "Failed to disburse loan",
                error_kind=PayoutErrorKind.REMOTE,
            )
        else:
            outcome = PayoutOutcome(id=loan_id, success=True, transfer_id=receipt.transfer_id)

        if outcome.success:
            audit_event("loan.disbursed", resource_id=str(loan_id), transfer_id=outcome.transfer_id)
        else:
            logger.warning("Disbursement failed for loan %s: %s", loan_id, outcome.error)
            audit_event(
                "loan.disbursement_failed",
                resource_id=str(loan_id),
                error=outcome.error,
                kind=outcome.error_kind.value if outcome.error_kind else None,
            )
        return outcome


def summarize(result: BatchResult) -> BatchSummary:
    outcome = result.outcome
    succeeded = len(result.success)
    failed = len(result.failed)
    failures = "; ".join(f"{item.id}: {item.error}" for item in result.failed)
    if outcome is BatchOutcome.SUCCEEDED:
        message = f"Successfully disbursed {succeeded} loan(s)"
    elif outcome is BatchOutcome.PARTIAL:
        message = f"Disbursed {succeeded} of {result.total} loan(s). Failed: {failures}"
    else:
        message = f"Failed to disburse {failed} loan(s): {failures}"
    return BatchSummary(
        outcome=outcome,
        message=message,
        succeeded=succeeded,
        failed=failed,
        result=result,
    )
