from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from loan_console.core.errors import StaleStateError
from loan_console.schemas.loan import (
    ALL_STATUSES,
    PAYOUT_ELIGIBLE_STATUSES,
    LoanApplication,
    LoanApplicationStatus,
)
from loan_console.schemas.payout import LoanId
from loan_console.schemas.roles import RoleContext
from loan_console.services import status_visibility

logger = logging.getLogger(__name__)

INELIGIBLE_SELECTION_WARNING = (
    "Only loans with Ready for Disbursement or Repeat Ready for Disbursal status can be selected."
)


@dataclass(frozen=True, slots=True)
class SelectionChange:
    changed: bool
    selected_ids: tuple[LoanId, ...]
    warning: str | None = None
    added: tuple[LoanId, ...] = field(default_factory=tuple)
    removed: tuple[LoanId, ...] = field(default_factory=tuple)


def _key(loan_id: LoanId) -> str:
    return str(loan_id)


def selectable_statuses(role_context: RoleContext) -> frozenset[LoanApplicationStatus]:
    """Payout-eligible statuses this role can actually have on screen."""
    visibility = status_visibility.resolve(role_context)
    allowed = visibility.allowed_statuses
    if allowed is None or ALL_STATUSES in allowed:
        return PAYOUT_ELIGIBLE_STATUSES
    return frozenset(status for status in PAYOUT_ELIGIBLE_STATUSES if status.value in allowed)


class SelectionManager:
    """Checked rows of the disbursement queue.

    Holds ids together with the status each row had when it was last seen,
    so the payout batch can re-check eligibility without another fetch.
    Ids survive pagination; a refresh prunes the ones that went stale.
    """

    def __init__(self, role_context: RoleContext) -> None:
        self.role_context = role_context
        self._selectable = selectable_statuses(role_context)
        self._entries: dict[str, tuple[LoanId, LoanApplicationStatus]] = {}
        self.stale_pruned = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, loan_id: object) -> bool:
        return _key(loan_id) in self._entries

    @property
    def selected_ids(self) -> tuple[LoanId, ...]:
        return tuple(loan_id for loan_id, _ in self._entries.values())

    def is_eligible(self, status: str | LoanApplicationStatus | None) -> bool:
        return LoanApplicationStatus.parse(status) in self._selectable

    def known_status(self, loan_id: LoanId) -> LoanApplicationStatus | None:
        entry = self._entries.get(_key(loan_id))
        return entry[1] if entry else None

    def _change(self, added=(), removed=(), warning: str | None = None) -> SelectionChange:
        return SelectionChange(
            changed=bool(added or removed),
            selected_ids=self.selected_ids,
            warning=warning,
            added=tuple(added),
            removed=tuple(removed),
        )

    def toggle(self, loan_id: LoanId, status: str | LoanApplicationStatus) -> SelectionChange:
        key = _key(loan_id)
        if not self.is_eligible(status):
            logger.info("Ignored selection of %s with status %s", loan_id, status)
            return self._change(warning=INELIGIBLE_SELECTION_WARNING)
        if key in self._entries:
            removed_id, _ = self._entries.pop(key)
            return self._change(removed=[removed_id])
        self._entries[key] = (loan_id, LoanApplicationStatus.parse(status))
        return self._change(added=[loan_id])

    def select_all_eligible(self, rows: Iterable[LoanApplication]) -> SelectionChange:
        eligible = [row for row in rows if self.is_eligible(row.status)]
        if not eligible:
            return self._change()
        if all(_key(row.id) in self._entries for row in eligible):
            removed = [self._entries.pop(_key(row.id))[0] for row in eligible]
            return self._change(removed=removed)
        added: list[LoanId] = []
        for row in eligible:
            key = _key(row.id)
            if key not in self._entries:
                added.append(row.id)
            self._entries[key] = (row.id, row.status)
        return self._change(added=added)

    def clear(self) -> SelectionChange:
        removed = list(self.selected_ids)
        self._entries.clear()
        return self._change(removed=removed)

    def prune(self, rows: Iterable[LoanApplication], *, complete: bool = False) -> SelectionChange:
        """Reconcile with freshly fetched rows.

        Rows that are present but no longer eligible are dropped and the
        rest get their latest status. With ``complete`` the rows are the
        whole result set, so ids missing from it are dropped too.
        """
        fresh = {_key(row.id): row for row in rows}
        removed: list[LoanId] = []
        for key, (loan_id, _) in list(self._entries.items()):
            row = fresh.get(key)
            if row is None:
                if complete:
                    removed.append(self._entries.pop(key)[0])
                continue
            if not self.is_eligible(row.status):
                removed.append(self._entries.pop(key)[0])
                continue
            self._entries[key] = (loan_id, row.status)
        if removed:
            self.stale_pruned += len(removed)
            logger.info(
                "Pruned %d stale selections: %s",
                len(removed),
                removed,
                extra={"event": {"code": StaleStateError.code, "ids": [str(item) for item in removed]}},
            )
        return self._change(removed=removed)
