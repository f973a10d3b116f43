from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from loan_console.core.context import set_session_id
from loan_console.core.errors import RemoteError, SessionNotFound, ValidationError
from loan_console.core.logging import audit_event
from loan_console.core.settings import settings
from loan_console.schemas.loan import (
    ALL_STATUSES,
    ApplicationStats,
    LoanApplication,
    LoanApplicationStatus,
    Pagination,
    QueryState,
    SortField,
)
from loan_console.schemas.payout import BatchSummary, LoanId
from loan_console.schemas.roles import RoleContext
from loan_console.services import query_state, status_visibility
from loan_console.services.application_directory import ApplicationDirectory, ExportFile
from loan_console.services.debounce import SearchDebouncer
from loan_console.services.loan_exports import ExportDispatcher
from loan_console.services.payout_orchestrator import PayoutOrchestrator, summarize
from loan_console.services.queue_events import (
    QueryChanged,
    QueueEventHub,
    SelectionChanged,
    SelectionWarning,
)
from loan_console.services.request_sequencer import ResponseGate
from loan_console.services.selection import SelectionChange, SelectionManager

logger = logging.getLogger(__name__)


class LoanQueueSession:
    """One operator's view of the loan applications queue."""

    def __init__(
        self,
        role_context: RoleContext,
        directory: ApplicationDirectory,
        *,
        session_id: str | None = None,
        pinned_status: str | None = None,
        events: QueueEventHub | None = None,
        orchestrator: PayoutOrchestrator | None = None,
        debounce_seconds: float | None = None,
    ) -> None:
        self.session_id = session_id or uuid4().hex
        self.role_context = role_context
        self.directory = directory
        self.pinned_status = pinned_status
        self.visibility = status_visibility.resolve(role_context)
        self.events = events or QueueEventHub()
        self.selection = SelectionManager(role_context)
        self.orchestrator = orchestrator or PayoutOrchestrator(events=self.events)
        self.exporter = ExportDispatcher(directory)
        self.debouncer = SearchDebouncer(self._commit_search, delay=debounce_seconds)
        self.listing_gate = ResponseGate("listing")
        self.stats_gate = ResponseGate("stats")

        correction = status_visibility.correct_status_filter(
            ALL_STATUSES, self.visibility, pinned_status=pinned_status
        )
        self.state: QueryState = query_state.initial_state(status_filter=correction.status_filter)
        self.rows: list[LoanApplication] = []
        self.pagination = Pagination(limit=self.state.page_size)
        self.stats: ApplicationStats | None = None
        self.last_batch: BatchSummary | None = None
        self.last_active_at = datetime.now(timezone.utc)

    # -- query -----------------------------------------------------------

    def touch(self) -> None:
        self.last_active_at = datetime.now(timezone.utc)
        set_session_id(self.session_id)

    @property
    def nothing_visible(self) -> bool:
        return self.visibility.nothing_visible

    def _apply(self, next_state: QueryState) -> bool:
        correction = status_visibility.correct_status_filter(
            next_state.status_filter, self.visibility, pinned_status=self.pinned_status
        )
        if correction.status_filter != next_state.status_filter:
            next_state = query_state.set_status(next_state, correction.status_filter)
        previous = self.state
        if next_state == previous:
            return False
        self.state = next_state
        self.events.publish(QueryChanged(state=next_state, previous=previous))
        return True

    async def set_status(self, status_filter: str) -> None:
        self._apply(query_state.set_status(self.state, status_filter))
        await self.refresh()

    async def set_sort(self, field: str | SortField) -> None:
        self._apply(query_state.set_sort(self.state, field))
        await self.refresh()

    async def set_page(self, page: int) -> None:
        self._apply(query_state.set_page(self.state, page))
        await self.refresh()

    async def set_page_size(self, page_size: int) -> None:
        self._apply(query_state.set_page_size(self.state, page_size))
        await self.refresh()

    def type_search(self, term: str) -> None:
        """Record a keystroke; the listing follows after the quiet period."""
        self.debouncer.schedule(term)

    async def commit_search(self, term: str | None = None) -> None:
        if term is not None:
            self.debouncer.cancel()
            await self._commit_search(term)
            return
        await self.debouncer.flush()

    async def _commit_search(self, term: str) -> None:
        self._apply(query_state.set_search(self.state, term))
        await self.refresh()

    # -- fetching --------------------------------------------------------

    async def refresh(self) -> bool:
        """Fetch the current page. Returns False when the response was stale."""
        if self.nothing_visible:
            self.rows = []
            self.pagination = Pagination(limit=self.state.page_size)
            return True

        requested = self.state
        ticket = self.listing_gate.issue()
        listing = await self.directory.list_applications(requested)
        if not self.listing_gate.accept(ticket):
            return False

        total_pages = listing.pagination.total_pages
        clamped = query_state.clamp_page(requested, total_pages)
        if clamped != requested:
            logger.info("Page %d out of range (%d pages); moving back", requested.page, total_pages)
            self._apply(clamped)
            return await self.refresh()

        self.rows = listing.applications
        self.pagination = listing.pagination
        if listing.stats is not None:
            self.stats = listing.stats
        self._publish_selection(
            self.selection.prune(self.rows, complete=total_pages <= 1)
        )
        return True

    async def refresh_stats(self) -> bool:
        ticket = self.stats_gate.issue()
        stats = await self.directory.get_application_stats()
        if not self.stats_gate.accept(ticket):
            return False
        self.stats = stats
        return True

    # -- selection -------------------------------------------------------

    def _publish_selection(self, change: SelectionChange) -> SelectionChange:
        if change.changed:
            self.events.publish(
                SelectionChanged(
                    selected_ids=change.selected_ids,
                    added=change.added,
                    removed=change.removed,
                )
            )
        return change

    def _row_status(self, loan_id: LoanId) -> LoanApplicationStatus | None:
        for row in self.rows:
            if str(row.id) == str(loan_id):
                return row.status
        return self.selection.known_status(loan_id)

    def toggle(self, loan_id: LoanId) -> SelectionChange:
        """Check or uncheck a row using the status the listing returned for it."""
        row_status = self._row_status(loan_id)
        if row_status is None:
            raise ValidationError(
                f"Application {loan_id} is not on the current page",
                details={"id": loan_id},
            )
        change = self.selection.toggle(loan_id, row_status)
        if change.warning:
            self.events.publish(SelectionWarning(loan_id=loan_id, message=change.warning))
        return self._publish_selection(change)

    def select_all_eligible(self) -> SelectionChange:
        return self._publish_selection(self.selection.select_all_eligible(self.rows))

    def clear_selection(self) -> SelectionChange:
        return self._publish_selection(self.selection.clear())

    # -- actions ---------------------------------------------------------

    @property
    def batch_active(self) -> bool:
        return self.orchestrator.is_active

    async def run_payouts(self, *, confirmed: bool) -> BatchSummary:
        selected = self.selection.selected_ids
        result = await self.orchestrator.run(
            selected,
            self.directory.disburse_loan,
            confirmed=confirmed,
            selection=self.selection,
        )
        self.events.publish(SelectionChanged(selected_ids=(), removed=selected))
        self.last_batch = summarize(result)
        logger.info("Payout batch summary: %s", self.last_batch.message)
        try:
            await self.refresh()
            await self.refresh_stats()
        except RemoteError as exc:
            logger.warning("Refresh after payout batch failed: %s", exc.message)
        return self.last_batch

    async def export(self, fmt: str = "csv") -> ExportFile:
        return await self.exporter.request_export(
            self.state.status_filter,
            search=self.state.search_term or None,
            fmt=fmt,
        )

    async def update_status(
        self, loan_id: LoanId, new_status: str, reason: str | None = None
    ) -> dict[str, Any]:
        parsed = LoanApplicationStatus.parse(new_status)
        if parsed is None:
            raise ValidationError(f"Unknown status: {new_status}")
        old_status = self._row_status(loan_id)
        data = await self.directory.update_application_status(loan_id, parsed.value, reason)
        audit_event(
            "loan_application.status_updated",
            resource_id=str(loan_id),
            old_status=old_status.value if old_status else None,
            new_status=parsed.value,
            reason=reason,
        )
        await self.refresh()
        return data

    async def close(self) -> None:
        self.debouncer.cancel()

    def snapshot(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "role": self.role_context.role,
            "sub_admin_category": self.role_context.sub_admin_category,
            "allowed_statuses": (
                list(self.visibility.allowed_statuses)
                if self.visibility.allowed_statuses is not None
                else None
            ),
            "default_status": self.visibility.default_status,
            "pinned_status": self.pinned_status,
            "query": self.state,
            "search": {
                "pending": self.debouncer.is_pending,
                "pending_value": self.debouncer.pending_value,
                "committed_value": self.state.search_term,
            },
            "applications": self.rows,
            "pagination": self.pagination,
            "stats": self.stats,
            "selected_ids": list(self.selection.selected_ids),
            "batch_active": self.batch_active,
            "last_batch": self.last_batch,
        }


class QueueSessionRegistry:
    """Open queue sessions, keyed by id; idle ones expire."""

    def __init__(self, idle_minutes: int | None = None) -> None:
        self.idle_timeout = timedelta(minutes=idle_minutes or settings.session_idle_minutes)
        self._sessions: dict[str, LoanQueueSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def open(
        self,
        role_context: RoleContext,
        directory: ApplicationDirectory,
        *,
        pinned_status: str | None = None,
    ) -> LoanQueueSession:
        await self.expire_idle()
        session = LoanQueueSession(role_context, directory, pinned_status=pinned_status)
        self._sessions[session.session_id] = session
        session.touch()
        logger.info(
            "Opened queue session for role=%s category=%s",
            role_context.role,
            role_context.sub_admin_category,
        )
        return session

    def get(self, session_id: str, role_context: RoleContext) -> LoanQueueSession:
        session = self._sessions.get(session_id)
        # Sessions are bound to the role that opened them.
        if session is None or session.role_context != role_context:
            raise SessionNotFound("Queue session not found", details={"session_id": session_id})
        if datetime.now(timezone.utc) - session.last_active_at > self.idle_timeout:
            self._sessions.pop(session_id, None)
            raise SessionNotFound("Queue session expired", details={"session_id": session_id})
        session.touch()
        return session

    async def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            await session.close()

    async def expire_idle(self) -> int:
        now = datetime.now(timezone.utc)
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if now - session.last_active_at > self.idle_timeout and not session.batch_active
        ]
        for session_id in expired:
            await self.close(session_id)
        if expired:
            logger.info("Expired %d idle queue sessions", len(expired))
        return len(expired)

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)
