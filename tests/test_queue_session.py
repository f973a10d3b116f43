import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from loan_console.core.errors import BatchInProgress, SessionNotFound, ValidationError
from loan_console.schemas.loan import ApplicationStats
from loan_console.schemas.payout import BatchOutcome
from loan_console.schemas.roles import RoleContext
from loan_console.services.payout_orchestrator import PayoutOrchestrator
from loan_console.services.queue_events import QueryChanged, QueueEventHub, SelectionWarning
from loan_console.services.queue_session import LoanQueueSession, QueueSessionRegistry
from loan_console.services.selection import INELIGIBLE_SELECTION_WARNING

from conftest import FakeDirectory, RecordingSleep, make_application, make_listing

ADMIN = RoleContext("admin")


def _session(directory, role_context=ADMIN, **kwargs) -> LoanQueueSession:
    events = kwargs.pop("events", None) or QueueEventHub()
    orchestrator = PayoutOrchestrator(
        pacing_seconds=0.5, events=events, sleep=RecordingSleep(directory.log)
    )
    return LoanQueueSession(role_context, directory, events=events, orchestrator=orchestrator, **kwargs)


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory(
        [
            make_application(1, "ready_for_disbursement"),
            make_application(2, "submitted"),
            make_application(3, "ready_to_repeat_disbursal"),
        ]
    )


def test_initial_filter_is_role_default(directory):
    session = _session(directory, RoleContext("sub_admin", "follow_up_user"))

    assert session.state.status_filter == "submitted"
    assert session.state.page == 1


def test_pinned_status_applied_when_visible(directory):
    session = _session(directory, RoleContext("sub_admin", "recovery_officer"), pinned_status="overdue")

    assert session.state.status_filter == "overdue"


@pytest.mark.asyncio
async def test_pinned_status_survives_filter_changes(directory):
    session = _session(directory, RoleContext("nbfc_admin"), pinned_status="overdue")

    await session.set_status("ready_for_disbursement")

    assert session.state.status_filter == "overdue"


@pytest.mark.asyncio
async def test_hidden_status_redirects_to_default(directory):
    session = _session(directory, RoleContext("sub_admin", "qa_user"))

    await session.set_status("overdue")

    assert session.state.status_filter == "all"
    assert directory.list_calls[-1].status_filter == "all"


@pytest.mark.asyncio
async def test_query_change_publishes_event_and_resets_page(directory):
    events = QueueEventHub()
    changes = []
    events.subscribe(changes.append, QueryChanged)
    directory.listings[2] = make_listing(directory.rows, page=2, total_pages=3)
    session = _session(directory, events=events)

    await session.set_page(2)
    await session.set_sort("loanAmount")

    assert [change.state.page for change in changes] == [2, 1]
    assert changes[-1].previous.page == 2
    assert directory.list_calls[-1].sort_field.value == "loanAmount"


@pytest.mark.asyncio
async def test_nothing_visible_skips_fetch(directory):
    session = _session(directory, RoleContext("sub_admin", "night_shift"))

    await session.refresh()

    assert session.rows == []
    assert directory.list_calls == []


@pytest.mark.asyncio
async def test_page_beyond_last_moves_back(directory):
    directory.listings[3] = make_listing([], page=3, total_pages=2)
    directory.listings[2] = make_listing(directory.rows, page=2, total_pages=2)
    session = _session(directory)

    await session.set_page(3)

    assert [state.page for state in directory.list_calls] == [3, 2]
    assert session.state.page == 2
    assert len(session.rows) == 3


@pytest.mark.asyncio
async def test_stale_listing_response_is_discarded():
    first_release = asyncio.Event()

    class SlowFirstDirectory(FakeDirectory):
        async def list_applications(self, state):
            if not self.list_calls:
                self.list_calls.append(state)
                await first_release.wait()
                return make_listing([make_application(1, "submitted")])
            return await super().list_applications(state)

    directory = SlowFirstDirectory([make_application(9, "overdue")])
    session = _session(directory)

    slow = asyncio.create_task(session.refresh())
    await asyncio.sleep(0)
    await session.set_status("overdue")
    first_release.set()

    assert await slow is False
    assert [row.id for row in session.rows] == [9]
    assert session.listing_gate.discarded == 1


@pytest.mark.asyncio
async def test_debounced_search_commits_last_value(directory):
    session = _session(directory, debounce_seconds=0.02)

    session.type_search("a")
    session.type_search("as")
    session.type_search("asha ")

    assert directory.list_calls == []
    await asyncio.sleep(0.08)
    await session.debouncer.wait_idle()

    assert [state.search_term for state in directory.list_calls] == ["asha"]
    assert session.state.search_term == "asha"


@pytest.mark.asyncio
async def test_commit_search_bypasses_timer(directory):
    session = _session(directory, debounce_seconds=10)

    session.type_search("as")
    await session.commit_search("CL1001")

    assert not session.debouncer.is_pending
    assert [state.search_term for state in directory.list_calls] == ["CL1001"]


@pytest.mark.asyncio
async def test_toggle_uses_row_status(directory):
    events = QueueEventHub()
    warnings = []
    events.subscribe(warnings.append, SelectionWarning)
    session = _session(directory, events=events)
    await session.refresh()

    session.toggle(1)
    change = session.toggle(2)

    assert session.selection.selected_ids == (1,)
    assert change.warning == INELIGIBLE_SELECTION_WARNING
    assert [warning.loan_id for warning in warnings] == [2]


def test_toggle_unknown_row_rejected(directory):
    session = _session(directory)

    with pytest.raises(ValidationError):
        session.toggle(404)


@pytest.mark.asyncio
async def test_refresh_prunes_selection(directory):
    session = _session(directory)
    await session.refresh()
    session.select_all_eligible()
    directory.rows = [make_application(1, "disbursal"), make_application(3, "ready_to_repeat_disbursal")]

    await session.refresh()

    assert session.selection.selected_ids == (3,)


@pytest.mark.asyncio
async def test_run_payouts_refreshes_once_after_batch(directory):
    directory.stats = ApplicationStats(total=3, counts_by_status={"submitted": 1})
    session = _session(directory)
    await session.refresh()
    session.select_all_eligible()
    directory.log.clear()

    summary = await session.run_payouts(confirmed=True)

    assert summary.outcome is BatchOutcome.SUCCEEDED
    assert summary.message == "Successfully disbursed 2 loan(s)"
    assert directory.log == [
        ("disburse", 1),
        ("sleep", 0.5),
        ("disburse", 3),
        ("list", 1),
        ("stats", None),
    ]
    assert len(session.selection) == 0
    assert session.last_batch == summary
    assert session.stats.total == 3


@pytest.mark.asyncio
async def test_run_payouts_without_selection_rejected(directory):
    session = _session(directory)

    with pytest.raises(ValidationError):
        await session.run_payouts(confirmed=True)

    assert directory.disburse_calls == []


@pytest.mark.asyncio
async def test_concurrent_batch_rejected(directory):
    release = asyncio.Event()

    async def slow_disburse(loan_id):
        await release.wait()
        return await FakeDirectory.disburse_loan(directory, loan_id)

    directory.disburse_loan = slow_disburse
    session = _session(directory)
    await session.refresh()
    session.toggle(1)

    first = asyncio.create_task(session.run_payouts(confirmed=True))
    await asyncio.sleep(0)
    assert session.batch_active
    with pytest.raises(BatchInProgress):
        await session.run_payouts(confirmed=True)

    release.set()
    summary = await first
    assert summary.succeeded == 1


@pytest.mark.asyncio
async def test_export_uses_current_filter_and_search(directory):
    session = _session(directory)
    await session.set_status("overdue")
    await session.commit_search("asha")

    exported = await session.export("excel")

    assert directory.export_calls == [("overdue", "asha", "excel")]
    assert exported.filename.endswith(".xlsx")


@pytest.mark.asyncio
async def test_update_status_refreshes_rows(directory):
    session = _session(directory)
    await session.refresh()
    calls_before = len(directory.list_calls)

    await session.update_status(2, "Under Review", "Documents verified")

    assert directory.status_updates == [(2, "under_review", "Documents verified")]
    assert len(directory.list_calls) == calls_before + 1


@pytest.mark.asyncio
async def test_update_status_rejects_unknown_status(directory):
    session = _session(directory)

    with pytest.raises(ValidationError):
        await session.update_status(2, "archived")

    assert directory.status_updates == []


@pytest.mark.asyncio
async def test_registry_binds_session_to_role(directory):
    registry = QueueSessionRegistry()
    session = await registry.open(ADMIN, directory)

    assert registry.get(session.session_id, ADMIN) is session
    with pytest.raises(SessionNotFound):
        registry.get(session.session_id, RoleContext("sub_admin", "qa_user"))


@pytest.mark.asyncio
async def test_registry_expires_idle_sessions(directory):
    registry = QueueSessionRegistry(idle_minutes=5)
    session = await registry.open(ADMIN, directory)
    session.last_active_at = datetime.now(timezone.utc) - timedelta(minutes=10)

    with pytest.raises(SessionNotFound):
        registry.get(session.session_id, ADMIN)
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_registry_close_all(directory):
    registry = QueueSessionRegistry()
    await registry.open(ADMIN, directory)
    await registry.open(RoleContext("nbfc_admin"), directory)

    await registry.close_all()

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_toggle_ignores_selection_for_row_listed_as_not_ready(directory):
    session = _session(directory)
    await session.refresh()

    change = session.toggle(2)

    assert change.warning == INELIGIBLE_SELECTION_WARNING
    assert session.selection.selected_ids == ()
    with pytest.raises(ValidationError):
        await session.run_payouts(confirmed=True)
    assert directory.disburse_calls == []


@pytest.mark.asyncio
async def test_filter_change_during_batch_still_disburses_every_loan():
    first_call = asyncio.Event()
    release = asyncio.Event()
    directory = FakeDirectory(
        [
            make_application(1, "ready_for_disbursement"),
            make_application(2, "ready_for_disbursement"),
            make_application(3, "ready_for_disbursement"),
        ]
    )

    async def gated_disburse(loan_id):
        if not first_call.is_set():
            first_call.set()
            await release.wait()
        return await FakeDirectory.disburse_loan(directory, loan_id)

    directory.disburse_loan = gated_disburse
    session = _session(directory)
    await session.refresh()
    session.select_all_eligible()

    batch = asyncio.create_task(session.run_payouts(confirmed=True))
    await first_call.wait()
    directory.rows = [make_application(9, "overdue")]
    await session.set_status("overdue")
    assert session.selection.selected_ids == ()
    release.set()
    summary = await batch

    assert directory.disburse_calls == [1, 2, 3]
    assert summary.outcome is BatchOutcome.SUCCEEDED
    assert summary.result.failed == []
